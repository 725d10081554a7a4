from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session
from storyguard.db.session import get_db
from storyguard.services.analytics_service import get_author_summary, get_moderation_stats
from storyguard.schemas.analytics import AuthorSummary, ModerationStats

router = APIRouter(prefix="/api/v1/analytics", tags=["analytics"])

@router.get("/moderation", response_model=ModerationStats, status_code=200)
async def moderation_stats(db: Session = Depends(get_db)):
    try:
        return get_moderation_stats(db)
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Moderation stats retrieval failed: {str(e)}")

@router.get("/summary", response_model=AuthorSummary, status_code=200)
async def author_summary(author: str, db: Session = Depends(get_db)):
    try:
        return get_author_summary(author, db)
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Analytics retrieval failed: {str(e)}")
