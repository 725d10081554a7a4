from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, declarative_base
from storyguard.core.config import settings

connect_args = {"check_same_thread": False} if settings.database_url.startswith("sqlite") else {}

engine = create_engine(settings.database_url, future=True, connect_args=connect_args)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine, future=True)
Base = declarative_base()

# Dependency
def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()

# Dependency for work that outlives the request, such as deep reviews
def get_session_factory():
    return SessionLocal
