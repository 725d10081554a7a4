"""
HTTP client for the remote classifier provider.

Two endpoints are used: a fast image check for the pre-publish path and a
deep analysis for the post-publish review. Every call is made exactly once;
anything other than a well-formed 2xx answer raises
``ClassifierProviderException`` and the engine decides the fallback.
"""

from typing import Optional, List, Dict, Any

import httpx
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from storyguard.core.exceptions import ClassifierProviderException
from storyguard.core.logger import logger
from storyguard.moderation.models import ModerationInput

FAST_IMAGE_PATH = "/moderate-image"
DEEP_ANALYSIS_PATH = "/moderate-deep"

FAST_DEFAULT_CONFIDENCE = 0.7
DEEP_DEFAULT_CONFIDENCE = 0.9


class ProviderVerdict(BaseModel):
    """Provider answer, parsed strictly so bad payloads fail closed."""

    model_config = ConfigDict(strict=True, allow_inf_nan=False, extra="ignore")

    risk: float = Field(ge=0.0, le=1.0)
    tags: List[str] = Field(default_factory=list)
    confidence: Optional[float] = Field(default=None, ge=0.0, le=1.0)


def deep_analysis_payload(payload: ModerationInput) -> Dict[str, Any]:
    body: Dict[str, Any] = {
        "type": payload.content_type.value,
        "text": payload.text,
        "media_url": payload.media_ref,
        "metadata": None,
    }
    if payload.metadata is not None:
        meta = payload.metadata
        body["metadata"] = {
            "duration": meta.duration_seconds,
            "size": meta.size_bytes,
            "dimensions": meta.dimensions.model_dump() if meta.dimensions else None,
        }
    return body


class ClassifierClient:
    def __init__(
        self,
        base_url: str,
        api_key: str,
        fast_timeout: float = 3.0,
        deep_timeout: float = 120.0,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.fast_timeout = fast_timeout
        self.deep_timeout = deep_timeout
        self._transport = transport

    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

    async def _post(self, path: str, body: Dict[str, Any], timeout: float) -> ProviderVerdict:
        if not self.base_url:
            raise ClassifierProviderException("Classifier provider URL is not configured", endpoint=path)

        url = f"{self.base_url}{path}"
        try:
            async with httpx.AsyncClient(timeout=timeout, transport=self._transport) as client:
                response = await client.post(url, json=body, headers=self._headers())
        except httpx.HTTPError as e:
            raise ClassifierProviderException(
                f"Classifier request failed: {str(e)}",
                endpoint=path,
                details={"error_type": type(e).__name__}
            ) from e

        if not response.is_success:
            raise ClassifierProviderException(
                f"Classifier returned status {response.status_code}",
                endpoint=path,
                details={"status_code": response.status_code, "response": response.text[:200]}
            )

        try:
            verdict = ProviderVerdict.model_validate(response.json())
        except (ValueError, ValidationError) as e:
            raise ClassifierProviderException(
                "Classifier returned a malformed verdict",
                endpoint=path,
                details={"error": str(e)[:500]}
            ) from e

        logger.debug(
            "Classifier verdict received",
            extra={"endpoint": path, "risk": verdict.risk, "tags": verdict.tags}
        )
        return verdict

    async def check_image_fast(self, image_url: str) -> ProviderVerdict:
        verdict = await self._post(
            FAST_IMAGE_PATH,
            {"image_url": image_url, "fast_mode": True},
            self.fast_timeout,
        )
        if verdict.confidence is None:
            verdict = verdict.model_copy(update={"confidence": FAST_DEFAULT_CONFIDENCE})
        return verdict

    async def analyze_deep(self, payload: ModerationInput) -> ProviderVerdict:
        verdict = await self._post(
            DEEP_ANALYSIS_PATH,
            deep_analysis_payload(payload),
            self.deep_timeout,
        )
        if verdict.confidence is None:
            verdict = verdict.model_copy(update={"confidence": DEEP_DEFAULT_CONFIDENCE})
        return verdict
