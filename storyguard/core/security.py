"""
Security utilities and input validation for the StoryGuard API.

Covers media reference and text validation, input sanitization, per-IP rate
limiting and the bearer key check used by the admin review routes.
"""

import re
import time
from collections import deque
import secrets
from typing import Deque, Dict, Any, Optional, Tuple
from fastapi import HTTPException, Request, Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from storyguard.core.config import settings
from storyguard.core.logger import logger
from storyguard.core.exceptions import RateLimitException, create_http_exception

# Security configuration
MAX_TEXT_LENGTH = 5000  # characters for story text and captions
MAX_MEDIA_REF_LENGTH = 2048  # characters for media URLs
RATE_LIMIT_REQUESTS = 100  # requests per window
RATE_LIMIT_WINDOW = 3600  # seconds (1 hour)

# Hit timestamps per client IP, process-local
rate_limit_storage: Dict[str, Deque[float]] = {}

# Security scheme
security = HTTPBearer(auto_error=False)

def validate_text_content(content: str) -> Tuple[bool, Optional[str]]:
    """
    Validate story text for size and basic script injection.

    Args:
        content: Text content to validate

    Returns:
        Tuple of (is_valid, error_message)
    """
    if not content or not content.strip():
        return False, "Text cannot be empty"

    if len(content) > MAX_TEXT_LENGTH:
        return False, f"Text exceeds maximum length of {MAX_TEXT_LENGTH} characters"

    dangerous_patterns = [
        r'<script[^>]*>.*?</script>',
        r'javascript:',
        r'vbscript:',
        r'onload\s*=',
        r'onerror\s*=',
        r'onclick\s*='
    ]

    for pattern in dangerous_patterns:
        if re.search(pattern, content, re.IGNORECASE):
            return False, "Text contains potentially dangerous patterns"

    return True, None

def validate_media_ref(ref: str) -> Tuple[bool, Optional[str]]:
    """
    Validate a media or thumbnail reference.

    Uploaded media lives in object storage, so any http(s) URL is accepted
    regardless of file extension.

    Args:
        ref: Media URL to validate

    Returns:
        Tuple of (is_valid, error_message)
    """
    if not ref or not ref.strip():
        return False, "Media reference cannot be empty"

    if len(ref) > MAX_MEDIA_REF_LENGTH:
        return False, f"Media reference exceeds maximum length of {MAX_MEDIA_REF_LENGTH} characters"

    url_pattern = r'^https?://[^\s/$.?#].[^\s]*$'
    if not re.match(url_pattern, ref):
        return False, "Invalid URL format"

    return True, None

def _drop_idle_clients(now: float) -> None:
    cutoff = now - RATE_LIMIT_WINDOW
    for ip in [ip for ip, hits in rate_limit_storage.items() if not hits or hits[-1] <= cutoff]:
        del rate_limit_storage[ip]

def check_rate_limit(client_ip: str) -> bool:
    """Record a hit for ``client_ip``; False once its sliding window is full."""
    now = time.monotonic()
    _drop_idle_clients(now)
    hits = rate_limit_storage.get(client_ip)

    if hits is not None:
        while hits and hits[0] <= now - RATE_LIMIT_WINDOW:
            hits.popleft()
        if len(hits) >= RATE_LIMIT_REQUESTS:
            return False

    rate_limit_storage.setdefault(client_ip, deque()).append(now)
    return True

def get_client_ip(request: Request) -> str:
    """First hop of ``X-Forwarded-For``, then ``X-Real-IP``, then the socket peer."""
    forwarded_for = request.headers.get("X-Forwarded-For")
    if forwarded_for:
        return forwarded_for.split(",")[0].strip()

    return request.headers.get("X-Real-IP") or (request.client.host if request.client else "unknown")

def rate_limit_dependency(request: Request):
    """Reject the request with 429 once its client exceeds the hourly quota."""
    client_ip = get_client_ip(request)

    if not check_rate_limit(client_ip):
        logger.warning(
            f"Rate limit exceeded for client {client_ip}",
            extra={"client_ip": client_ip, "limit": RATE_LIMIT_REQUESTS}
        )
        raise create_http_exception(RateLimitException(
            f"Rate limit exceeded. Maximum {RATE_LIMIT_REQUESTS} requests per hour.",
            retry_after=RATE_LIMIT_WINDOW
        ))

def sanitize_input(text: str) -> str:
    """
    Strip null bytes and control characters from user text.

    Args:
        text: Input text to sanitize

    Returns:
        Sanitized text
    """
    if not text:
        return ""

    text = text.replace('\x00', '')

    # Remove control characters except newlines and tabs
    text = re.sub(r'[\x00-\x08\x0B\x0C\x0E-\x1F\x7F]', '', text)

    return text.strip()

def require_admin_key(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security)
) -> bool:
    """
    Validate the bearer key for admin review endpoints.

    When no ``admin_api_key`` is configured the check is open, which keeps
    local development usable.

    Raises:
        HTTPException: If the key is missing or wrong
    """
    if not settings.admin_api_key:
        return True

    if credentials and secrets.compare_digest(credentials.credentials, settings.admin_api_key):
        return True

    log_security_event("invalid_admin_key", get_client_ip(request))
    raise HTTPException(
        status_code=401,
        detail={
            "error_code": "INVALID_API_KEY",
            "message": "Invalid or missing API key"
        }
    )

def log_security_event(
    event_type: str,
    client_ip: str,
    details: Optional[Dict[str, Any]] = None
) -> None:
    """Log security-related events."""
    logger.warning(
        f"Security event: {event_type}",
        extra={
            "event_type": event_type,
            "client_ip": client_ip,
            "details": details or {}
        }
    )
