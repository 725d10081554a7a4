import requests
import time
from typing import Callable
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from storyguard.models.notification_log import NotificationLog, NotificationStatus
from storyguard.moderation.models import ModerationEvent
from storyguard.core.config import settings
from storyguard.core.logger import logger
from storyguard.core.exceptions import NotificationServiceException

# Configuration for retry logic
MAX_RETRIES = 3
RETRY_DELAY = 1  # seconds
TIMEOUT = 30  # seconds

BREVO_URL = "https://api.brevo.com/v3/smtp/email"


def event_type(event: ModerationEvent) -> str:
    return "story_approved" if event.approved else "story_rejected"


def _email_content(event: ModerationEvent) -> tuple[str, str]:
    if event.approved:
        return (
            "Story Approved",
            "<h2>Story Approved</h2>"
            "<p>Your story has been approved and is now visible.</p>"
        )
    reason = event.reason or "it does not follow our community guidelines"
    return (
        "Story Rejected",
        "<h2>Story Rejected</h2>"
        f"<p>Your story was rejected: {reason}</p>"
        "<p>Please review our community guidelines before posting again.</p>"
    )


def _post_with_retries(
    url: str,
    payload: dict,
    headers: dict | None,
    expected_status: int,
    channel: str,
    event: ModerationEvent
) -> bool:
    """POST with exponential backoff; True once the expected status comes back."""
    for attempt in range(MAX_RETRIES):
        try:
            response = requests.post(url, headers=headers, json=payload, timeout=TIMEOUT)

            if response.status_code == expected_status:
                logger.info(
                    f"{channel.title()} notification sent successfully",
                    extra={**event.log_extra(), "attempt": attempt + 1}
                )
                return True

            logger.warning(
                f"{channel.title()} API returned status {response.status_code}",
                extra={
                    **event.log_extra(),
                    "status_code": response.status_code,
                    "attempt": attempt + 1,
                    "response": response.text[:200]
                }
            )

        except requests.exceptions.RequestException as e:
            logger.warning(
                f"{channel.title()} request failed on attempt {attempt + 1}",
                extra={**event.log_extra(), "error": str(e), "attempt": attempt + 1}
            )

            if attempt == MAX_RETRIES - 1:
                raise NotificationServiceException(
                    f"{channel.title()} notification failed after {MAX_RETRIES} attempts: {str(e)}",
                    channel=channel,
                    details={"attempts": MAX_RETRIES, "error": str(e)}
                )

        if attempt < MAX_RETRIES - 1:
            time.sleep(RETRY_DELAY * (2 ** attempt))  # Exponential backoff

    return False


def send_email_notification(event: ModerationEvent, db: Session) -> bool:
    """
    Email the story author about a moderation decision via Brevo.

    Returns:
        True if the email was accepted, False otherwise

    Raises:
        NotificationServiceException: If the API stays unreachable after retries
    """
    if not event.author_email:
        logger.debug("Author has no email on file, skipping email", extra=event.log_extra())
        return False

    if not settings.brevo_api_key:
        logger.warning("Brevo API key not configured, using mock email", extra=event.log_extra())
        return _log_notification_attempt(db, event, "email", NotificationStatus.sent)

    subject, html = _email_content(event)
    headers = {
        "accept": "application/json",
        "api-key": settings.brevo_api_key,
        "content-type": "application/json"
    }
    data = {
        "sender": {"name": "StoryGuard", "email": "noreply@storyguard.app"},
        "to": [{"email": event.author_email}],
        "subject": subject,
        "htmlContent": html
    }

    try:
        sent = _post_with_retries(BREVO_URL, data, headers, 201, "email", event)
    except NotificationServiceException:
        _log_notification_attempt(db, event, "email", NotificationStatus.failed)
        raise

    status = NotificationStatus.sent if sent else NotificationStatus.failed
    _log_notification_attempt(db, event, "email", status)
    return sent


def send_slack_notification(event: ModerationEvent, db: Session) -> bool:
    """
    Post the decision to the moderators' Slack channel.

    Raises:
        NotificationServiceException: If the webhook stays unreachable after retries
    """
    if not settings.slack_webhook_url:
        logger.warning("Slack webhook URL not configured, using mock notification", extra=event.log_extra())
        return _log_notification_attempt(db, event, "slack", NotificationStatus.sent)

    payload = {
        "text": f"Story moderation: {event.decision.value}",
        "attachments": [
            {
                "color": "good" if event.approved else "danger",
                "fields": [
                    {"title": "Story ID", "value": str(event.story_id), "short": True},
                    {"title": "Author", "value": event.author_id, "short": True},
                    {"title": "Phase", "value": event.phase.value, "short": True},
                    {
                        "title": "Previous decision",
                        "value": event.previous_decision.value if event.previous_decision else "none",
                        "short": True
                    },
                    {"title": "Reason", "value": event.reason or "-", "short": False}
                ],
                "footer": "StoryGuard Moderation",
                "ts": int(time.time())
            }
        ]
    }

    try:
        sent = _post_with_retries(settings.slack_webhook_url, payload, None, 200, "slack", event)
    except NotificationServiceException:
        _log_notification_attempt(db, event, "slack", NotificationStatus.failed)
        raise

    status = NotificationStatus.sent if sent else NotificationStatus.failed
    _log_notification_attempt(db, event, "slack", status)
    return sent


def _log_notification_attempt(
    db: Session,
    event: ModerationEvent,
    channel: str,
    status: NotificationStatus
) -> bool:
    """Record a notification attempt; returns whether it counts as sent."""
    try:
        db.add(NotificationLog(
            story_id=event.story_id,
            channel=channel,
            event_type=event_type(event),
            status=status
        ))
        db.commit()
    except SQLAlchemyError as e:
        logger.error(
            "Failed to log notification attempt",
            extra={**event.log_extra(), "channel": channel, "error": str(e)}
        )
        db.rollback()
    return status == NotificationStatus.sent


def dispatch_moderation_event(event: ModerationEvent, session_factory: Callable[[], Session]) -> None:
    """
    Deliver a moderation event on every channel.

    Runs as a background task, so it opens its own session and never lets a
    delivery failure escape.
    """
    logger.info("Dispatching moderation event", extra=event.log_extra())

    db = session_factory()
    try:
        email_success = False
        try:
            email_success = send_email_notification(event, db)
        except NotificationServiceException as e:
            logger.error("Email notification failed", extra={**event.log_extra(), "error": str(e)})

        slack_success = False
        try:
            slack_success = send_slack_notification(event, db)
        except NotificationServiceException as e:
            logger.error("Slack notification failed", extra={**event.log_extra(), "error": str(e)})

        logger.info(
            f"Notification results - Email: {email_success}, Slack: {slack_success}",
            extra={**event.log_extra(), "email_success": email_success, "slack_success": slack_success}
        )
    finally:
        db.close()
