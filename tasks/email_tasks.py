import logging
import smtplib

from core.celery import celery_app
from services.email import deliver_email

logger = logging.getLogger(__name__)


@celery_app.task(bind=True, max_retries=3)
def send_email_task(self, to_email: str, subject: str, body: str):
    """
    Send email asynchronously with Celery.
    Retries up to 3 times on failure.
    """
    try:
        deliver_email(to_email, subject, body)
    except (smtplib.SMTPException, OSError) as exc:
        logger.warning("Email to %s failed (attempt %d): %s", to_email, self.request.retries + 1, exc)
        # Exponential backoff, capped at a minute
        raise self.retry(exc=exc, countdown=min(2 ** self.request.retries, 60))
    return {"status": "sent", "to": to_email, "subject": subject}
