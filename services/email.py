import logging
import os
import smtplib
from email.message import EmailMessage
from typing import Any, Dict

from jinja2 import Environment, FileSystemLoader, select_autoescape

from core.config import settings

logger = logging.getLogger(__name__)

# Jinja2 environment for email templates
_templates_env = Environment(
    loader=FileSystemLoader(searchpath=os.path.join(os.path.dirname(os.path.dirname(__file__)), "templates")),
    autoescape=select_autoescape(["html", "xml"]),
)


def render_template(template_path: str, context: Dict[str, Any]) -> str:
    """Render a text template from templates/ directory with provided context."""
    template = _templates_env.get_template(template_path)
    return template.render(**context)


def deliver_email(to_email: str, subject: str, body: str) -> None:
    """Send one message over SMTP; raises on transport errors."""
    if not settings.SMTP_USERNAME:
        logger.info("SMTP not configured; skipping email to %s (%s)", to_email, subject)
        return

    msg = EmailMessage()
    msg["Subject"] = subject
    msg["From"] = settings.SMTP_FROM or settings.SMTP_USERNAME
    msg["To"] = to_email
    msg.set_content(body)

    with smtplib.SMTP(settings.SMTP_HOST, settings.SMTP_PORT) as server:
        server.starttls()
        server.login(settings.SMTP_USERNAME, settings.SMTP_PASSWORD)
        server.send_message(msg)
    logger.info("Email sent to %s (%s)", to_email, subject)


def send_email(to_email: str, subject: str, body: str) -> None:
    """Queue the email on Celery when enabled, otherwise send it inline."""
    if settings.EMAIL_USE_CELERY:
        from tasks.email_tasks import send_email_task

        try:
            send_email_task.delay(to_email, subject, body)
            return
        except Exception as e:
            # Broker unreachable; fall through to inline delivery
            logger.warning("Could not queue email to %s, sending inline: %s", to_email, e)

    deliver_email(to_email, subject, body)


def send_templated_email(to_email: str, subject: str, template_path: str, context: Dict[str, Any]) -> None:
    body = render_template(template_path, context)
    send_email(to_email, subject, body)
