import smtplib
import logging
from email.message import EmailMessage
from careslot.core.config import settings

logger = logging.getLogger(__name__)


def send_email(to_email: str, subject: str, body: str, html: str | None = None) -> bool:
    """Send a transactional email. With EMAIL_BACKEND=console the message is only logged."""
    if settings.EMAIL_BACKEND == "console":
        logger.info(f"[email] to={to_email} subject={subject!r}\n{body}")
        return True

    smtp_host = settings.SMTP_HOST
    smtp_port = settings.SMTP_PORT
    smtp_user = settings.SMTP_USER
    smtp_pass = settings.SMTP_PASSWORD

    if not smtp_host or not smtp_user or not smtp_pass:
        raise RuntimeError("SMTP credentials not configured (SMTP_HOST / SMTP_USER / SMTP_PASSWORD)")

    msg = EmailMessage()
    msg["Subject"] = subject
    msg["From"] = f"{settings.SENDER_NAME} <{smtp_user}>"
    msg["To"] = to_email
    msg.set_content(body)
    if html:
        msg.add_alternative(html, subtype="html")

    try:
        with smtplib.SMTP(smtp_host, smtp_port, timeout=10) as server:
            server.ehlo()
            if smtp_port == 587:
                server.starttls()
                server.ehlo()
            server.login(smtp_user, smtp_pass)
            server.send_message(msg)
        return True
    except Exception:
        logger.exception("Failed to send email")
        raise


def send_notification_email(to_email: str, recipient_name: str | None, title: str, body: str) -> bool:
    subject = f"{settings.APP_NAME}: {title}"
    greeting = f"Hi {recipient_name}," if recipient_name else "Hi,"
    text = f"{greeting}\n\n{body}\n\n{settings.SENDER_NAME}"
    html = (
        f"<p>{greeting}</p>"
        f"<p>{body}</p>"
        f"<p><a href=\"{settings.APP_URL}\">Open {settings.APP_NAME}</a></p>"
        f"<br/><p>{settings.SENDER_NAME}</p>"
    )
    return send_email(to_email, subject, text, html)
