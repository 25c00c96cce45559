"""Outgoing e-mail for password resets and dispute updates."""
from __future__ import annotations

import logging
import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText

from flask import current_app

logger = logging.getLogger(__name__)

RESET_SUBJECTS = {
    "en": "Reset your password",
    "es": "Restablece tu contraseña",
}

RESET_BODIES = {
    "en": (
        "<p>Hello {name},</p>"
        "<p>We received a request to reset your password. Use the link below within {minutes} minutes:</p>"
        '<p><a href="{link}">{link}</a></p>'
        "<p>If you did not ask for this, you can ignore this e-mail.</p>"
    ),
    "es": (
        "<p>Hola {name},</p>"
        "<p>Recibimos una solicitud para restablecer tu contraseña. Usa el enlace dentro de {minutes} minutos:</p>"
        '<p><a href="{link}">{link}</a></p>'
        "<p>Si no solicitaste esto, puedes ignorar este correo.</p>"
    ),
}

DISPUTE_SUBJECTS = {
    "en": "Your dispute was updated",
    "es": "Tu disputa fue actualizada",
}

DISPUTE_BODIES = {
    "en": "<p>Hello {name},</p><p>Your dispute about <b>{skill}</b> is now <b>{status}</b>.</p><p>{argument}</p>",
    "es": "<p>Hola {name},</p><p>Tu disputa sobre <b>{skill}</b> ahora está <b>{status}</b>.</p><p>{argument}</p>",
}


def send_email(to_email: str, subject: str, body: str) -> bool:
    config = current_app.config
    if not config.get("MAIL_SERVER"):
        logger.warning("Mail server not configured; skipped e-mail to %s (%s)", to_email, subject)
        return False

    msg = MIMEMultipart()
    msg["From"] = config.get("MAIL_SENDER")
    msg["To"] = to_email
    msg["Subject"] = subject
    msg.attach(MIMEText(body, "html"))

    try:
        with smtplib.SMTP(config["MAIL_SERVER"], config.get("MAIL_PORT", 587), timeout=15) as server:
            if config.get("MAIL_USE_TLS"):
                server.starttls()
            if config.get("MAIL_USERNAME"):
                server.login(config["MAIL_USERNAME"], config.get("MAIL_PASSWORD") or "")
            server.send_message(msg)
    except (smtplib.SMTPException, OSError) as exc:
        logger.warning("Failed to send e-mail to %s: %s", to_email, exc)
        return False
    return True


def _language(user) -> str:
    return user.language_preference if user.language_preference in RESET_SUBJECTS else "en"


def send_password_reset(user, token: str) -> bool:
    config = current_app.config
    language = _language(user)
    base_url = config.get("APP_BASE_URL", "").rstrip("/")
    link = f"{base_url}/{language}/reset-password?token={token}"
    body = RESET_BODIES[language].format(
        name=user.given_name,
        minutes=int(config.get("PASSWORD_RESET_TTL", 3600)) // 60,
        link=link,
    )
    return send_email(user.email, RESET_SUBJECTS[language], body)


def send_dispute_status(dispute) -> bool:
    result = dispute.result
    student = result.attempt.student
    language = _language(student)
    body = DISPUTE_BODIES[language].format(
        name=student.given_name,
        skill=result.skill.name if result.skill else "",
        status=dispute.status,
        argument=dispute.teacher_argument or "",
    )
    return send_email(student.email, DISPUTE_SUBJECTS[language], body)
