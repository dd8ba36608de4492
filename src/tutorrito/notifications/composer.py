"""Render notification emails from templates."""

from __future__ import annotations

import html
import re
from pathlib import Path
from typing import Any

import yaml

from tutorrito.core.errors import InvalidInput
from tutorrito.notifications.models import NotificationKind, RenderedNotification
from tutorrito.sessions.models import Recipient

_DEFAULT_TEMPLATES_PATH = Path(__file__).resolve().parents[3] / "config" / "notification_templates.yml"

_PLACEHOLDER = re.compile(r"\{(\w+)\}")
_EMAIL = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")

_BUILTIN_TEMPLATES: dict[str, dict[str, str]] = {
    NotificationKind.ARRIVAL_UPDATE: {
        "subject": "Tutor Arrival Update from {tutor_name}",
        "text": (
            "Hello {recipient_name},\n\n"
            "Your tutor, {tutor_name}, has sent an update regarding your session:\n\n"
            "Message: {message}\n"
            "{eta_block}\n"
            "Please prepare accordingly.\n\n"
            "Best regards,\nThe Tutorrito Team\n"
        ),
        "eta_text": "Estimated Arrival Time: {estimated_time}\n",
        "html": (
            "<html>\n  <body>\n"
            "    <h2>Tutor Arrival Update</h2>\n"
            "    <p>Hello {recipient_name},</p>\n"
            "    <p>Your tutor, {tutor_name}, has sent an update regarding your session:</p>\n"
            "    <p><strong>Message:</strong> {message}</p>\n"
            "    {eta_block}<p>Please prepare accordingly.</p>\n"
            "    <p>Best regards,<br>The Tutorrito Team</p>\n"
            "  </body>\n</html>\n"
        ),
        "eta_html": "<p><strong>Estimated Arrival Time:</strong> {estimated_time}</p>\n",
    },
    "new_message": {
        "subject": "You have a new message from {sender_name}",
        "text": (
            "Hello {recipient_name},\n\n"
            "You've received a new message from {sender_name}.\n\n"
            "Message: \"{message}\"\n\n"
            "{view_hint}\n\n"
            "Thanks,\nThe Tutorrito Team\n"
        ),
        "html": (
            "<h1>New Message Received</h1>\n"
            "<p>Hello {recipient_name},</p>\n"
            "<p>You've received a new message from <strong>{sender_name}</strong>.</p>\n"
            "<p>Message: &quot;{message}&quot;</p>\n"
            "<p>{view_hint}</p>\n"
            "<p>Thanks,<br>The Tutorrito Team</p>\n"
        ),
    },
    "general": {
        "subject": "New notification from Tutorrito",
        "text": "Hello {recipient_name},\n\n{message}\n\nThe Tutorrito Team\n",
        "html": (
            "<p>Hello {recipient_name},</p>\n"
            "<p>{message}</p>\n"
            "<p>The Tutorrito Team</p>\n"
        ),
    },
    "booking_admin": {
        "subject": "[Admin] New Tutoring Session Booked: {subject} with {student_name}",
        "text": (
            "A new tutoring session has been booked.\n\n"
            "Subject: {subject}\nDate: {date}\nTime: {time}\nLocation: {location}\nPrice: {price} QAR\n\n"
            "Student: {student_name} ({student_email}, {student_phone})\n"
            "Tutor: {tutor_name} ({tutor_email})\n"
        ),
        "html": (
            "<h2>New Tutoring Session Booking (Admin)</h2>\n"
            "<p>A new tutoring session has been booked. Details below:</p>\n"
            "<ul><li><strong>Subject:</strong> {subject}</li><li><strong>Date:</strong> {date}</li>"
            "<li><strong>Time:</strong> {time}</li><li><strong>Location:</strong> {location}</li>"
            "<li><strong>Price:</strong> {price} QAR</li></ul>\n"
            "<p><strong>Student:</strong> {student_name}, {student_email}, {student_phone}</p>\n"
            "<p><strong>Tutor:</strong> {tutor_name}, {tutor_email}</p>\n"
        ),
    },
    "booking_student": {
        "subject": "Your Tutorrito Session with {tutor_name} is Confirmed!",
        "text": (
            "Hi {student_name},\n\n"
            "Your tutoring session for {subject} with {tutor_name} has been successfully booked.\n\n"
            "Date: {date}\nTime: {time}\nLocation: {location}\nPrice: {price} QAR\n\n"
            "If you have any questions or need to reschedule, please contact your tutor.\n\n"
            "Happy learning!\nThe Tutorrito Team\n"
        ),
        "html": (
            "<h2>Session Confirmed!</h2>\n"
            "<p>Hi {student_name},</p>\n"
            "<p>Your tutoring session for <strong>{subject}</strong> with <strong>{tutor_name}</strong> "
            "has been successfully booked.</p>\n"
            "<ul><li><strong>Date:</strong> {date}</li><li><strong>Time:</strong> {time}</li>"
            "<li><strong>Location:</strong> {location}</li><li><strong>Price:</strong> {price} QAR</li></ul>\n"
            "<p>Happy learning!</p>\n<p>The Tutorrito Team</p>\n"
        ),
    },
    "booking_tutor": {
        "subject": "New Booking: {subject} with {student_name}",
        "text": (
            "Hi {tutor_name},\n\n"
            "You have a new tutoring session booked for {subject} with {student_name}.\n\n"
            "Student email: {student_email}\nStudent phone: {student_phone}\n"
            "Date: {date}\nTime: {time}\nLocation: {location}\nPrice: {price} QAR\n\n"
            "Best regards,\nThe Tutorrito Team\n"
        ),
        "html": (
            "<h2>New Session Booked!</h2>\n"
            "<p>Hi {tutor_name},</p>\n"
            "<p>You have a new tutoring session booked for <strong>{subject}</strong> "
            "with <strong>{student_name}</strong>.</p>\n"
            "<ul><li><strong>Student email:</strong> {student_email}</li>"
            "<li><strong>Student phone:</strong> {student_phone}</li>"
            "<li><strong>Date:</strong> {date}</li><li><strong>Time:</strong> {time}</li>"
            "<li><strong>Location:</strong> {location}</li><li><strong>Price:</strong> {price} QAR</li></ul>\n"
            "<p>Best regards,</p>\n<p>The Tutorrito Team</p>\n"
        ),
    },
    "new_user_admin": {
        "subject": "[Tutorrito] {subject}",
        "text": (
            "A new user has registered on Tutorrito:\n\n"
            "Name: {name}\nEmail: {email}\nSignup Time: {timestamp}\n"
        ),
        "html": (
            "<h1>New User Signup Notification</h1>\n"
            "<p>A new user has registered on Tutorrito:</p>\n"
            "<ul><li><strong>Name:</strong> {name}</li><li><strong>Email:</strong> {email}</li>"
            "<li><strong>Signup Time:</strong> {timestamp}</li></ul>\n"
            "<p>This is an automated notification. Please do not reply to this email.</p>\n"
        ),
    },
}


def render(template_str: str, context: dict[str, Any]) -> str:
    """Single-pass ``{key}`` substitution.

    A substituted value is never re-scanned, so user text containing braces
    cannot inject further placeholders. Unknown placeholders are kept.
    """
    str_context = {k: str(v) for k, v in context.items()}

    def _replace(m: re.Match) -> str:
        return str_context.get(m.group(1), m.group(0))

    return _PLACEHOLDER.sub(_replace, template_str)


def is_usable_address(address: str | None) -> bool:
    return bool(address) and _EMAIL.match(address.strip()) is not None


class NotificationComposer:
    """Pure renderer: identical input always yields an identical payload.

    Templates are read once at construction; ``compose`` does no I/O.
    """

    def __init__(self, templates_path: str | Path | None = None) -> None:
        self._templates: dict[str, dict[str, str]] = {
            kind: dict(t) for kind, t in _BUILTIN_TEMPLATES.items()
        }
        self._load_templates(Path(templates_path) if templates_path else _DEFAULT_TEMPLATES_PATH)

    def _load_templates(self, path: Path) -> None:
        if not path.exists():
            return
        with open(path) as fh:
            data = yaml.safe_load(fh) or {}
        for kind, tmpl in data.get("templates", {}).items():
            merged = self._templates.get(kind, {})
            merged.update({k: str(v) for k, v in tmpl.items()})
            self._templates[kind] = merged

    @property
    def templates(self) -> dict[str, dict[str, str]]:
        return {k: dict(v) for k, v in self._templates.items()}

    def compose(
        self,
        recipient: Recipient,
        message: str,
        estimated_time: str | None = None,
        tutor_name: str | None = None,
        kind: NotificationKind = NotificationKind.ARRIVAL_UPDATE,
    ) -> RenderedNotification:
        if not message or not message.strip():
            raise InvalidInput("message must not be empty")
        if not is_usable_address(recipient.email):
            raise InvalidInput(f"Recipient {recipient.id!r} has no usable email address")

        template = self._templates[kind]
        message = message.strip()
        estimated_time = estimated_time.strip() if estimated_time else None
        tutor_name = tutor_name or "Your tutor"

        plain = {
            "recipient_name": recipient.display_name,
            "tutor_name": tutor_name,
            "message": message,
            "estimated_time": estimated_time or "",
        }
        escaped = {k: html.escape(v) for k, v in plain.items()}

        if estimated_time:
            text_eta = render(template["eta_text"], plain)
            html_eta = render(template["eta_html"], escaped)
        else:
            text_eta = html_eta = ""

        metadata: dict[str, Any] = {"tutor_name": tutor_name}
        if estimated_time:
            metadata["estimated_time"] = estimated_time

        return RenderedNotification(
            to=recipient.email.strip(),
            subject=render(template["subject"], plain),
            text=render(template["text"], {**plain, "eta_block": text_eta}),
            html=render(template["html"], {**escaped, "eta_block": html_eta}),
            metadata=metadata,
        )

    def compose_from_template(
        self,
        template_id: str,
        to: str | None,
        context: dict[str, Any],
    ) -> RenderedNotification:
        """Render a named template for one address.

        Context values are stringified (``None`` becomes empty) and
        HTML-escaped for the html body only.
        """
        template = self._templates.get(template_id)
        if template is None:
            raise InvalidInput(f"Unknown notification template {template_id!r}")
        if not is_usable_address(to):
            raise InvalidInput(f"{to!r} is not a usable email address")

        plain = {k: "" if v is None else str(v) for k, v in context.items()}
        escaped = {k: html.escape(v) for k, v in plain.items()}
        return RenderedNotification(
            to=to.strip(),
            subject=render(template["subject"], plain),
            text=render(template["text"], plain),
            html=render(template["html"], escaped),
            metadata=dict(context),
        )
