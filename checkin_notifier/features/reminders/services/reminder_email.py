"""
Check-in reminder email content.

Subjects depend only on the secret title and the reminder kind, so every
retry of the same reminder maps onto the same dead-letter row.
"""

from dataclasses import dataclass
from html import escape

from checkin_notifier.config import settings
from checkin_notifier.features.reminders.domain import CheckInSubject, ReminderKind

URGENCY_LABELS: dict[ReminderKind, str] = {
    ReminderKind.ONE_HOUR: "CRITICAL",
    ReminderKind.TWELVE_HOURS: "URGENT",
    ReminderKind.TWENTY_FOUR_HOURS: "URGENT",
    ReminderKind.THREE_DAYS: "Important",
    ReminderKind.SEVEN_DAYS: "Important",
    ReminderKind.TWENTY_FIVE_PERCENT: "Scheduled",
    ReminderKind.FIFTY_PERCENT: "Scheduled",
}

TIME_TEXT: dict[ReminderKind, str] = {
    ReminderKind.ONE_HOUR: "1 hour",
    ReminderKind.TWELVE_HOURS: "12 hours",
    ReminderKind.TWENTY_FOUR_HOURS: "24 hours",
    ReminderKind.THREE_DAYS: "3 days",
    ReminderKind.SEVEN_DAYS: "7 days",
    ReminderKind.TWENTY_FIVE_PERCENT: "a quarter of your check-in period",
    ReminderKind.FIFTY_PERCENT: "half of your check-in period",
}


@dataclass(slots=True, frozen=True)
class ReminderEmail:
    subject: str
    html: str
    text: str


def reminder_subject(title: str, kind: ReminderKind) -> str:
    return f"{URGENCY_LABELS[kind]}: Check-in required within {TIME_TEXT[kind]} - {title}"


def compose_reminder(subject: CheckInSubject, kind: ReminderKind) -> ReminderEmail:
    check_in_url = settings.check_in_url()
    time_text = TIME_TEXT[kind]
    greeting = subject.owner_name or "there"
    urgent = kind in (
        ReminderKind.ONE_HOUR,
        ReminderKind.TWELVE_HOURS,
        ReminderKind.TWENTY_FOUR_HOURS,
    )

    text_lines = [
        f"Hi {greeting},",
        "",
        f'You need to check in for "{subject.title}" within {time_text}.',
    ]
    if urgent:
        text_lines.append("Time is running out! Check in now to prevent automatic disclosure.")
    text_lines += [
        "",
        f"Check in: {check_in_url}",
        "",
        "If you don't check in on time, your secret will be disclosed to your "
        "designated contacts as scheduled.",
    ]

    html = (
        f"<h2>Check-in Reminder</h2>"
        f"<p>Hi {escape(greeting)},</p>"
        f"<p>You need to check in for <strong>{escape(subject.title)}</strong> "
        f"within {escape(time_text)}.</p>"
        + ("<p><strong>Time is running out!</strong></p>" if urgent else "")
        + f'<p><a href="{escape(check_in_url)}">Check In Now</a></p>'
        "<p>If you don't check in on time, your secret will be disclosed to your "
        "designated contacts as scheduled.</p>"
    )

    return ReminderEmail(
        subject=reminder_subject(subject.title, kind),
        html=html,
        text="\n".join(text_lines),
    )


def compose_generic_reminder(subject_line: str) -> ReminderEmail:
    """Body for an operator re-send, where only the stored subject line is known."""
    check_in_url = settings.check_in_url()
    text = (
        "This is a reminder that one of your secrets needs a check-in.\n\n"
        f"Check in: {check_in_url}"
    )
    html = (
        "<h2>Check-in Reminder</h2>"
        "<p>This is a reminder that one of your secrets needs a check-in.</p>"
        f'<p><a href="{escape(check_in_url)}">Check In Now</a></p>'
    )
    return ReminderEmail(subject=subject_line, html=html, text=text)
