"""
Newsletter: subscription validation, the digest e-mail and its delivery.
"""

import logging
import re
import smtplib
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from email.message import EmailMessage
from html import escape

from .config import Settings
from .notes import format_date, plain_text, slugify, summarize

log = logging.getLogger(__name__)

MAX_TOPICS = 10
DEFAULT_FREQUENCY = "weekly"
FREQUENCIES = ("weekly", "monthly")
PERIOD_LABELS = {"week": "Past Week", "month": "Past Month"}
PERIOD_DAYS = {"week": 7, "month": 30}
SUBJECTS = {
    "week": "Weekly Newsletter - Notes & Articles",
    "month": "Monthly Newsletter - Notes & Articles",
}
EXCERPT_LEN = 300
EMAIL_RE = re.compile(
    r"^[a-zA-Z0-9.!#$%&'*+/=?^_`{|}~-]+"
    r"@[a-zA-Z0-9](?:[a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?"
    r"(?:\.[a-zA-Z0-9](?:[a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?)*$"
)


class MailConfigError(RuntimeError):
    pass


################################################################################
# Subscription form
################################################################################
def _field(form, key: str) -> str:
    return (form.get(key) or "").strip()


def _topics(form) -> list[str]:
    if hasattr(form, "getlist"):
        raw = form.getlist("topics")
    else:
        raw = form.get("topics") or []
        raw = [raw] if isinstance(raw, str) else list(raw)
    return [t.strip() for t in raw if t and t.strip()]


def validate_subscription(form, topic_titles: list[str]) -> tuple[dict, dict]:
    """
    Return `(data, errors)`. *data* is the cleaned subscriber payload;
    *errors* maps field names to messages and is empty when valid.
    Topics that are not folder titles are dropped silently.
    """
    data = {
        "first_name": _field(form, "first_name"),
        "last_name": _field(form, "last_name"),
        "email": _field(form, "email").lower(),
        "frequency": _field(form, "frequency") or DEFAULT_FREQUENCY,
        "topics": [t for t in _topics(form) if t in topic_titles][:MAX_TOPICS],
    }

    errors = {}
    if not data["first_name"]:
        errors["first_name"] = "First name is required"
    if not data["last_name"]:
        errors["last_name"] = "Last name is required"
    if not data["email"]:
        errors["email"] = "Email is required"
    elif not EMAIL_RE.match(data["email"]):
        errors["email"] = "Please provide a valid email address"
    if data["frequency"] not in FREQUENCIES:
        errors["frequency"] = "Please select a valid frequency"
    return data, errors


################################################################################
# Digest HTML
################################################################################
DIGEST_CSS = """
        body{font-family:-apple-system,BlinkMacSystemFont,'Segoe UI',Roboto,'Helvetica Neue',Arial,sans-serif;line-height:1.6;color:#333;max-width:600px;margin:0 auto;padding:20px;background-color:#f5f5f5}
        .container{background-color:#fff;border-radius:8px;padding:30px;box-shadow:0 2px 4px rgba(0,0,0,.1)}
        h1{color:#363636;font-size:28px;margin-bottom:10px}
        h2{color:#363636;font-size:22px;margin-top:30px;margin-bottom:15px;border-bottom:2px solid #3273dc;padding-bottom:5px}
        .note{margin-bottom:25px;padding-bottom:20px;border-bottom:1px solid #e0e0e0}
        .note:last-child{border-bottom:none}
        .note-title{font-size:18px;font-weight:600;margin-bottom:8px}
        .note-title a{color:#3273dc;text-decoration:none}
        .note-excerpt{color:#4a4a4a;margin-bottom:8px}
        .note-meta{font-size:14px;color:#7a7a7a;margin-top:8px}
        .tag{display:inline-block;background-color:#f5f5f5;color:#4a4a4a;padding:3px 10px;border-radius:4px;font-size:12px;margin-right:5px;margin-bottom:5px}
        .footer{margin-top:40px;padding-top:20px;border-top:1px solid #e0e0e0;text-align:center;font-size:12px;color:#7a7a7a}
        .footer a{color:#3273dc;text-decoration:none}
        .no-notes{text-align:center;color:#7a7a7a;padding:20px}
"""


def digest_note_url(note: dict, *, site_url: str) -> str:
    folder = note.get("folder")
    if folder:
        return f"{site_url}/{slugify(folder['title'])}/{slugify(note.get('title'))}"
    return f"{site_url}/notes/{note.get('note_id')}"


def digest_excerpt(note: dict) -> str:
    if note.get("link_excerpt"):
        return summarize(note["link_excerpt"], EXCERPT_LEN) or ""
    text = plain_text(note.get("body")).strip()
    return text if len(text) <= EXCERPT_LEN else text[:EXCERPT_LEN] + "..."


def _note_html(note: dict, *, site_url: str) -> str:
    url = digest_note_url(note, site_url=site_url)
    excerpt = digest_excerpt(note)
    excerpt_html = (
        f'\n            <div class="note-excerpt">{escape(excerpt)}</div>' if excerpt else ""
    )
    folder = note.get("folder")
    folder_html = f" | {escape(folder['title'])}" if folder else ""
    tags = note.get("tags") or []
    tags_html = ""
    if tags:
        badges = "".join(f'<span class="tag">{escape(t)}</span>' for t in tags)
        tags_html = f'\n            <div class="tags">{badges}</div>'

    return f"""
        <div class="note">
            <div class="note-title"><a href="{escape(url)}">{escape(note.get("title") or "")}</a></div>{excerpt_html}
            <div class="note-meta">{escape(format_date(note.get("created_time")))}{folder_html}</div>{tags_html}
        </div>"""


def render_digest(
    notes: list[dict], article_notes: list[dict], period: str, *, site_url: str
) -> str:
    """
    Complete HTML document for one newsletter run. *period* is `week` or
    `month`. All note fields are escaped; no I/O happens here.
    """
    label = PERIOD_LABELS.get(period, PERIOD_LABELS["week"])
    parts = [
        f"""<!DOCTYPE html>
<html>
<head>
    <meta charset="UTF-8">
    <meta name="viewport" content="width=device-width, initial-scale=1.0">
    <style>{DIGEST_CSS}    </style>
</head>
<body>
    <div class="container">
        <h1>Newsletter - {label}</h1>
        <p style="color:#7a7a7a;margin-bottom:20px;">Here are the latest notes and articles</p>"""
    ]

    if article_notes:
        parts.append("\n        <h2>Articles</h2>")
        parts.extend(_note_html(n, site_url=site_url) for n in article_notes)

    if notes:
        parts.append(f"\n        <h2>Bookmarks &amp; Notes ({len(notes)})</h2>")
        parts.extend(_note_html(n, site_url=site_url) for n in notes)
    else:
        parts.append(
            f'\n        <div class="no-notes">No notes found for the {label.lower()}.</div>'
        )

    online = f"{site_url}/newsletter?period={escape(period)}"
    parts.append(
        f"""
        <div class="footer">
            <p>View this newsletter online: <a href="{online}">{site_url}/newsletter</a></p>
            <p>This is an automated newsletter. To unsubscribe, please contact the administrator.</p>
        </div>
    </div>
</body>
</html>
"""
    )
    return "".join(parts)


################################################################################
# Delivery
################################################################################
def is_monday(day: date) -> bool:
    return day.weekday() == 0


def is_first_monday(day: date) -> bool:
    return is_monday(day) and day.day <= 7


def digest_window(period: str, now: datetime | None = None) -> datetime:
    """Start of the period that ends at *now*."""
    now = now or datetime.now(timezone.utc)
    return now - timedelta(days=PERIOD_DAYS[period])


def split_articles(notes: list[dict], articles_folder_id: str) -> tuple[list, list]:
    """`(regular, articles)` by parent folder."""
    regular = [n for n in notes if n.get("parent_id") != articles_folder_id]
    articles = [n for n in notes if n.get("parent_id") == articles_folder_id]
    return regular, articles


class Mailer:
    def __init__(self, settings: Settings):
        if not settings.mail_configured:
            raise MailConfigError(
                "Email configuration missing. Set EMAIL_HOST, EMAIL_USER, "
                "EMAIL_PASS and EMAIL_FROM."
            )
        self.settings = settings

    def _connect(self) -> smtplib.SMTP:
        s = self.settings
        if s.email_secure:
            smtp = smtplib.SMTP_SSL(s.email_host, s.email_port, timeout=30)
        else:
            smtp = smtplib.SMTP(s.email_host, s.email_port, timeout=30)
            smtp.starttls()
        smtp.login(s.email_user, s.email_pass)
        return smtp

    def send(self, to: str, subject: str, html: str) -> bool:
        msg = EmailMessage()
        msg["From"] = self.settings.email_from or self.settings.email_user
        msg["To"] = to
        msg["Subject"] = subject
        msg.set_content("This newsletter is best viewed in an HTML mail client.")
        msg.add_alternative(html, subtype="html")
        try:
            with self._connect() as smtp:
                smtp.send_message(msg)
        except (smtplib.SMTPException, OSError) as exc:
            log.warning("Failed to send newsletter to %s: %s", to, exc)
            return False
        return True


@dataclass
class SendReport:
    sent: int = 0
    failed: int = 0
    skipped: int = 0


def _wants(sub: dict, period: str) -> bool:
    return (sub.get("frequency") or "") in (period, f"{period}ly")


def send_newsletters(
    store, mailer: Mailer, settings: Settings, *, today: date, force: bool = False
) -> SendReport:
    """
    Weekly subscribers get a digest every Monday, monthly ones on the first
    Monday of the month. *force* ignores the calendar.
    """
    report = SendReport()
    if not (force or is_monday(today)):
        log.info("Not Monday, nothing to send")
        return report

    subscribers = store.subscribers()
    periods = ["week"]
    if force or is_first_monday(today):
        periods.append("month")
    else:
        report.skipped += sum(1 for s in subscribers if _wants(s, "month"))

    for period in periods:
        recipients = [s for s in subscribers if _wants(s, period)]
        if not recipients:
            continue
        notes = store.notes_since(digest_window(period))
        regular, articles = split_articles(notes, settings.articles_folder_id)
        log.info(
            "%s digest: %d notes, %d articles, %d recipients",
            period,
            len(regular),
            len(articles),
            len(recipients),
        )
        html = render_digest(regular, articles, period, site_url=settings.site_url)
        for sub in recipients:
            if mailer.send(sub["email"], SUBJECTS[period], html):
                report.sent += 1
            else:
                report.failed += 1
    return report
