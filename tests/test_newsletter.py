"""
tests/test_newsletter.py
"""
from __future__ import annotations

import smtplib
from dataclasses import replace
from datetime import date, datetime, timedelta, timezone

import pytest
from werkzeug.datastructures import MultiDict

import hellonotes.newsletter as newsletter
from hellonotes.newsletter import (
    MAX_TOPICS,
    Mailer,
    MailConfigError,
    digest_note_url,
    digest_window,
    is_first_monday,
    is_monday,
    render_digest,
    send_newsletters,
    split_articles,
    validate_subscription,
)
from conftest import ARTICLES_ID, NODE_ID, SETTINGS, make_note

TOPICS = ["Databases", "Node.js"]
MAIL_SETTINGS = replace(
    SETTINGS,
    email_host="smtp.test",
    email_user="bot@notes.test",
    email_pass="secret",
    email_from="Notes <bot@notes.test>",
)


# ───────────────────────── subscription form ──────────────────────────
def _form(**overrides) -> MultiDict:
    data = {
        "first_name": " Ada ",
        "last_name": "Lovelace",
        "email": "Ada@Example.com",
        "frequency": "monthly",
    }
    data.update(overrides)
    return MultiDict(data)


def test_valid_subscription_is_cleaned():
    form = _form()
    form.setlist("topics", ["Node.js", "Cooking", "Databases"])
    data, errors = validate_subscription(form, TOPICS)
    assert errors == {}
    assert data == {
        "first_name": "Ada",
        "last_name": "Lovelace",
        "email": "ada@example.com",
        "frequency": "monthly",
        "topics": ["Node.js", "Databases"],       # unknown topic dropped
    }


def test_frequency_defaults_to_weekly():
    data, errors = validate_subscription(_form(frequency=""), TOPICS)
    assert errors == {}
    assert data["frequency"] == "weekly"


def test_topics_capped():
    titles = [f"T{i}" for i in range(15)]
    form = _form()
    form.setlist("topics", titles)
    data, _ = validate_subscription(form, titles)
    assert data["topics"] == titles[:MAX_TOPICS]


def test_plain_dict_form_accepted():
    data, errors = validate_subscription(
        {"first_name": "A", "last_name": "B", "email": "a@b.co", "topics": "Node.js"},
        TOPICS,
    )
    assert errors == {}
    assert data["topics"] == ["Node.js"]


@pytest.mark.parametrize(
    "overrides,field",
    [
        ({"first_name": "  "}, "first_name"),
        ({"last_name": ""}, "last_name"),
        ({"email": ""}, "email"),
        ({"email": "not-an-email"}, "email"),
        ({"email": "a@b@c"}, "email"),
        ({"frequency": "daily"}, "frequency"),
    ],
)
def test_invalid_subscription(overrides, field):
    _, errors = validate_subscription(_form(**overrides), TOPICS)
    assert list(errors) == [field]


# ───────────────────────── digest HTML ────────────────────────────────
def test_digest_note_url():
    note = {**make_note("n1", "Tip One", "2024-01-01T00:00:00Z"), "folder": {"title": "Node.js"}}
    assert digest_note_url(note, site_url="https://x.test") == "https://x.test/nodejs/tip-one"
    orphan = make_note("n2", "Lost", "2024-01-01T00:00:00Z")
    assert digest_note_url(orphan, site_url="https://x.test") == "https://x.test/notes/n2"


def test_digest_escapes_note_fields():
    evil = {
        **make_note(
            "n1",
            "<script>alert(1)</script>",
            "2024-01-05T10:00:00Z",
            body="<b>bold</b> & more",
            tags=['"quoted"'],
        ),
        "folder": {"title": "A & B"},
    }
    html = render_digest([evil], [], "week", site_url="https://x.test")
    assert "<script>alert(1)</script>" not in html
    assert "&lt;script&gt;alert(1)&lt;/script&gt;" in html
    assert "A &amp; B" in html
    assert "&quot;quoted&quot;" in html
    assert "5 January 2024" in html


def test_digest_escapes_unparsable_dates():
    note = {**make_note("n1", "Tip", "<b>soon</b>"), "folder": None}
    html = render_digest([note], [], "week", site_url="https://x.test")
    assert "<b>soon</b>" not in html
    assert "&lt;b&gt;soon&lt;/b&gt;" in html


def test_digest_sections():
    note = {**make_note("n1", "Tip", "2024-01-05T10:00:00Z", body="x"), "folder": None}
    article = make_note("a1", "Essay", "2024-01-06T10:00:00Z", parent=ARTICLES_ID)

    html = render_digest([note], [article], "month", site_url="https://x.test")
    assert "Newsletter - Past Month" in html
    assert "<h2>Articles</h2>" in html
    assert "Bookmarks &amp; Notes (1)" in html
    assert html.index("Essay") < html.index("Tip")
    assert "https://x.test/newsletter?period=month" in html


def test_digest_without_notes():
    html = render_digest([], [], "week", site_url="https://x.test")
    assert "No notes found for the past week." in html
    assert "<h2>Articles</h2>" not in html
    assert "Bookmarks" not in html


def test_digest_excerpt_is_truncated():
    body = "word " * 200
    note = {**make_note("n1", "Long", "2024-01-05T10:00:00Z", body=body), "folder": None}
    html = render_digest([note], [], "week", site_url="https://x.test")
    excerpt = html.split('<div class="note-excerpt">')[1].split("</div>")[0]
    assert excerpt.endswith("...")
    assert len(excerpt) == 303


# ───────────────────────── calendar ───────────────────────────────────
def test_monday_rules():
    assert is_monday(date(2024, 1, 8))
    assert not is_monday(date(2024, 1, 9))
    assert is_first_monday(date(2024, 1, 1))
    assert not is_first_monday(date(2024, 1, 8))
    assert not is_first_monday(date(2024, 1, 2))


def test_digest_window():
    now = datetime(2024, 3, 31, 12, tzinfo=timezone.utc)
    assert digest_window("week", now) == now - timedelta(days=7)
    assert digest_window("month", now) == now - timedelta(days=30)


def test_split_articles():
    notes = [
        make_note("a", "A", "2024-01-01T00:00:00Z", parent=ARTICLES_ID),
        make_note("b", "B", "2024-01-01T00:00:00Z", parent=NODE_ID),
    ]
    regular, articles = split_articles(notes, ARTICLES_ID)
    assert [n["note_id"] for n in regular] == ["b"]
    assert [n["note_id"] for n in articles] == ["a"]


# ───────────────────────── delivery ───────────────────────────────────
class FakeSMTP:
    instances: list["FakeSMTP"] = []

    def __init__(self, host, port, timeout=None):
        self.host, self.port = host, port
        self.tls = False
        self.login_args = None
        self.sent = []
        FakeSMTP.instances.append(self)

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def starttls(self):
        self.tls = True

    def login(self, user, password):
        self.login_args = (user, password)

    def send_message(self, msg):
        if msg["To"] == "broken@example.com":
            raise smtplib.SMTPRecipientsRefused({msg["To"]: (550, b"no")})
        self.sent.append(msg)


@pytest.fixture
def fake_smtp(monkeypatch):
    FakeSMTP.instances = []
    monkeypatch.setattr(newsletter.smtplib, "SMTP", FakeSMTP)
    return FakeSMTP


def test_mailer_requires_configuration():
    with pytest.raises(MailConfigError):
        Mailer(SETTINGS)


def test_mailer_sends_html_over_starttls(fake_smtp):
    ok = Mailer(MAIL_SETTINGS).send("ada@example.com", "Hi", "<p>digest</p>")
    assert ok
    smtp = fake_smtp.instances[0]
    assert (smtp.host, smtp.port, smtp.tls) == ("smtp.test", 587, True)
    assert smtp.login_args == ("bot@notes.test", "secret")
    msg = smtp.sent[0]
    assert msg["From"] == "Notes <bot@notes.test>"
    assert msg["Subject"] == "Hi"
    assert msg.get_body(preferencelist=("html",)).get_content().strip() == "<p>digest</p>"


def test_mailer_reports_failures(fake_smtp):
    assert Mailer(MAIL_SETTINGS).send("broken@example.com", "Hi", "<p/>") is False


class RecordingMailer:
    def __init__(self, fail_for=()):
        self.sent: list[tuple[str, str]] = []
        self.fail_for = set(fail_for)

    def send(self, to, subject, html):
        if to in self.fail_for:
            return False
        self.sent.append((to, subject))
        return True


def test_regular_monday_sends_weekly_only(store):
    mailer = RecordingMailer()
    report = send_newsletters(store, mailer, SETTINGS, today=date(2024, 1, 8))
    assert sorted(to for to, _ in mailer.sent) == ["old@example.com", "weekly@example.com"]
    assert {subject for _, subject in mailer.sent} == {"Weekly Newsletter - Notes & Articles"}
    assert (report.sent, report.failed, report.skipped) == (2, 0, 1)


def test_first_monday_sends_both(store):
    mailer = RecordingMailer(fail_for={"old@example.com"})
    report = send_newsletters(store, mailer, SETTINGS, today=date(2024, 1, 1))
    assert ("monthly@example.com", "Monthly Newsletter - Notes & Articles") in mailer.sent
    assert (report.sent, report.failed, report.skipped) == (2, 1, 0)


def test_not_monday_sends_nothing(store, api):
    mailer = RecordingMailer()
    report = send_newsletters(store, mailer, SETTINGS, today=date(2024, 1, 2))
    assert mailer.sent == []
    assert report.sent == 0
    assert api.calls == []


def test_force_ignores_calendar(store):
    mailer = RecordingMailer()
    report = send_newsletters(store, mailer, SETTINGS, today=date(2024, 1, 2), force=True)
    assert report.sent == 3
