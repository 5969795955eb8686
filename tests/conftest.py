"""
tests/conftest.py
"""
from __future__ import annotations

from typing import Generator

import pytest
from flask.testing import FlaskClient

from hellonotes.app import app
from hellonotes.config import Settings
from hellonotes.data import DuplicateSubscriber, NoteStore, UpstreamError
from hellonotes.notes import parse_timestamp

HOME_ID = "aaaa0000aaaa0000aaaa0000aaaa0000"
ARTICLES_ID = "bbbb0000bbbb0000bbbb0000bbbb0000"
NODE_ID = "cccc0000cccc0000cccc0000cccc0000"
DB_ID = "dddd0000dddd0000dddd0000dddd0000"

SETTINGS = Settings(
    postgrest_host="http://postgrest.test",
    site_url="https://notes.test",
    site_name="Test Notes",
    home_article_id=HOME_ID,
    articles_folder_id=ARTICLES_ID,
    fetch_workers=2,
)


# ───────────────────────── fake PostgREST ─────────────────────────────
class FakeApi:
    """
    Stands in for `PostgrestClient`: understands the handful of PostgREST
    filters the store sends (`eq.`, `neq.`, `gte.`, `plfts(english).`,
    `order`, `limit`).
    """

    def __init__(self, folders, notes, resources=(), subscribers=()):
        self.tables = {
            "folders": list(folders),
            "notes": list(notes),
            "resources": list(resources),
            "subscribers": list(subscribers),
        }
        self.calls: list[tuple[str, dict]] = []
        self.posted: list[tuple[str, dict]] = []
        self.fail = False
        self.post_status = 201
        self.closed = False

    def get(self, path: str, **params) -> list:
        self.calls.append((path, params))
        if self.fail:
            raise UpstreamError(f"GET /{path} failed – HTTP 503", status=503)
        rows = [dict(r) for r in self.tables[path]]
        for key, value in params.items():
            if key in ("select", "order", "limit"):
                continue
            op, _, arg = str(value).partition(".")
            if op == "eq":
                rows = [r for r in rows if str(r.get(key)) == arg]
            elif op == "neq":
                rows = [r for r in rows if str(r.get(key)) != arg]
            elif op == "gte":
                since = parse_timestamp(arg)
                rows = [r for r in rows if parse_timestamp(r[key]) >= since]
            elif op == "plfts(english)":
                q = arg.lower()
                rows = [
                    r
                    for r in rows
                    if q in f"{r.get('title')} {r.get('link_excerpt') or ''}".lower()
                ]

        order = params.get("order")
        if order:
            col, _, direction = order.partition(".")
            rows.sort(key=lambda r: r.get(col) or "", reverse=direction == "desc")
        if "limit" in params:
            rows = rows[: int(params["limit"])]
        return rows

    def post(self, path: str, payload: dict) -> None:
        self.posted.append((path, payload))
        if self.fail:
            raise UpstreamError(f"POST /{path} failed – HTTP 503", status=503)
        if any(s["email"] == payload.get("email") for s in self.tables[path]):
            raise DuplicateSubscriber("already subscribed", status=409)
        self.tables[path].append(dict(payload))

    def close(self) -> None:
        self.closed = True


def make_note(note_id, title, created, *, parent=NODE_ID, body="", tags=(), **extra):
    return {
        "note_id": note_id,
        "parent_id": parent,
        "title": title,
        "body": body,
        "created_time": created,
        "tags": list(tags),
        "link_excerpt": None,
        "link_image": None,
        **extra,
    }


def sample_folders() -> list[dict]:
    return [
        {"folder_id": ARTICLES_ID, "title": "articles"},
        {"folder_id": DB_ID, "title": "Databases"},
        {"folder_id": NODE_ID, "title": "Node.js"},
    ]


def sample_notes() -> list[dict]:
    notes = [
        make_note(
            HOME_ID,
            "Welcome",
            "2023-01-01T08:00:00Z",
            parent=ARTICLES_ID,
            body="Welcome to **my notes**.",
        ),
        make_note(
            "a1",
            "Why I Keep Notes",
            "2024-03-10T09:00:00Z",
            parent=ARTICLES_ID,
            body="A short teaser.\n---\nThe long part of the article.",
            tags=["writing"],
        ),
        make_note(
            "d1",
            "Postgres Indexes",
            "2024-02-01T10:00:00Z",
            parent=DB_ID,
            body="B-tree by default.",
            tags=["postgres", "sql"],
            link_excerpt="All about indexes in PostgreSQL",
            link_image="https://img.test/pg.png",
        ),
        make_note(
            "img1",
            "Screenshot Note",
            "2024-02-15T12:00:00Z",
            body="Look: ![shot.png](:/abc123) done",
            tags=["js"],
            link_image="/relative/thumb.png",
        ),
    ]
    # 25 notes across January and February 2024
    for i in range(25):
        month = 1 if i < 12 else 2
        notes.append(
            make_note(
                f"n{i:02d}",
                f"Node Tip {i:02d}",
                f"2024-{month:02d}-{(i % 12) + 1:02d}T08:00:00Z",
                body=f"Tip number {i}.",
                tags=["js"] if i % 2 == 0 else ["api", "js"],
            )
        )
    return notes


# ───────────────────────── fixtures ───────────────────────────────────
@pytest.fixture
def api() -> FakeApi:
    return FakeApi(
        sample_folders(),
        sample_notes(),
        resources=[{"title": "shot.png", "contents": "QUJD"}],
        subscribers=[
            {"email": "weekly@example.com", "frequency": "weekly"},
            {"email": "monthly@example.com", "frequency": "monthly"},
            {"email": "old@example.com", "frequency": "week"},
        ],
    )


@pytest.fixture
def store(api) -> NoteStore:
    return NoteStore(api, SETTINGS)


@pytest.fixture(autouse=True)
def _configure_app(api, monkeypatch) -> None:
    """Every test talks to a fresh fake API through the store factory."""
    monkeypatch.setitem(app.config, "TESTING", True)
    monkeypatch.setitem(app.config, "SETTINGS", SETTINGS)
    monkeypatch.setitem(
        app.config, "NOTE_STORE_FACTORY", lambda settings: NoteStore(api, settings)
    )


@pytest.fixture
def client() -> Generator[FlaskClient, None, None]:
    """
    Gives each test an isolated application context *and* test client.

    Yields:
        `flask.testing.FlaskClient`
    """
    with app.test_client() as client:
        with app.app_context():
            yield client
