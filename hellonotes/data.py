"""
PostgREST access: a thin HTTP client plus the note store the views use.
"""

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime
from typing import Callable

import requests

from .config import Settings
from .notes import (
    clean_link_image,
    inline_resources,
    normalize_note,
    parse_timestamp,
    slugify,
)

log = logging.getLogger(__name__)

RECENT_LIMIT = 5


class UpstreamError(Exception):
    """PostgREST unreachable or answered with an error."""

    def __init__(self, message: str, *, status: int | None = None):
        super().__init__(message)
        self.status = status


class DuplicateSubscriber(UpstreamError):
    pass


class InvalidSubscriber(UpstreamError):
    pass


################################################################################
# HTTP client
################################################################################
class PostgrestClient:
    """
    One `requests.Session` per calling thread. A *session* passed in is
    shared by all threads instead.
    """

    def __init__(self, settings: Settings, session: requests.Session | None = None):
        self.base = settings.postgrest_host
        self.timeout = settings.postgrest_timeout
        self.headers = {"Accept": "application/json"}
        if settings.postgrest_token:
            self.headers["Authorization"] = settings.postgrest_token
        self._shared = session
        self._local = threading.local()
        self._sessions: list[requests.Session] = []
        self._lock = threading.Lock()

    @property
    def session(self) -> requests.Session:
        s = getattr(self._local, "session", None)
        if s is None:
            s = self._shared if self._shared is not None else requests.Session()
            s.headers.update(self.headers)
            self._local.session = s
            with self._lock:
                if all(s is not known for known in self._sessions):
                    self._sessions.append(s)
        return s

    def get(self, path: str, **params) -> list:
        url = f"{self.base}/{path.lstrip('/')}"
        log.debug("GET %s %s", url, params)
        try:
            resp = self.session.get(url, params=params, timeout=self.timeout)
            resp.raise_for_status()
            return resp.json()
        except requests.HTTPError as exc:
            raise UpstreamError(
                f"GET /{path} failed – {exc}", status=exc.response.status_code
            ) from exc
        except (requests.RequestException, ValueError) as exc:
            raise UpstreamError(f"GET /{path} failed – {exc}") from exc

    def post(self, path: str, payload: dict) -> None:
        url = f"{self.base}/{path.lstrip('/')}"
        log.debug("POST %s", url)
        try:
            resp = self.session.post(url, json=payload, timeout=self.timeout)
        except requests.RequestException as exc:
            raise UpstreamError(f"POST /{path} failed – {exc}") from exc

        if resp.status_code == 409:
            raise DuplicateSubscriber("already subscribed", status=409)
        if resp.status_code == 400:
            raise InvalidSubscriber("payload rejected", status=400)
        if not resp.ok:
            raise UpstreamError(
                f"POST /{path} failed – HTTP {resp.status_code}",
                status=resp.status_code,
            )

    def close(self) -> None:
        with self._lock:
            sessions, self._sessions = self._sessions, []
        for s in sessions:
            s.close()


################################################################################
# Note store
################################################################################
class NoteStore:
    """
    Site-level queries. Every note leaving the store is normalized, has its
    embedded resources inlined and its link image cleaned.
    """

    def __init__(self, client: PostgrestClient, settings: Settings):
        self.client = client
        self.settings = settings

    # -- fan-out -------------------------------------------------------------
    def gather(self, *calls: Callable[[], object]) -> list:
        """Run independent calls concurrently, results in call order."""
        if len(calls) == 1:
            return [calls[0]()]
        workers = min(self.settings.fetch_workers, len(calls)) or 1
        with ThreadPoolExecutor(max_workers=workers) as pool:
            futures = [pool.submit(c) for c in calls]
            return [f.result() for f in futures]

    def _prepare(self, rows: list[dict], *, inline: bool = True) -> list[dict]:
        if not rows:
            return []
        if not inline:
            return [clean_link_image(normalize_note(r)) for r in rows]

        def one(row):
            note = inline_resources(
                row, self.resource, max_workers=self.settings.fetch_workers
            )
            return clean_link_image(note)

        return self.gather(*(lambda r=r: one(r) for r in rows))

    def _attach_folders(self, notes: list[dict], folders: list[dict]) -> list[dict]:
        by_id = {f["folder_id"]: f for f in folders}
        return [{**n, "folder": by_id.get(n.get("parent_id"))} for n in notes]

    # -- folders -------------------------------------------------------------
    def folders(self) -> list[dict]:
        return self.client.get("folders", order="title")

    def folder(self, folder_id: str) -> dict | None:
        rows = self.client.get("folders", folder_id=f"eq.{folder_id}")
        return rows[0] if rows else None

    def folder_by_slug(self, slug: str, *, folders: list[dict] | None = None) -> dict | None:
        if folders is None:
            folders = self.folders()
        return next((f for f in folders if slugify(f["title"]) == slug), None)

    def topic_folders(self) -> list[dict]:
        return [
            f for f in self.folders() if f["folder_id"] != self.settings.articles_folder_id
        ]

    # -- notes ---------------------------------------------------------------
    def notes(self, folder_id: str, *, inline: bool = True) -> list[dict]:
        rows = self.client.get(
            "notes",
            select="*",
            parent_id=f"eq.{folder_id}",
            order="created_time.desc",
            note_id=f"neq.{self.settings.home_article_id}",
        )
        return self._prepare(rows, inline=inline)

    def note_by_slug(self, folder_id: str, slug: str) -> dict | None:
        return next((n for n in self.notes(folder_id) if slugify(n["title"]) == slug), None)

    def note_by_id(self, note_id: str, *, inline: bool = True) -> dict | None:
        rows = self.client.get("notes", select="*", note_id=f"eq.{note_id}")
        notes = self._prepare(rows, inline=inline)
        return notes[0] if notes else None

    def home_article(self) -> dict | None:
        return self.note_by_id(self.settings.home_article_id)

    def article_notes(self) -> list[dict]:
        return self.notes(self.settings.articles_folder_id)

    def recent_notes(self) -> list[dict]:
        def fetch():
            return self._prepare(
                self.client.get(
                    "notes",
                    select="*",
                    order="created_time.desc",
                    limit=RECENT_LIMIT,
                    note_id=f"neq.{self.settings.home_article_id}",
                    parent_id=f"neq.{self.settings.articles_folder_id}",
                )
            )

        notes, folders = self.gather(fetch, self.folders)
        return self._attach_folders(notes, folders)

    def search(self, query: str) -> list[dict]:
        rows = self.client.get(
            "notes",
            select="*",
            link_excerpt_tsv=f"plfts(english).{query}",
            order="created_time.desc",
        )
        notes, folders = self._prepare(rows, inline=False), self.folders()
        return self._attach_folders(notes, folders)

    def notes_since(self, when: datetime) -> list[dict]:
        def fetch():
            return self._prepare(
                self.client.get(
                    "notes",
                    select="*",
                    created_time=f"gte.{parse_timestamp(when).isoformat()}",
                    order="created_time.desc",
                    note_id=f"neq.{self.settings.home_article_id}",
                )
            )

        notes, folders = self.gather(fetch, self.folders)
        return self._attach_folders(notes, folders)

    # -- resources -----------------------------------------------------------
    def resource(self, filename: str) -> str | None:
        rows = self.client.get("resources", title=f"eq.{filename}")
        if rows and rows[0].get("contents"):
            return rows[0]["contents"]
        log.warning("resource %s not found, leaving reference", filename)
        return None

    # -- subscribers ---------------------------------------------------------
    def subscribers(self) -> list[dict]:
        return self.client.get("subscribers", select="*")

    def add_subscriber(self, data: dict) -> None:
        self.client.post("subscribers", data)

    def close(self) -> None:
        self.client.close()
