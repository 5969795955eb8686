"""
Runtime settings, read once at startup.
"""

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping

ENV_FILE = Path.cwd() / ".env"

DEFAULT_SITE_URL = "https://notes.hello-data.nl"
DEFAULT_HOME_ARTICLE = "36ec96bfba5b4c10838d684de6952d4c"
DEFAULT_ARTICLES_FOLDER = "b7bc7b8a876e4254ad9865f91ddc8f70"


@dataclass(frozen=True)
class Settings:
    postgrest_host: str
    postgrest_token: str = ""
    postgrest_timeout: float = 10.0
    site_url: str = DEFAULT_SITE_URL
    site_name: str = "Hello Data Notes"
    home_article_id: str = DEFAULT_HOME_ARTICLE
    articles_folder_id: str = DEFAULT_ARTICLES_FOLDER
    fetch_workers: int = 8
    email_host: str = ""
    email_port: int = 587
    email_secure: bool = False
    email_user: str = ""
    email_pass: str = ""
    email_from: str = ""

    @property
    def mail_configured(self) -> bool:
        return bool(self.email_host and self.email_user and self.email_pass)


def read_env_file(path: Path = ENV_FILE) -> dict[str, str]:
    env = {}
    if not path.exists():
        return env
    for ln in path.read_text().splitlines():
        ln = ln.strip()
        if not ln or ln.startswith("#") or "=" not in ln:
            continue
        k, v = ln.split("=", 1)
        env[k.strip()] = v.strip().strip("\"'")
    return env


def _int(raw: str | None, default: int) -> int:
    try:
        return int(raw) if raw else default
    except ValueError:
        return default


def _float(raw: str | None, default: float) -> float:
    try:
        return float(raw) if raw else default
    except ValueError:
        return default


def load_settings(
    environ: Mapping[str, str] | None = None, *, env_file: Path = ENV_FILE
) -> Settings:
    """
    Build `Settings` from the process environment layered over `.env`.
    Values already in the environment win over the file.
    """
    env = {**read_env_file(env_file), **(os.environ if environ is None else environ)}

    def get(key: str, default: str = "") -> str:
        return (env.get(key) or default).strip()

    return Settings(
        postgrest_host=get("POSTGREST_HOST", "http://localhost:3001").rstrip("/"),
        postgrest_token=get("POSTGREST_TOKEN"),
        postgrest_timeout=_float(env.get("POSTGREST_TIMEOUT"), 10.0),
        site_url=get("SITE_URL", DEFAULT_SITE_URL).rstrip("/"),
        site_name=get("SITE_NAME", "Hello Data Notes"),
        home_article_id=get("HOME_ARTICLE_ID", DEFAULT_HOME_ARTICLE),
        articles_folder_id=get("ARTICLES_FOLDER_ID", DEFAULT_ARTICLES_FOLDER),
        fetch_workers=max(1, _int(env.get("FETCH_WORKERS"), 8)),
        email_host=get("EMAIL_HOST"),
        email_port=_int(env.get("EMAIL_PORT"), 587),
        email_secure=get("EMAIL_SECURE").lower() == "true",
        email_user=get("EMAIL_USER"),
        email_pass=get("EMAIL_PASS"),
        email_from=get("EMAIL_FROM") or get("EMAIL_USER"),
    )
