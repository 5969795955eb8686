"""
Note aggregation and presentation helpers.

Everything here works on plain note/folder dicts as PostgREST returns them
and builds the view models the templates consume. Nothing in this module
talks to the network; the resource inliner gets its lookup injected.
"""

import math
import re
import unicodedata
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Iterable

PAGE_SIZE = 20
PAGE_WINDOW = 7
SLUG_MAX_LEN = 80
ELLIPSIS = "..."
UNDATED = "Undated"
MONTH_NAMES = (
    "January",
    "February",
    "March",
    "April",
    "May",
    "June",
    "July",
    "August",
    "September",
    "October",
    "November",
    "December",
)

_COMBINING_RE = re.compile(r"[\u0300-\u036f]")
_SLUG_DROP_RE = re.compile(r"[^a-z0-9\s-]")
_TAG_RE = re.compile(r"<[^>]*>")
_MD_MARKERS_RE = re.compile(r"[#*_`\[\]]")
_FRACTION_RE = re.compile(r"\.(\d+)")
RESOURCE_RE = re.compile(r"!\[([^\]]+\.(png|jpg|jpeg))\]\(:/([a-f0-9]+)\)")
IMAGE_MIMES = {"png": "image/png", "jpg": "image/jpeg", "jpeg": "image/jpeg"}


################################################################################
# Slugs + excerpts
################################################################################
def slugify(text: str | None) -> str:
    """
    Lossy ASCII slug: "Café & Crème!" → "cafe-creme".
    Two titles may share a slug; callers take the first match.
    """
    if not text:
        return ""
    slug = unicodedata.normalize("NFD", text.lower())
    slug = _COMBINING_RE.sub("", slug)
    slug = _SLUG_DROP_RE.sub("", slug).strip()
    slug = re.sub(r"\s+", "-", slug)
    slug = re.sub(r"-+", "-", slug).strip("-")
    return slug[:SLUG_MAX_LEN].rstrip("-")


def plain_text(text: str | None) -> str:
    """Drop HTML tags and the usual Markdown markers, keep the words."""
    clean = _TAG_RE.sub(" ", text or "")
    clean = clean.replace("<", "").replace(">", "")
    return _MD_MARKERS_RE.sub("", clean)


def summarize(text: str | None, max_length: int = 160) -> str | None:
    if not text:
        return None
    clean = re.sub(r"\s+", " ", plain_text(text)).strip()
    if len(clean) <= max_length:
        return clean
    return clean[: max(0, max_length - len(ELLIPSIS))] + ELLIPSIS


def truncate_words(text: str | None, max_words: int) -> str:
    if not text:
        return ""
    words = text.split(" ")
    if len(words) > max_words:
        return " ".join(words[:max_words]) + ELLIPSIS
    return text


def split_article_preview(note: dict, *, base: str = "/articles") -> dict:
    """
    Articles put their teaser above a `---` line. Return a copy whose body
    is only the teaser plus a "Read more" link (backslash escapes removed).
    """
    out = dict(note)
    body = out.get("body") or ""
    if not body:
        return out
    parts = body.split("---")
    if len(parts) > 1:
        href = f"{base}/{slugify(out.get('title'))}"
        body = parts[0].strip() + f' <a href="{href}">Read more</a>'
    out["body"] = body.replace("\\", "")
    return out


################################################################################
# Notes
################################################################################
def normalize_note(raw: dict) -> dict:
    """
    Copy of *raw* with `body` always a string and `tags` a duplicate-free
    list (first occurrence wins).
    """
    note = dict(raw)
    note["body"] = note.get("body") or ""
    note["tags"] = list(dict.fromkeys(t for t in (note.get("tags") or []) if t))
    return note


def clean_link_image(note: dict) -> dict:
    """Bookmark previews only keep absolute http(s) image URLs."""
    img = note.get("link_image")
    if img and not str(img).startswith("http"):
        note = {**note, "link_image": None}
    return note


def parse_timestamp(value) -> datetime:
    """ISO-8601 string (or datetime) → aware UTC datetime. Naive means UTC."""
    if isinstance(value, datetime):
        dt = value
    else:
        raw = str(value).strip().replace("Z", "+00:00")
        # Postgres drops trailing zeros from fractions (".12"); pad to micros
        raw = _FRACTION_RE.sub(lambda m: "." + m.group(1).ljust(6, "0")[:6], raw, count=1)
        dt = datetime.fromisoformat(raw)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def format_date(value) -> str:
    """`2024-01-05T…` → `5 January 2024`."""
    if not value:
        return ""
    try:
        dt = parse_timestamp(value)
    except ValueError:
        return str(value)
    return f"{dt.day} {MONTH_NAMES[dt.month - 1]} {dt.year}"


def tags_of(notes: Iterable[dict]) -> list[str]:
    return list(dict.fromkeys(t for n in notes for t in (n.get("tags") or [])))


def filter_by_tag(notes: list[dict], tag: str | None) -> list[dict]:
    if not tag:
        return notes
    return [n for n in notes if tag in (n.get("tags") or [])]


def _group(notes: Iterable[dict], key: Callable[[datetime], str]) -> dict[str, list]:
    grouped: dict[str, list] = {}
    for n in notes:
        try:
            label = key(parse_timestamp(n.get("created_time")))
        except (TypeError, ValueError):
            label = UNDATED
        grouped.setdefault(label, []).append(n)
    return grouped


def group_by_day(notes: Iterable[dict]) -> dict[str, list]:
    """
    Buckets keyed `YYYY-MM-DD`, in order of first appearance. Notes with a
    missing or unreadable timestamp land in the `UNDATED` bucket.
    """
    return _group(notes, lambda dt: dt.strftime("%Y-%m-%d"))


def group_by_month(notes: Iterable[dict]) -> dict[str, list]:
    """Buckets keyed `2024 January`, in order of first appearance."""
    return _group(notes, lambda dt: f"{dt.year:04d} {MONTH_NAMES[dt.month - 1]}")


def with_slugs(notes: Iterable[dict]) -> list[dict]:
    return [{**n, "slug": slugify(n.get("title"))} for n in notes]


################################################################################
# Pagination
################################################################################
@dataclass(frozen=True)
class PageLink:
    number: int
    is_current: bool


@dataclass(frozen=True)
class Pagination:
    current_page: int
    total_pages: int
    total_items: int
    per_page: int
    pages: list[PageLink] = field(default_factory=list)

    @property
    def has_next_page(self) -> bool:
        return self.current_page < self.total_pages

    @property
    def has_prev_page(self) -> bool:
        return self.current_page > 1

    @property
    def next_page(self) -> int:
        return self.current_page + 1

    @property
    def prev_page(self) -> int:
        return self.current_page - 1


def parse_page(raw) -> int:
    try:
        page = int(raw)
    except (TypeError, ValueError):
        return 1
    return page if page > 0 else 1


def page_window(page: int, total_pages: int, size: int = PAGE_WINDOW) -> list[PageLink]:
    start = max(1, page - size // 2)
    end = min(total_pages, start + size - 1)
    if end - start < size - 1:
        start = max(1, end - size + 1)
    return [PageLink(number=i, is_current=i == page) for i in range(start, end + 1)]


def paginate(items: list, page: int = 1, per_page: int = PAGE_SIZE):
    """
    Return `(page_items, Pagination)`. A page past the end yields an empty
    slice; it is not clamped.
    """
    page = parse_page(page)
    total = len(items)
    pages = max(1, math.ceil(total / per_page))
    offset = (page - 1) * per_page
    meta = Pagination(
        current_page=page,
        total_pages=pages,
        total_items=total,
        per_page=per_page,
        pages=page_window(page, pages),
    )
    return items[offset : offset + per_page], meta


################################################################################
# Embedded resources
################################################################################
@dataclass(frozen=True)
class ResourceRef:
    span: tuple[int, int]
    filename: str
    resource_id: str

    @property
    def mime(self) -> str:
        ext = self.filename.rsplit(".", 1)[-1].lower()
        return IMAGE_MIMES.get(ext, "image/png")


def find_resource_refs(body: str | None) -> list[ResourceRef]:
    """Every `![name.png](:/<hex>)` reference in *body*, in order."""
    return [
        ResourceRef(span=m.span(), filename=m.group(1), resource_id=m.group(3))
        for m in RESOURCE_RE.finditer(body or "")
    ]


def image_tag(ref: ResourceRef, contents: str) -> str:
    return f'<img src="data:{ref.mime};base64,{contents}" />'


def replace_refs(body: str, refs: list[ResourceRef], resolved: dict[str, str | None]) -> str:
    # right to left so earlier spans stay valid
    for ref in sorted(refs, key=lambda r: r.span[0], reverse=True):
        contents = resolved.get(ref.filename)
        if not contents:
            continue
        start, end = ref.span
        body = body[:start] + image_tag(ref, contents) + body[end:]
    return body


def inline_resources(
    note: dict,
    lookup: Callable[[str], str | None],
    *,
    max_workers: int = 8,
) -> dict:
    """
    Swap embedded resource references for base64 `<img>` tags.

    *lookup* maps a filename to its base64 contents, or `None` when the
    resource is unknown (the reference is then left as is). Exceptions from
    *lookup* propagate.
    """
    note = normalize_note(note)
    refs = find_resource_refs(note["body"])
    if not refs:
        return note
    names = list(dict.fromkeys(r.filename for r in refs))
    with ThreadPoolExecutor(max_workers=min(max_workers, len(names))) as pool:
        resolved = dict(zip(names, pool.map(lookup, names)))
    note["body"] = replace_refs(note["body"], refs, resolved)
    return note
