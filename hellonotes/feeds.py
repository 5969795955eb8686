"""
RSS 2.0 feed and XML sitemap, built as plain strings.
"""

from datetime import datetime, timezone
from html import escape

from .config import Settings
from .notes import parse_timestamp, slugify, summarize

RFC2822_FMT = "%a, %d %b %Y %H:%M:%S %z"
RSS_LIMIT = 20
RSS_DESCRIPTION = (
    "Web development notes and bookmarks about PHP, Laravel, Node.js, APIs, "
    "databases, and more"
)


def _rfc2822(value) -> str:
    """ISO-8601 → RFC 2822 in UTC (Tue, 24 Jun 2025 09:22:20 +0000)."""
    try:
        return parse_timestamp(value).strftime(RFC2822_FMT)
    except (TypeError, ValueError):
        return str(value)


def note_url(note: dict, *, settings: Settings) -> str | None:
    """Canonical URL of *note*, or None when its folder is unknown."""
    if note.get("parent_id") == settings.articles_folder_id:
        return f"{settings.site_url}/articles/{slugify(note.get('title'))}"
    folder = note.get("folder")
    if not folder:
        return None
    return f"{settings.site_url}/{slugify(folder['title'])}/{slugify(note.get('title'))}"


def render_rss(notes: list[dict], *, settings: Settings, now: datetime | None = None) -> str:
    """
    Newest first, capped at RSS_LIMIT. Notes without a resolvable URL are
    skipped.
    """
    now = now or datetime.now(timezone.utc)
    ordered = sorted(notes, key=lambda n: parse_timestamp(n["created_time"]), reverse=True)

    items = []
    for n in ordered[:RSS_LIMIT]:
        link = note_url(n, settings=settings)
        if not link:
            continue
        desc = summarize(n.get("link_excerpt") or n.get("body"), 500)
        desc_xml = f"\n      <description>{escape(desc)}</description>" if desc else ""
        cat_xml = "".join(
            f"\n      <category>{escape(t)}</category>" for t in n.get("tags") or []
        )
        items.append(
            f"""
    <item>
      <title>{escape(n.get("title") or "")}</title>
      <link>{escape(link)}</link>
      <guid>{escape(link)}</guid>
      <pubDate>{_rfc2822(n["created_time"])}</pubDate>{desc_xml}{cat_xml}
    </item>"""
        )

    site = escape(settings.site_url)
    return f"""<?xml version="1.0" encoding="UTF-8"?>
<rss version="2.0" xmlns:atom="http://www.w3.org/2005/Atom">
  <channel>
    <title>{escape(settings.site_name)}</title>
    <link>{site}</link>
    <description>{escape(RSS_DESCRIPTION)}</description>
    <language>en-us</language>
    <lastBuildDate>{now.strftime(RFC2822_FMT)}</lastBuildDate>
    <atom:link href="{site}/rss.xml" rel="self" type="application/rss+xml" />
{"".join(items)}
  </channel>
</rss>"""


def _url(loc: str, *, changefreq: str, priority: str, lastmod: str | None = None) -> str:
    lastmod_xml = f"\n    <lastmod>{lastmod}</lastmod>" if lastmod else ""
    return f"""
  <url>
    <loc>{escape(loc)}</loc>{lastmod_xml}
    <changefreq>{changefreq}</changefreq>
    <priority>{priority}</priority>
  </url>"""


def render_sitemap(
    folders: list[dict],
    notes: list[dict],
    articles: list[dict],
    *,
    settings: Settings,
    today: str | None = None,
) -> str:
    """
    *notes* are the notes of every non-article folder; *articles* are listed
    under /articles/.
    """
    site = settings.site_url
    today = today or datetime.now(timezone.utc).strftime("%Y-%m-%d")
    folder_map = {f["folder_id"]: f for f in folders}

    urls = [
        _url(f"{site}/", lastmod=today, changefreq="daily", priority="1.0"),
        _url(f"{site}/about", lastmod=today, changefreq="weekly", priority="0.8"),
        _url(f"{site}/search", changefreq="monthly", priority="0.5"),
    ]
    for f in folders:
        if f["folder_id"] == settings.articles_folder_id:
            continue
        urls.append(
            _url(f"{site}/{slugify(f['title'])}", changefreq="weekly", priority="0.8")
        )
    for n in notes:
        folder = folder_map.get(n.get("parent_id"))
        if not folder:
            continue
        urls.append(
            _url(
                f"{site}/{slugify(folder['title'])}/{slugify(n.get('title'))}",
                lastmod=parse_timestamp(n["created_time"]).strftime("%Y-%m-%d"),
                changefreq="monthly",
                priority="0.6",
            )
        )
    for n in articles:
        urls.append(
            _url(
                f"{site}/articles/{slugify(n.get('title'))}",
                lastmod=parse_timestamp(n["created_time"]).strftime("%Y-%m-%d"),
                changefreq="monthly",
                priority="0.7",
            )
        )

    return f"""<?xml version="1.0" encoding="UTF-8"?>
<urlset xmlns="http://www.sitemaps.org/schemas/sitemap/0.9">{"".join(urls)}
</urlset>"""
