#!/usr/bin/env python3
"""
hellonotes – folders, notes and articles served from a PostgREST API.
"""

import json
from datetime import date
from importlib.metadata import PackageNotFoundError, version

import click
import markdown
from flask import (
    Flask,
    Response,
    abort,
    g,
    redirect,
    render_template_string,
    request,
    url_for,
)
from markupsafe import Markup
from werkzeug.middleware.proxy_fix import ProxyFix

from .config import Settings, load_settings
from .data import (
    DuplicateSubscriber,
    InvalidSubscriber,
    NoteStore,
    PostgrestClient,
    UpstreamError,
)
from .feeds import render_rss, render_sitemap
from .newsletter import (
    FREQUENCIES,
    PERIOD_LABELS,
    MailConfigError,
    Mailer,
    digest_window,
    is_monday,
    render_digest,
    send_newsletters,
    split_articles,
    validate_subscription,
)
from .notes import (
    filter_by_tag,
    format_date,
    group_by_month,
    paginate,
    parse_page,
    slugify,
    split_article_preview,
    summarize,
    tags_of,
    truncate_words,
    with_slugs,
)

################################################################################
# Imports & constants
################################################################################
DEFAULT_DESCRIPTION = (
    "Web development notes and bookmarks about PHP, Laravel, Node.js, APIs, "
    "databases, and more"
)
NEWSLETTER_DESCRIPTION = (
    "Subscribe to our newsletter to receive updates about web development "
    "notes and articles"
)

try:
    __version__ = version("hellonotes")
except PackageNotFoundError:
    __version__ = "0.1.0-dev"


################################################################################
# App + template filters
################################################################################
app = Flask(__name__)
app.url_map.strict_slashes = False
app.config.update(SETTINGS=load_settings(), NOTE_STORE_FACTORY=None)
app.wsgi_app = ProxyFix(app.wsgi_app, x_for=1, x_proto=1, x_host=1)

MD_EXTENSION_CONFIGS = {
    "pymdownx.highlight": {
        "guess_lang": True,
        "noclasses": True,
        "pygments_style": "friendly",
    },
}
MD_EXTENSIONS = [
    "pymdownx.extra",
    "pymdownx.magiclink",
    "pymdownx.tilde",
    "pymdownx.superfences",
    "pymdownx.highlight",
    "pymdownx.betterem",
    "pymdownx.saneheaders",
]


def settings() -> Settings:
    return app.config["SETTINGS"]


def _markdown_renderer():
    return markdown.Markdown(
        extensions=MD_EXTENSIONS,
        extension_configs=MD_EXTENSION_CONFIGS,
    )


def render_markdown_html(text: str | None) -> str:
    """Fresh renderer per call; Markdown instances are not thread-safe."""
    if not text:
        return ""
    return _markdown_renderer().convert(text)


@app.template_filter("md")
def md_filter(text: str | None) -> Markup:
    return Markup(render_markdown_html(text))


@app.template_filter("date")
def date_filter(value) -> str:
    return format_date(value)


@app.template_filter("truncate_words")
def truncate_words_filter(text: str | None, max_words: int = 40) -> str:
    return truncate_words(text, max_words)


@app.template_filter("slugify")
def slugify_filter(text: str | None) -> str:
    return slugify(text)


def is_articles_folder(folder) -> bool:
    return bool(folder) and folder.get("folder_id") == settings().articles_folder_id


def note_href(note: dict, folder: dict | None = None) -> str:
    """Slug path of *note*; falls back to the id redirect without a folder."""
    folder = folder or note.get("folder")
    if not folder:
        return url_for("note_redirect", note_id=note["note_id"])
    return url_for(
        "note_detail",
        folder_slug=slugify(folder["title"]),
        note_slug=slugify(note.get("title")),
    )


app.jinja_env.globals.update(
    is_articles_folder=is_articles_folder,
    note_href=note_href,
    site_name=lambda: settings().site_name,
    version=__version__,
)


###############################################################################
# Store helpers
###############################################################################
def _default_store(cfg: Settings) -> NoteStore:
    return NoteStore(PostgrestClient(cfg), cfg)


def get_store() -> NoteStore:
    if "store" not in g:
        factory = app.config.get("NOTE_STORE_FACTORY") or _default_store
        g.store = factory(settings())
    return g.store


@app.teardown_appcontext
def close_store(error=None):
    store = g.pop("store", None)
    if store is not None:
        store.close()


def _topic_folders() -> list[dict]:
    """Folders offered as newsletter topics; an API hiccup only hides them."""
    try:
        return get_store().topic_folders()
    except UpstreamError:
        app.logger.warning("Could not load newsletter topics", exc_info=True)
        return []


def _canonical(path: str = "") -> str:
    return f"{settings().site_url}{path}"


###############################################################################
# Templates + Views
###############################################################################
def wrap(body: str) -> str:
    """Glue prolog + page-specific body + epilog."""
    return TEMPL_PROLOG + body + TEMPL_EPILOG


TEMPL_PROLOG = """
<!doctype html>
<html lang="en">
<title>{% if title %}{{ title }} – {% endif %}{{ site_name() }}</title>
<meta name="viewport" content="width=device-width, initial-scale=1">
<meta charset="utf-8">
<meta name="description" content="{{ meta_description or '' }}">
{% if meta_keywords %}<meta name="keywords" content="{{ meta_keywords }}">{% endif %}
{% if canonical_url %}<link rel="canonical" href="{{ canonical_url }}">{% endif %}
<meta property="og:title" content="{{ title or site_name() }}">
<meta property="og:type" content="{{ og_type or 'website' }}">
{% if canonical_url %}<meta property="og:url" content="{{ canonical_url }}">{% endif %}
{% if og_image %}<meta property="og:image" content="{{ og_image }}">{% endif %}
<link rel="alternate" type="application/rss+xml"
      href="{{ url_for('rss') }}" title="{{ site_name() }} – RSS">
{% if structured_data %}<script type="application/ld+json">{{ structured_data|safe }}</script>{% endif %}
<style>
html{font-family:-apple-system,BlinkMacSystemFont,"Segoe UI",Roboto,"Helvetica Neue",Arial,sans-serif}
body{font-size:1.05rem;line-height:1.6;max-width:48em;margin:auto;padding:13px;color:#363636;background:#fafafa}
a{color:#3273dc;text-decoration:none}a:hover{text-decoration:underline}
h1,h2,h3{line-height:1.2}h2.month{font-size:1.1em;color:#7a7a7a;border-bottom:1px solid #e0e0e0;padding-bottom:.25em;margin-top:2em}
img{max-width:100%;height:auto}pre{overflow-x:auto;padding:1em;background:#f0f0f0}
nav.site{display:flex;flex-wrap:wrap;gap:1rem;align-items:center;margin-bottom:1.5rem}
nav.site form{margin-left:auto}nav.site input{padding:.3em .6em}
.folders{display:flex;flex-wrap:wrap;gap:.5rem;font-size:.9em;margin-bottom:1rem}
.note{padding-bottom:1.25em;margin-bottom:1.25em;border-bottom:1px solid #e0e0e0}
.pill,.tag{display:inline-block;padding:.1em .6em;margin:0 .3em .3em 0;background:#eee;color:#4a4a4a;border-radius:1em;font-size:.8em}
.tag--active{background:#3273dc;color:#fff}
.pager{margin-top:2em;font-size:.9em;display:flex;gap:.5em;flex-wrap:wrap}
.pager .current{font-weight:700;border-bottom:2px solid #3273dc}
.error{color:#b33}.success{color:#2a7a2a}
label{display:block;margin-top:.75em;font-weight:600}
footer{margin-top:3rem;font-size:.8em;color:#7a7a7a}
</style>
<body>
{% macro note_card(n, folder=None) -%}
    <article class="note">
        <h3 style="margin-bottom:.3em;"><a href="{{ note_href(n, folder) }}">{{ n.title }}</a></h3>
        {% if n.link_image %}<img src="{{ n.link_image }}" alt="" loading="lazy">{% endif %}
        {% if n.link_excerpt %}
            <p>{{ n.link_excerpt }}</p>
        {% else %}
            <div class="e-content">{{ n.body|md }}</div>
        {% endif %}
        <small style="color:#7a7a7a;">
            <time datetime="{{ n.created_time }}">{{ n.created_time|date }}</time>
            {% set f = folder or n.folder %}
            {% if f %}· <a href="{{ url_for('folder_detail', folder_slug=f.title|slugify) }}">{{ f.title }}</a>{% endif %}
            {% for t in n.tags %}<span class="pill">{{ t }}</span>{% endfor %}
        </small>
    </article>
{%- endmacro %}
{% macro pager(p, folder_slug, tag=None) -%}
    {% if p.total_pages > 1 %}
    <nav class="pager" aria-label="Pagination">
        {% if p.has_prev_page %}
            <a href="{{ url_for('folder_detail', folder_slug=folder_slug, tag=tag, page=p.prev_page) }}">&larr; Previous</a>
        {% endif %}
        {% for pg in p.pages %}
            {% if pg.is_current %}
                <span class="current" aria-current="page">{{ pg.number }}</span>
            {% else %}
                <a href="{{ url_for('folder_detail', folder_slug=folder_slug, tag=tag, page=pg.number) }}">{{ pg.number }}</a>
            {% endif %}
        {% endfor %}
        {% if p.has_next_page %}
            <a href="{{ url_for('folder_detail', folder_slug=folder_slug, tag=tag, page=p.next_page) }}">Next &rarr;</a>
        {% endif %}
    </nav>
    {% endif %}
{%- endmacro %}
<nav class="site">
    <a href="{{ url_for('index') }}" style="font-weight:700;">{{ site_name() }}</a>
    <a href="{{ url_for('about') }}">About</a>
    <a href="{{ url_for('newsletter') }}">Newsletter</a>
    <form action="{{ url_for('search') }}" method="get" role="search">
        <input type="search" name="q" placeholder="Search" value="{{ query or '' }}">
    </form>
</nav>
{% if folders %}
<div class="folders">
    {% for f in folders if not is_articles_folder(f) %}
        <a href="{{ url_for('folder_detail', folder_slug=f.title|slugify) }}"
           {% if folder and folder.folder_id == f.folder_id %}aria-current="page"{% endif %}>{{ f.title }}</a>
    {% endfor %}
</div>
{% endif %}
<main id="main-content">
"""

TEMPL_EPILOG = """
</main>
<footer>
    <a href="{{ url_for('rss') }}">RSS</a> ·
    <a href="{{ url_for('newsletter') }}">Newsletter</a> ·
    v{{ version }}
</footer>
</body>
</html>
"""


###############################################################################
# Home
###############################################################################
@app.route("/")
def index():
    store = get_store()
    folders, home, recent, articles = store.gather(
        store.folders, store.home_article, store.recent_notes, store.article_notes
    )
    note = home or {"title": "", "body": ""}
    latest = split_article_preview(articles[0]) if articles else None

    return render_template_string(
        TEMPL_INDEX,
        folders=folders,
        note=note,
        recent_notes=recent,
        latest_article=latest,
        canonical_url=_canonical(),
        meta_keywords=", ".join(tags_of([*recent, latest] if latest else recent)),
        meta_description=summarize(note.get("link_excerpt") or note.get("body"))
        or DEFAULT_DESCRIPTION,
    )


TEMPL_INDEX = wrap("""
{% block body %}
    {% if note.title %}<h1>{{ note.title }}</h1>{% endif %}
    <div class="e-content">{{ note.body|md }}</div>

    {% if latest_article %}
    <section>
        <h2>Latest article</h2>
        <h3><a href="{{ url_for('note_detail', folder_slug='articles', note_slug=latest_article.title|slugify) }}">{{ latest_article.title }}</a></h3>
        <div class="e-content">{{ latest_article.body|md }}</div>
        <small style="color:#7a7a7a;">{{ latest_article.created_time|date }}</small>
    </section>
    {% endif %}

    <section>
        <h2>Recent notes</h2>
        {% for n in recent_notes %}
            {{ note_card(n) }}
        {% else %}
            <p>No notes yet.</p>
        {% endfor %}
    </section>
{% endblock %}
""")


###############################################################################
# Search + About
###############################################################################
@app.route("/search")
def search():
    q = request.args.get("q", "").strip()
    if not q:
        return render_template_string(
            TEMPL_SEARCH,
            query=q,
            notes=None,
            title="Search",
            canonical_url=_canonical("/search"),
            meta_description="Search through web development notes and bookmarks",
        )

    notes = get_store().search(q)
    return render_template_string(
        TEMPL_SEARCH,
        query=q,
        notes=notes,
        title=f"Search: {q}",
        canonical_url=_canonical(url_for("search", q=q)),
        meta_keywords=", ".join(tags_of(notes)),
        meta_description=f'Search results for "{q}" - {len(notes)} results found',
    )


TEMPL_SEARCH = wrap("""
{% block body %}
    <h1>Search</h1>
    {% if notes is none %}
        <p>Type a word in the search box to look through notes and bookmarks.</p>
    {% elif notes %}
        <p style="color:#7a7a7a;">{{ notes|length }} result{{ '' if notes|length == 1 else 's' }} for “{{ query }}”</p>
        {% for n in notes %}
            {{ note_card(n) }}
        {% endfor %}
    {% else %}
        <p>No results for “{{ query }}”.</p>
    {% endif %}
{% endblock %}
""")


@app.route("/about")
def about():
    articles = get_store().article_notes()
    previews = [split_article_preview(n) for n in articles]
    return render_template_string(
        TEMPL_ABOUT,
        grouped=group_by_month(previews),
        title="About",
        canonical_url=_canonical("/about"),
        meta_keywords=", ".join(tags_of(articles)),
        meta_description=(
            "Articles and thoughts about web development, programming, and technology"
        ),
    )


TEMPL_ABOUT = wrap("""
{% block body %}
    <h1>About</h1>
    {% for month, notes in grouped.items() %}
        <h2 class="month">{{ month }}</h2>
        {% for n in notes %}
        <article class="note">
            <h3><a href="{{ url_for('note_detail', folder_slug='articles', note_slug=n.title|slugify) }}">{{ n.title }}</a></h3>
            <div class="e-content">{{ n.body|md }}</div>
        </article>
        {% endfor %}
    {% else %}
        <p>No articles yet.</p>
    {% endfor %}
{% endblock %}
""")


###############################################################################
# Newsletter
###############################################################################
def _render_newsletter(**ctx):
    ctx.setdefault("folders_for_topics", _topic_folders())
    ctx.setdefault("form_data", {})
    ctx.setdefault("errors", {})
    return render_template_string(
        TEMPL_NEWSLETTER,
        frequencies=FREQUENCIES,
        title="Newsletter Subscription",
        canonical_url=_canonical("/newsletter"),
        meta_description=NEWSLETTER_DESCRIPTION,
        **ctx,
    )


@app.route("/newsletter", methods=["GET", "POST"])
def newsletter():
    if request.method == "GET":
        period = request.args.get("period")
        if period in PERIOD_LABELS:
            return newsletter_online(period)
        return _render_newsletter()

    topics = _topic_folders()
    data, errors = validate_subscription(request.form, [f["title"] for f in topics])
    if errors:
        return _render_newsletter(
            errors=errors, form_data=request.form, folders_for_topics=topics
        )

    try:
        get_store().add_subscriber(data)
    except DuplicateSubscriber:
        errors = {"email": "This email is already subscribed to our newsletter"}
    except InvalidSubscriber:
        errors = {"general": "Invalid data provided. Please check your input."}
    except UpstreamError:
        app.logger.exception("Subscribing %s failed", data["email"])
        errors = {"general": "Failed to subscribe. Please try again later."}

    if errors:
        return _render_newsletter(
            errors=errors, form_data=request.form, folders_for_topics=topics
        )
    return _render_newsletter(success=True, folders_for_topics=topics)


def newsletter_online(period: str):
    """The digest a subscriber would receive today, as a web page."""
    cfg = settings()
    notes = get_store().notes_since(digest_window(period))
    regular, articles = split_articles(notes, cfg.articles_folder_id)
    html = render_digest(regular, articles, period, site_url=cfg.site_url)
    return Response(html, mimetype="text/html")


TEMPL_NEWSLETTER = wrap("""
{% block body %}
    <h1>Newsletter</h1>
    {% if success %}
        <p class="success">Thanks for subscribing! The next digest is on its way.</p>
    {% else %}
        <p>Get the latest notes and articles in your inbox, every week or every month.</p>
        {% if errors.general %}<p class="error">{{ errors.general }}</p>{% endif %}
        <form method="post">
            <label for="first_name">First name</label>
            <input id="first_name" name="first_name" value="{{ form_data.get('first_name', '') }}">
            {% if errors.first_name %}<p class="error">{{ errors.first_name }}</p>{% endif %}

            <label for="last_name">Last name</label>
            <input id="last_name" name="last_name" value="{{ form_data.get('last_name', '') }}">
            {% if errors.last_name %}<p class="error">{{ errors.last_name }}</p>{% endif %}

            <label for="email">Email</label>
            <input id="email" type="email" name="email" value="{{ form_data.get('email', '') }}">
            {% if errors.email %}<p class="error">{{ errors.email }}</p>{% endif %}

            <label>Frequency</label>
            {% set chosen = form_data.get('frequency') or 'weekly' %}
            {% for fq in frequencies %}
                <input type="radio" id="fq-{{ fq }}" name="frequency" value="{{ fq }}" {% if fq == chosen %}checked{% endif %}>
                <span>{{ fq|capitalize }}</span>
            {% endfor %}
            {% if errors.frequency %}<p class="error">{{ errors.frequency }}</p>{% endif %}

            {% if folders_for_topics %}
            <label>Topics</label>
            {% set picked = form_data.getlist('topics') if form_data.getlist is defined else [] %}
            {% for f in folders_for_topics %}
                <span style="white-space:nowrap;margin-right:1em;">
                    <input type="checkbox" name="topics" value="{{ f.title }}" {% if f.title in picked %}checked{% endif %}>
                    {{ f.title }}
                </span>
            {% endfor %}
            {% endif %}
            <p><button type="submit">Subscribe</button></p>
        </form>
    {% endif %}
{% endblock %}
""")


###############################################################################
# Old id-based URLs
###############################################################################
@app.route("/folders/<folder_id>")
def folder_redirect(folder_id):
    folder = get_store().folder(folder_id)
    if not folder:
        abort(404, description="Folder not found")
    tag = request.args.get("tag") or None
    return redirect(
        url_for("folder_detail", folder_slug=slugify(folder["title"]), tag=tag), 301
    )


@app.route("/notes/<note_id>")
def note_redirect(note_id):
    if note_id == settings().home_article_id:
        return redirect(url_for("index"), 301)
    store = get_store()
    note = store.note_by_id(note_id, inline=False)
    if not note:
        abort(404, description="Note not found")
    folder = store.folder(note["parent_id"])
    if not folder:
        abort(404, description="Folder not found")
    return redirect(note_href(note, folder), 301)


###############################################################################
# Feeds
###############################################################################
@app.route("/rss.xml")
def rss():
    store = get_store()
    try:
        recent, articles = store.gather(store.recent_notes, store.article_notes)
        xml = render_rss([*recent, *articles], settings=settings())
    except UpstreamError:
        app.logger.exception("Error generating RSS feed")
        return Response("Error generating RSS feed", status=500, mimetype="text/plain")
    return app.response_class(xml, mimetype="application/rss+xml")


@app.route("/sitemap.xml")
def sitemap():
    cfg = settings()
    store = get_store()
    try:
        folders = store.folders()
        topics = [f for f in folders if f["folder_id"] != cfg.articles_folder_id]
        *per_folder, articles = store.gather(
            *(lambda f=f: store.notes(f["folder_id"], inline=False) for f in topics),
            lambda: store.notes(cfg.articles_folder_id, inline=False),
        )
        xml = render_sitemap(
            folders,
            [n for group in per_folder for n in group],
            articles,
            settings=cfg,
        )
    except UpstreamError:
        app.logger.exception("Error generating sitemap")
        return Response("Error generating sitemap", status=500, mimetype="text/plain")
    return app.response_class(xml, mimetype="application/xml")


@app.route("/robots.txt")
def robots():
    rules = (
        "User-agent: *\n"
        "Allow: /\n\n"
        f"Sitemap: {_canonical('/sitemap.xml')}\n"
    )
    return (
        Response(rules, mimetype="text/plain", direct_passthrough=True),
        200,
        {"Cache-Control": "public, max-age=86400"},
    )  # 1 day cache


@app.after_request
def sec_headers(resp):
    resp.headers.update(
        {
            "X-Frame-Options": "DENY",
            "X-Content-Type-Options": "nosniff",
            "Referrer-Policy": "strict-origin-when-cross-origin",
        }
    )
    return resp


###############################################################################
# Folders + Notes (catch-all slug routes)
###############################################################################
@app.route("/<folder_slug>")
def folder_detail(folder_slug):
    store = get_store()
    folders = store.folders()
    folder = store.folder_by_slug(folder_slug, folders=folders)
    if not folder:
        abort(404, description="Folder not found")

    query_tag = request.args.get("tag") or None
    all_notes = store.notes(folder["folder_id"])
    filtered = filter_by_tag(all_notes, query_tag)
    page_notes, pagination = paginate(filtered, parse_page(request.args.get("page")))
    tags = tags_of(all_notes)

    canonical = url_for("folder_detail", folder_slug=folder_slug, tag=query_tag)
    described = f" tagged with {query_tag}" if query_tag else ""
    return render_template_string(
        TEMPL_FOLDER,
        folders=folders,
        folder={**folder, "slug": folder_slug},
        tags=tags,
        grouped=group_by_month(with_slugs(page_notes)),
        query_tag=query_tag,
        pagination=pagination,
        title=f"{folder['title']} - {query_tag}" if query_tag else folder["title"],
        canonical_url=_canonical(canonical),
        meta_keywords=", ".join(tags),
        meta_description=(
            f"Browse {pagination.total_items} notes about {folder['title']}{described}"
        ),
    )


TEMPL_FOLDER = wrap("""
{% block body %}
    <h1>{{ folder.title }}{% if query_tag %} <small class="pill">{{ query_tag }}</small>{% endif %}</h1>
    {% if tags %}
    <p>
        {% for t in tags %}
            <a class="tag{% if t == query_tag %} tag--active{% endif %}"
               href="{{ url_for('folder_detail', folder_slug=folder.slug, tag=t) }}">{{ t }}</a>
        {% endfor %}
        {% if query_tag %}
            <a href="{{ url_for('folder_detail', folder_slug=folder.slug) }}">clear filter</a>
        {% endif %}
    </p>
    {% endif %}

    {% for month, notes in grouped.items() %}
        <h2 class="month">{{ month }}</h2>
        {% for n in notes %}
            {{ note_card(n, folder) }}
        {% endfor %}
    {% else %}
        <p>No notes here{% if query_tag %} tagged {{ query_tag }}{% endif %}.</p>
    {% endfor %}

    {{ pager(pagination, folder.slug, query_tag) }}
{% endblock %}
""")


@app.route("/<folder_slug>/<note_slug>")
def note_detail(folder_slug, note_slug):
    store = get_store()
    folder = store.folder_by_slug(folder_slug)
    if not folder:
        abort(404, description="Folder not found")
    note = store.note_by_slug(folder["folder_id"], note_slug)
    if not note:
        abort(404, description="Note not found")

    canonical = _canonical(f"/{folder_slug}/{note_slug}")
    structured = {
        "@context": "https://schema.org",
        "@type": "Article",
        "headline": note.get("title"),
        "datePublished": note.get("created_time"),
        "url": canonical,
        "publisher": {"@type": "Organization", "name": settings().site_name},
    }
    if is_articles_folder(folder):
        description_src = (note.get("body") or "").split("---")[0]
    else:
        description_src = note.get("link_excerpt") or note.get("body")

    return render_template_string(
        TEMPL_NOTE,
        folder={**folder, "slug": folder_slug},
        note={**note, "slug": note_slug},
        tags=tags_of([note]),
        title=note.get("title"),
        canonical_url=canonical,
        meta_keywords=", ".join(note.get("tags") or []),
        meta_description=summarize(description_src),
        og_type="article",
        og_image=note.get("link_image"),
        # keep "</script>" in a title from closing the JSON-LD block
        structured_data=json.dumps(structured, indent=2).replace("<", "\\u003c"),
    )


TEMPL_NOTE = wrap("""
{% block body %}
    <p style="font-size:.9em;">
        <a href="{{ url_for('folder_detail', folder_slug=folder.slug) }}">&larr; {{ folder.title }}</a>
    </p>
    <article class="h-entry">
        <h1 class="p-name">{{ note.title }}</h1>
        {% if note.link_image %}<img src="{{ note.link_image }}" alt="">{% endif %}
        {% if note.link_excerpt %}<blockquote>{{ note.link_excerpt }}</blockquote>{% endif %}
        <div class="e-content">{{ note.body|md }}</div>
        <small style="color:#7a7a7a;">
            <time class="dt-published" datetime="{{ note.created_time }}">{{ note.created_time|date }}</time>
            {% for t in tags %}
                <a class="pill" href="{{ url_for('folder_detail', folder_slug=folder.slug, tag=t) }}">{{ t }}</a>
            {% endfor %}
        </small>
    </article>
{% endblock %}
""")


###############################################################################
# CLI – newsletter
###############################################################################
@app.cli.command("send-newsletter")
@click.option("--force", is_flag=True, help="Send even when today is not Monday.")
def cli_send_newsletter(force: bool):
    """Mail the weekly (and on first Mondays, monthly) digest."""
    cfg = settings()
    today = date.today()
    click.echo(f"Date: {today.isoformat()}")
    if not (force or is_monday(today)):
        click.echo("Not Monday – newsletters are only sent on Mondays.")
        return

    try:
        mailer = Mailer(cfg)
    except MailConfigError as exc:
        raise click.ClickException(str(exc)) from exc

    try:
        report = send_newsletters(get_store(), mailer, cfg, today=today, force=force)
    except UpstreamError as exc:
        raise click.ClickException(f"Error sending newsletters: {exc}") from exc

    click.secho("\n✅  Newsletter run complete.", fg="green")
    click.echo(f"Sent: {report.sent}  Failed: {report.failed}  Skipped: {report.skipped}")


###############################################################################
# Error pages
###############################################################################
@app.errorhandler(404)
def not_found(exc):
    """Site-wide “Not Found” page."""
    return render_template_string(TEMPL_404, message=exc.description), 404


@app.errorhandler(UpstreamError)
def upstream_error(exc):
    app.logger.error("PostgREST request failed: %s", exc, exc_info=exc)
    return render_template_string(TEMPL_500, status=502), 502


@app.errorhandler(500)
def internal_error(exc):
    return render_template_string(TEMPL_500, status=500), 500


TEMPL_404 = wrap("""
{% block body %}
  <h2 style="margin-top:0">Page not found</h2>
  <p>{{ message }}</p>
  <p><a href="{{ url_for('index') }}">Back to the front page</a> or use the search box above.</p>
{% endblock %}
""")

TEMPL_500 = wrap("""
{% block body %}
  <h2 style="margin-top:0">{% if status == 502 %}Notes are unavailable{% else %}Internal Server Error{% endif %}</h2>
  <p>Something went wrong while loading this page. Please try again in a minute.</p>
{% endblock %}
""")


###############################################################################
# main
###############################################################################
if __name__ == "__main__":
    app.run(debug=True)
