"""Jinja2 templates for the HTML pages and live view fragments."""
from pathlib import Path
from urllib.parse import urlparse

from fastapi.templating import Jinja2Templates

from schemas.bookmark import BookmarkResponse

TEMPLATES_DIR = Path(__file__).parent / "templates"
STATIC_DIR = Path(__file__).parent / "static"

LINK_SCHEMES = {"http", "https", "mailto", "ftp"}


def safe_href(url: str) -> str:
    """
    Href for a stored url.

    Urls are free text, so only known link schemes are rendered as-is; schemeless
    values are treated as https and anything else (javascript:, data:) is neutralised.
    """
    value = url.strip()
    scheme = urlparse(value).scheme.lower()
    if scheme in LINK_SCHEMES:
        return value
    if not scheme and not value.startswith("/"):
        return f"https://{value}"
    return "#"


templates = Jinja2Templates(directory=str(TEMPLATES_DIR))
templates.env.filters["safe_href"] = safe_href


def render_bookmark_list(bookmarks: list[BookmarkResponse], loading: bool = False) -> str:
    """Render the bookmark list fragment pushed to live views."""
    template = templates.get_template("_bookmark_list.html")
    return template.render(bookmarks=bookmarks, loading=loading)
