"""Normalization of raw Google Books volumes into ``BookRecord`` values.

The catalog answers with deeply nested JSON in which any level may be
missing or of the wrong type. Everything here is a pure transformation and
never raises: each field falls back to a documented default.
"""

from __future__ import annotations

from typing import Any, Iterable, List, Mapping, Optional

from bookfinder.book import (
    DEFAULT_AUTHOR,
    DEFAULT_DESCRIPTION,
    DEFAULT_TITLE,
    BookRecord,
)

OPEN_LIBRARY_COVER_URL = "https://covers.openlibrary.org/b/isbn/{isbn}-L.jpg"

# Provider image keys in order of preference
THUMBNAIL_KEYS = ("thumbnail", "smallThumbnail", "medium", "large")


def normalize_email(email: Optional[str]) -> str:
    """Lowercase and trim an email address; used before every comparison or lookup."""
    if email is None:
        return ""
    return str(email).strip().lower()


def _mapping(value: Any) -> Mapping[str, Any]:
    return value if isinstance(value, Mapping) else {}


def _text(value: Any, default: str) -> str:
    if isinstance(value, str) and value.strip():
        return value
    return default


def _authors(value: Any) -> tuple[str, ...]:
    if isinstance(value, str):
        value = [value]
    if not isinstance(value, (list, tuple)):
        return (DEFAULT_AUTHOR,)
    names = tuple(str(a).strip() for a in value if isinstance(a, str) and a.strip())
    return names or (DEFAULT_AUTHOR,)


def _page_count(value: Any) -> int:
    if isinstance(value, bool):
        return 0
    try:
        count = int(value)
    except (TypeError, ValueError):
        return 0
    return max(count, 0)


def force_https(url: str) -> str:
    """Rewrite an ``http://`` URL to ``https://`` so covers load on secure pages."""
    if url.lower().startswith("http://"):
        return "https://" + url[len("http://"):]
    return url


def extract_isbn(volume_info: Mapping[str, Any]) -> Optional[str]:
    """Pick the ISBN-13 from the industry identifiers, else the ISBN-10."""
    identifiers = volume_info.get("industryIdentifiers")
    if not isinstance(identifiers, list):
        return None

    found = {}
    for identifier in identifiers:
        identifier = _mapping(identifier)
        kind = identifier.get("type")
        value = identifier.get("identifier")
        if kind in ("ISBN_13", "ISBN_10") and isinstance(value, str) and value.strip():
            found.setdefault(kind, value.strip())
    return found.get("ISBN_13") or found.get("ISBN_10")


def resolve_thumbnail(volume_info: Mapping[str, Any]) -> Optional[str]:
    """Return the best cover URL for a volume, or ``None`` when there is none."""
    image_links = _mapping(volume_info.get("imageLinks"))
    for key in THUMBNAIL_KEYS:
        url = image_links.get(key)
        if isinstance(url, str) and url.strip():
            return force_https(url.strip())

    isbn = extract_isbn(volume_info)
    if isbn:
        return OPEN_LIBRARY_COVER_URL.format(isbn=isbn)
    return None


def normalize(raw: Any) -> BookRecord:
    """Convert one raw catalog item into a ``BookRecord``.

    Parameters
    ----------
    raw : Any
        A Google Books volume resource. Non-mapping input is treated as an
        empty volume.

    Returns
    -------
    BookRecord
        The normalized record. Missing fields carry their defaults.
    """
    item = _mapping(raw)
    volume_info = _mapping(item.get("volumeInfo"))

    external_id = item.get("id")
    published_date = volume_info.get("publishedDate")

    return BookRecord(
        external_id=str(external_id) if external_id is not None else "",
        title=_text(volume_info.get("title"), DEFAULT_TITLE),
        authors=_authors(volume_info.get("authors")),
        thumbnail=resolve_thumbnail(volume_info),
        description=_text(volume_info.get("description"), DEFAULT_DESCRIPTION),
        published_date=published_date if isinstance(published_date, str) else "",
        page_count=_page_count(volume_info.get("pageCount")),
        isbn=extract_isbn(volume_info),
    )


def normalize_many(items: Optional[Iterable[Any]]) -> List[BookRecord]:
    """Normalize a raw result list; ``None`` yields an empty list."""
    if not items or isinstance(items, (str, bytes, Mapping)):
        return []
    return [normalize(item) for item in items]
