"""
ISBN checksum validation, ISBN-10 -> ISBN-13 conversion and Google Books lookups.
"""

import logging
import re
from typing import Any, Dict, List, Optional

import httpx

import config

logger = logging.getLogger(__name__)

_SEPARATORS = re.compile(r"[-\s]")
_ISBN10 = re.compile(r"[0-9]{9}[0-9Xx]")
_ISBN13 = re.compile(r"[0-9]{13}")

_http_client: Optional[httpx.Client] = None


class InvalidISBNError(ValueError):
    pass


class BookNotFoundError(LookupError):
    pass


def normalize_isbn(code: str) -> str:
    return _SEPARATORS.sub("", code)


def _isbn13_check_digit(first_twelve: str) -> int:
    total = sum((1 if i % 2 == 0 else 3) * int(ch) for i, ch in enumerate(first_twelve))
    return (10 - total % 10) % 10


def validate_isbn10(code: str) -> bool:
    if not _ISBN10.fullmatch(code):
        return False
    last = code[9].upper()
    check = 10 if last == "X" else int(last)
    total = sum((10 - i) * int(ch) for i, ch in enumerate(code[:9])) + check
    return total % 11 == 0


def validate_isbn13(code: str) -> bool:
    if not _ISBN13.fullmatch(code):
        return False
    return _isbn13_check_digit(code[:12]) == int(code[12])


def validate_isbn(code: Any) -> bool:
    """True when ``code`` is a well-formed ISBN-10 or ISBN-13. Never raises."""
    if not isinstance(code, str):
        return False
    code = normalize_isbn(code)
    if len(code) == 13:
        return validate_isbn13(code)
    if len(code) == 10:
        return validate_isbn10(code)
    return False


def convert_isbn10_to_13(code: str) -> str:
    if not isinstance(code, str):
        raise InvalidISBNError("Invalid ISBN-10")
    code = normalize_isbn(code)
    if not validate_isbn10(code):
        raise InvalidISBNError("Invalid ISBN-10")
    stem = "978" + code[:9]
    return stem + str(_isbn13_check_digit(stem))


# Google Books

def _get_http_client() -> httpx.Client:
    global _http_client
    if _http_client is None:
        _http_client = httpx.Client(timeout=10.0, follow_redirects=True)
    return _http_client


def _publish_year(published_date: Optional[str]) -> Optional[int]:
    if not published_date:
        return None
    try:
        return int(published_date[:4])
    except ValueError:
        logger.debug("Unparseable publishedDate %r", published_date)
        return None


def _pick_isbn(identifiers: List[Dict[str, str]]) -> Optional[str]:
    if not identifiers:
        return None
    for ident in identifiers:
        if ident.get("type") == "ISBN_13":
            return ident.get("identifier")
    return identifiers[0].get("identifier")


def volume_to_book(volume: Dict[str, Any], isbn: Optional[str] = None) -> Dict[str, Any]:
    info = volume.get("volumeInfo", {})
    image_links = info.get("imageLinks") or {}
    thumb = image_links.get("thumbnail")
    return {
        "title": info.get("title"),
        "author": (info.get("authors") or ["Unknown"])[0],
        "publishYear": _publish_year(info.get("publishedDate")),
        "description": info.get("description", ""),
        "pageCount": info.get("pageCount"),
        "genres": info.get("categories", []),
        "coverImage": {"url": thumb.replace("http:", "https:"), "publicId": None} if thumb else None,
        "isbn": isbn or _pick_isbn(info.get("industryIdentifiers", [])),
        "averageRating": info.get("averageRating", 0),
        "totalReviews": info.get("ratingsCount", 0),
    }


def lookup_isbn(isbn: str) -> Dict[str, Any]:
    resp = _get_http_client().get(config.GOOGLE_BOOKS_API, params={"q": f"isbn:{isbn}"})
    resp.raise_for_status()
    items = resp.json().get("items") or []
    if not items:
        raise BookNotFoundError("Book not found")
    return volume_to_book(items[0], isbn=isbn)


def search_external_books(query: str, limit: int = 10) -> List[Dict[str, Any]]:
    resp = _get_http_client().get(config.GOOGLE_BOOKS_API, params={"q": query, "maxResults": limit})
    resp.raise_for_status()
    return [volume_to_book(item) for item in resp.json().get("items") or []]
