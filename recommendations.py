"""
Book recommendation scoring.

The scoring functions are pure and operate on plain book dicts as stored in
the ``book`` collection. The ``get_*`` functions load candidates from MongoDB,
apply the exclusion rules, score and rank them.
"""

import logging
from collections import Counter
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Tuple

from database import db, parse_object_id
from schemas import ReadingStatus

logger = logging.getLogger(__name__)

RATING_WEIGHT = 2
FAVORITE_GENRE_BONUS = 3

PERSONAL_RATING_WEIGHT = 1.5
PERSONAL_GENRE_WEIGHT = 2
PERSONAL_AUTHOR_WEIGHT = 3

SIMILAR_GENRE_WEIGHT = 2
SIMILAR_AUTHOR_BONUS = 3

Book = Dict[str, Any]


def reading_profile(history: Iterable[Book]) -> Tuple[Counter, Counter]:
    """Genre and author frequencies over a user's read books."""
    genres: Counter = Counter()
    authors: Counter = Counter()
    for book in history:
        genres.update(book.get("genres") or [])
        if book.get("author"):
            authors[book["author"]] += 1
    return genres, authors


def personalized_score(book: Book, genre_freq: Counter, author_freq: Counter) -> float:
    rating = book.get("averageRating") or 0
    genre_score = sum(genre_freq.get(g, 0) * PERSONAL_GENRE_WEIGHT for g in book.get("genres") or [])
    author_score = author_freq.get(book.get("author"), 0) * PERSONAL_AUTHOR_WEIGHT
    return rating * PERSONAL_RATING_WEIGHT + genre_score + author_score


def favorite_genre_score(book: Book, favorite_genres: Sequence[str]) -> float:
    rating = book.get("averageRating") or 0
    favorites = set(favorite_genres)
    bonus = FAVORITE_GENRE_BONUS if favorites.intersection(book.get("genres") or []) else 0
    return rating * RATING_WEIGHT + bonus


def similarity_score(candidate: Book, source: Book) -> float:
    shared = set(candidate.get("genres") or []) & set(source.get("genres") or [])
    same_author = SIMILAR_AUTHOR_BONUS if candidate.get("author") == source.get("author") else 0
    return len(shared) * SIMILAR_GENRE_WEIGHT + same_author + (candidate.get("averageRating") or 0)


def exclude_candidates(candidates: Iterable[Book], user_id: str, excluded_ids: Iterable[Any] = ()) -> List[Book]:
    """Drop books owned by ``user_id`` and any whose id is in ``excluded_ids``."""
    excluded = {str(i) for i in excluded_ids}
    return [
        book for book in candidates
        if str(book.get("owner")) != str(user_id) and str(book.get("_id")) not in excluded
    ]


def rank_candidates(candidates: Iterable[Book], score: Callable[[Book], float], limit: Optional[int] = None) -> List[Book]:
    """Score each candidate, highest first; equal scores fall back to ascending id."""
    scored = [{**book, "score": score(book)} for book in candidates]
    scored.sort(key=lambda b: (-b["score"], str(b.get("_id"))))
    return scored[:limit] if limit else scored


def _read_books(user_id: str) -> List[Book]:
    return list(db["book"].find({"owner": user_id, "readingStatus": ReadingStatus.READ.value}))


def get_recommendations(user: Dict[str, Any], limit: int = 10) -> List[Book]:
    user_id = str(user["_id"])
    favorite_genres = (user.get("preferences") or {}).get("favoriteGenres") or []
    read_ids = [b["_id"] for b in _read_books(user_id)]

    query: Dict[str, Any] = {"owner": {"$ne": user_id}, "_id": {"$nin": read_ids}}
    if favorite_genres:
        query["genres"] = {"$in": favorite_genres}

    candidates = exclude_candidates(db["book"].find(query), user_id, read_ids)
    ranked = rank_candidates(candidates, lambda b: favorite_genre_score(b, favorite_genres), limit)
    logger.debug("user=%s recommendations=%d favorites=%s", user_id, len(ranked), favorite_genres)
    return ranked


def get_personalized_recommendations(user: Dict[str, Any], limit: int = 10) -> List[Book]:
    user_id = str(user["_id"])
    history = _read_books(user_id)
    genre_freq, author_freq = reading_profile(history)
    read_ids = [b["_id"] for b in history]

    query = {"owner": {"$ne": user_id}, "_id": {"$nin": read_ids}}
    candidates = exclude_candidates(db["book"].find(query), user_id, read_ids)
    return rank_candidates(candidates, lambda b: personalized_score(b, genre_freq, author_freq), limit)


def get_similar_books(book_id: str, limit: int = 5) -> Optional[List[Book]]:
    """Books sharing a genre or the author with ``book_id``; None when the book does not exist."""
    oid = parse_object_id(book_id)
    source = db["book"].find_one({"_id": oid}) if oid else None
    if not source:
        return None

    or_clauses: List[Dict[str, Any]] = [{"author": source.get("author")}]
    if source.get("genres"):
        or_clauses.append({"genres": {"$in": source["genres"]}})
    candidates = db["book"].find({"_id": {"$ne": source["_id"]}, "$or": or_clauses})
    return rank_candidates(candidates, lambda b: similarity_score(b, source), limit)
