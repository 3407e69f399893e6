import logging
import math
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from pydantic import BaseModel, Field
from pymongo import ReturnDocument

import recommendations
from database import create_document, db, parse_object_id, utcnow
from isbn import normalize_isbn, validate_isbn
from schemas import Book as BookSchema, Capability, CoverImage, Genre, ReadingStatus, Review as ReviewSchema, Role
from search import SearchService, get_search_service
from security import get_current_user, is_owner_or_admin, require_capability, sanitize, user_role

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/books", tags=["books"])

REQUIRED_FIELDS_MESSAGE = "Send all required fields: title, author, publishYear"
REVIEW_WRITE_ATTEMPTS = 5


class BookIn(BaseModel):
    title: Optional[str] = None
    author: Optional[str] = None
    publishYear: Optional[int] = None
    isbn: Optional[str] = None
    genres: Optional[List[Genre]] = None
    description: Optional[str] = None
    pageCount: Optional[int] = Field(None, ge=1)
    coverImage: Optional[CoverImage] = None
    readingStatus: Optional[ReadingStatus] = None
    readingProgress: Optional[int] = Field(None, ge=0, le=100)


class ReviewIn(BaseModel):
    rating: int = Field(..., ge=1, le=5)
    comment: str = Field(..., min_length=1)


class StatusIn(BaseModel):
    readingStatus: ReadingStatus
    readingProgress: Optional[int] = Field(None, ge=0, le=100)


# Helpers

def rating_summary(reviews: List[Dict[str, Any]]) -> Dict[str, Any]:
    """averageRating rounded half-up to one decimal, plus the review count."""
    if not reviews:
        return {"averageRating": 0, "totalReviews": 0}
    mean = sum(r["rating"] for r in reviews) / len(reviews)
    return {"averageRating": math.floor(mean * 10 + 0.5) / 10, "totalReviews": len(reviews)}


def estimated_reading_time(page_count: Optional[int]) -> Optional[int]:
    return math.floor(page_count * 1.5 + 0.5) if page_count else None


def require_fields(payload: BookIn) -> None:
    if not (payload.title and payload.title.strip()) or not (payload.author and payload.author.strip()) or not payload.publishYear:
        raise HTTPException(status_code=400, detail=REQUIRED_FIELDS_MESSAGE)


def clean_isbn(isbn: Optional[str], exclude_id=None) -> Optional[str]:
    if isbn is None or not isbn.strip():
        return None
    if not validate_isbn(isbn):
        raise HTTPException(status_code=400, detail="Invalid ISBN format")
    isbn = normalize_isbn(isbn).upper()
    query: Dict[str, Any] = {"isbn": isbn}
    if exclude_id is not None:
        query["_id"] = {"$ne": exclude_id}
    if db["book"].find_one(query):
        raise HTTPException(status_code=409, detail="A book with this ISBN already exists")
    return isbn


def get_book_or_404(book_id: str) -> Dict[str, Any]:
    oid = parse_object_id(book_id)
    book = db["book"].find_one({"_id": oid}) if oid else None
    if not book:
        raise HTTPException(status_code=404, detail="Book not found!")
    return book


def append_review(book: Dict[str, Any], review: Dict[str, Any]) -> Dict[str, Any]:
    """Push a review and its rating summary in one write.

    The write only applies while the stored review count still matches the
    copy the summary was computed from; otherwise the book is re-read and
    the write retried.
    """
    for _ in range(REVIEW_WRITE_ATTEMPTS):
        reviews = book.get("reviews") or []
        seen = {"reviews": {"$size": len(reviews)}}
        if not reviews:
            seen = {"$or": [seen, {"reviews": {"$exists": False}}]}
        updated = db["book"].find_one_and_update(
            {"_id": book["_id"], **seen},
            {"$push": {"reviews": review}, "$set": {**rating_summary(reviews + [review]), "updatedAt": utcnow()}},
            return_document=ReturnDocument.AFTER,
        )
        if updated:
            return updated
        book = db["book"].find_one({"_id": book["_id"]})
        if not book:
            raise HTTPException(status_code=404, detail="Book not found!")
    raise HTTPException(status_code=409, detail="Book was modified concurrently, please retry")


def log_activity(user: Dict[str, Any], action: str, book_id: Optional[str], request: Request) -> None:
    entry = {
        "action": action,
        "bookId": book_id,
        "details": {"method": request.method, "url": str(request.url.path)},
        "timestamp": utcnow(),
    }
    db["user"].update_one({"_id": parse_object_id(user["_id"])}, {"$push": {"activityLog": entry}})


# Routes

@router.post("", status_code=201)
def create_book(
    payload: BookIn,
    request: Request,
    current_user=Depends(require_capability(Capability.CREATE)),
    search: SearchService = Depends(get_search_service),
):
    require_fields(payload)
    data = payload.model_dump(exclude_none=True)
    data.update(
        title=payload.title.strip(),
        author=payload.author.strip(),
        owner=current_user["_id"],
        estimatedReadingTime=estimated_reading_time(payload.pageCount),
    )
    isbn = clean_isbn(payload.isbn)
    data.pop("isbn", None)
    doc = BookSchema(**data).model_dump()
    # sparse unique index: absent, not null
    doc.pop("isbn", None)
    if isbn:
        doc["isbn"] = isbn

    book_id = create_document("book", doc)
    book = db["book"].find_one({"_id": parse_object_id(book_id)})
    logger.info("Book %s created by %s", book_id, current_user["_id"])
    log_activity(current_user, "ADD_BOOK", book_id, request)
    search.sync_book(book)
    return sanitize(book)


@router.get("")
def list_books(
    owner: Optional[str] = None,
    mine: bool = False,
    genre: Optional[Genre] = None,
    readingStatus: Optional[ReadingStatus] = None,
    current_user=Depends(get_current_user),
):
    q: Dict[str, Any] = {}
    if mine:
        q["owner"] = current_user["_id"]
    elif owner:
        q["owner"] = owner
    if genre:
        q["genres"] = genre.value
    if readingStatus:
        q["readingStatus"] = readingStatus.value
    books = [sanitize(b) for b in db["book"].find(q)]
    return {"count": len(books), "data": books}


@router.get("/recommendations")
def get_recommendations(limit: int = Query(10, ge=1, le=50), current_user=Depends(get_current_user)):
    books = recommendations.get_recommendations(current_user, limit)
    return [sanitize(b) for b in books]


@router.get("/recommendations/personalized")
def get_personalized_recommendations(limit: int = Query(10, ge=1, le=50), current_user=Depends(get_current_user)):
    books = recommendations.get_personalized_recommendations(current_user, limit)
    return [sanitize(b) for b in books]


@router.get("/{book_id}")
def get_book(book_id: str, current_user=Depends(get_current_user)):
    return sanitize(get_book_or_404(book_id))


@router.get("/{book_id}/similar")
def get_similar_books(book_id: str, limit: int = Query(5, ge=1, le=50), current_user=Depends(get_current_user)):
    books = recommendations.get_similar_books(book_id, limit)
    if books is None:
        raise HTTPException(status_code=404, detail="Book not found!")
    return [sanitize(b) for b in books]


@router.put("/{book_id}")
def update_book(
    book_id: str,
    payload: BookIn,
    request: Request,
    current_user=Depends(require_capability(Capability.UPDATE)),
    search: SearchService = Depends(get_search_service),
):
    require_fields(payload)
    book = get_book_or_404(book_id)
    if not is_owner_or_admin(current_user, book.get("owner")) and user_role(current_user) is not Role.MODERATOR:
        raise HTTPException(status_code=403, detail="Access denied. Owner privileges required.")

    updates = payload.model_dump(exclude_unset=True, exclude_none=True, mode="json")
    updates["title"] = payload.title.strip()
    updates["author"] = payload.author.strip()
    if "isbn" in updates:
        isbn = clean_isbn(payload.isbn, exclude_id=book["_id"])
        if isbn:
            updates["isbn"] = isbn
        else:
            updates.pop("isbn")
    if "pageCount" in updates:
        updates["estimatedReadingTime"] = estimated_reading_time(payload.pageCount)
    updates["updatedAt"] = utcnow()

    updated = db["book"].find_one_and_update(
        {"_id": book["_id"]},
        {"$set": updates},
        return_document=ReturnDocument.AFTER,
    )
    if not updated:
        raise HTTPException(status_code=404, detail="Book not found!")
    log_activity(current_user, "UPDATE_BOOK", book_id, request)
    search.sync_book(updated)
    return sanitize(updated)


@router.delete("/{book_id}")
def delete_book(
    book_id: str,
    request: Request,
    current_user=Depends(get_current_user),
    search: SearchService = Depends(get_search_service),
):
    book = get_book_or_404(book_id)
    if not is_owner_or_admin(current_user, book.get("owner")):
        raise HTTPException(status_code=403, detail="Access denied. Owner privileges required.")
    result = db["book"].delete_one({"_id": book["_id"]})
    if result.deleted_count == 0:
        raise HTTPException(status_code=404, detail="Book not found!")
    logger.info("Book %s deleted by %s", book_id, current_user["_id"])
    log_activity(current_user, "DELETE_BOOK", book_id, request)
    search.unsync_book(book_id)
    return {"message": "Book deleted successfully!"}


@router.post("/{book_id}/reviews", status_code=201)
def add_review(
    book_id: str,
    payload: ReviewIn,
    request: Request,
    current_user=Depends(get_current_user),
    search: SearchService = Depends(get_search_service),
):
    book = get_book_or_404(book_id)
    review = ReviewSchema(
        user=current_user["_id"], rating=payload.rating, comment=payload.comment.strip(), createdAt=utcnow()
    ).model_dump()
    updated = append_review(book, review)
    log_activity(current_user, "ADD_REVIEW", book_id, request)
    search.sync_book(updated)
    return sanitize(updated)


@router.get("/{book_id}/reviews")
def list_reviews(book_id: str, current_user=Depends(get_current_user)):
    book = get_book_or_404(book_id)
    reviews = book.get("reviews", [])
    return {"count": len(reviews), "data": reviews, **rating_summary(reviews)}


@router.patch("/{book_id}/status")
def update_reading_status(book_id: str, payload: StatusIn, current_user=Depends(get_current_user)):
    book = get_book_or_404(book_id)
    if str(book.get("owner")) != current_user["_id"]:
        raise HTTPException(status_code=403, detail="Access denied. Owner privileges required.")
    updates: Dict[str, Any] = {"readingStatus": payload.readingStatus.value, "updatedAt": utcnow()}
    if payload.readingProgress is not None:
        updates["readingProgress"] = payload.readingProgress
    elif payload.readingStatus is ReadingStatus.READ:
        updates["readingProgress"] = 100
    updated = db["book"].find_one_and_update(
        {"_id": book["_id"]}, {"$set": updates}, return_document=ReturnDocument.AFTER
    )
    return sanitize(updated)
