import logging
from typing import List, Optional

import httpx
from fastapi import APIRouter, Depends, HTTPException, Query, Request
from pydantic import BaseModel, ValidationError
from slowapi import Limiter
from slowapi.util import get_remote_address

from isbn import BookNotFoundError, InvalidISBNError, convert_isbn10_to_13, lookup_isbn, search_external_books, validate_isbn
from search import SearchParams, SearchService, SortKey, get_search_service
from security import get_current_user

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/search", tags=["search"])

limiter = Limiter(key_func=get_remote_address)
RATE_LIMIT = "100 per 15 minutes"


class ISBNRequest(BaseModel):
    isbn: str


@router.get("/isbn/{isbn}")
@limiter.limit(RATE_LIMIT)
def lookup(request: Request, isbn: str, current_user=Depends(get_current_user)):
    if not validate_isbn(isbn):
        raise HTTPException(status_code=400, detail="Invalid ISBN format")
    try:
        return lookup_isbn(isbn)
    except BookNotFoundError:
        raise HTTPException(status_code=404, detail="Book not found")
    except httpx.HTTPError:
        logger.exception("Error looking up ISBN %s", isbn)
        raise HTTPException(status_code=502, detail="Error looking up ISBN")


@router.get("/books")
@limiter.limit(RATE_LIMIT)
def search_books(
    request: Request,
    query: Optional[str] = None,
    genres: List[str] = Query([]),
    minRating: float = 0,
    maxRating: float = 5,
    startYear: Optional[int] = None,
    endYear: Optional[int] = None,
    includeOwn: bool = False,
    page: int = 1,
    limit: int = 10,
    sortBy: SortKey = "relevance",
    current_user=Depends(get_current_user),
    search: SearchService = Depends(get_search_service),
):
    try:
        params = SearchParams(
            query=query,
            genres=genres,
            min_rating=minRating,
            max_rating=maxRating,
            start_year=startYear,
            end_year=endYear,
            owner=current_user["_id"] if includeOwn else None,
            page=page,
            limit=limit,
            sort_by=sortBy,
        )
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail=exc.errors(include_url=False, include_context=False))
    return search.search(params)


@router.get("/suggest")
@limiter.limit(RATE_LIMIT)
def suggest(
    request: Request,
    query: str,
    limit: int = Query(5, ge=1, le=20),
    current_user=Depends(get_current_user),
    search: SearchService = Depends(get_search_service),
):
    return search.suggest(query, limit)


@router.get("/books/search")
@limiter.limit(RATE_LIMIT)
def search_external(
    request: Request,
    query: str,
    limit: int = Query(10, ge=1, le=40),
    current_user=Depends(get_current_user),
):
    try:
        return search_external_books(query, limit)
    except httpx.HTTPError:
        logger.exception("Error searching external books for %r", query)
        raise HTTPException(status_code=502, detail="Error searching books")


@router.post("/isbn/validate")
@limiter.limit(RATE_LIMIT)
def validate(request: Request, payload: ISBNRequest, current_user=Depends(get_current_user)):
    return {"isValid": validate_isbn(payload.isbn)}


@router.post("/isbn/convert")
@limiter.limit(RATE_LIMIT)
def convert(request: Request, payload: ISBNRequest, current_user=Depends(get_current_user)):
    try:
        return {"isbn13": convert_isbn10_to_13(payload.isbn)}
    except InvalidISBNError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
