"""
Full-text book search backed by Elasticsearch.

``build_search_query`` turns a ``SearchParams`` object into the request body;
``SearchService`` owns the client, the index mapping and the document sync
used by the book routes.
"""

import logging
import math
from typing import Any, Dict, List, Literal, Optional

from elasticsearch import Elasticsearch
from pydantic import BaseModel, Field

import config

logger = logging.getLogger(__name__)

SortKey = Literal["relevance", "rating", "year", "reviews"]

SORTS: Dict[str, List[Any]] = {
    "relevance": ["_score"],
    "rating": [{"averageRating": "desc"}],
    "year": [{"publishYear": "desc"}],
    "reviews": [{"totalReviews": "desc"}],
}

TEXT_FIELDS = ["title^2", "author^1.5", "description"]

INDEX_SETTINGS = {
    "analysis": {
        "analyzer": {
            "custom_analyzer": {
                "type": "custom",
                "tokenizer": "standard",
                "filter": ["lowercase", "stop", "snowball"],
            }
        }
    }
}

INDEX_MAPPINGS = {
    "properties": {
        "title": {"type": "text", "analyzer": "custom_analyzer"},
        "author": {"type": "text", "analyzer": "custom_analyzer"},
        "description": {"type": "text", "analyzer": "custom_analyzer"},
        "title_suggest": {"type": "completion"},
        "author_suggest": {"type": "completion"},
        "genres": {"type": "keyword"},
        "isbn": {"type": "keyword"},
        "publishYear": {"type": "integer"},
        "averageRating": {"type": "float"},
        "totalReviews": {"type": "integer"},
        "owner": {"type": "keyword"},
    }
}


class SearchParams(BaseModel):
    query: Optional[str] = None
    genres: List[str] = Field(default_factory=list)
    min_rating: float = Field(0, ge=0, le=5)
    max_rating: float = Field(5, ge=0, le=5)
    start_year: Optional[int] = None
    end_year: Optional[int] = None
    owner: Optional[str] = None
    page: int = Field(1, ge=1)
    limit: int = Field(10, ge=1, le=100)
    sort_by: SortKey = "relevance"


def build_search_query(params: SearchParams) -> Dict[str, Any]:
    must: List[Dict[str, Any]] = []
    filters: List[Dict[str, Any]] = []

    if params.query and params.query.strip():
        must.append({
            "multi_match": {
                "query": params.query.strip(),
                "fields": TEXT_FIELDS,
                "fuzziness": "AUTO",
            }
        })

    if params.genres:
        filters.append({"terms": {"genres": list(params.genres)}})

    filters.append({"range": {"averageRating": {"gte": params.min_rating, "lte": params.max_rating}}})

    if params.start_year is not None or params.end_year is not None:
        year_range: Dict[str, int] = {}
        if params.start_year is not None:
            year_range["gte"] = params.start_year
        if params.end_year is not None:
            year_range["lte"] = params.end_year
        filters.append({"range": {"publishYear": year_range}})

    if params.owner:
        filters.append({"term": {"owner": params.owner}})

    return {
        "query": {"bool": {"must": must, "filter": filters}},
        "sort": SORTS[params.sort_by],
        "from": (params.page - 1) * params.limit,
        "size": params.limit,
    }


def book_document(book: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "title": book.get("title"),
        "author": book.get("author"),
        "description": book.get("description", ""),
        "title_suggest": book.get("title"),
        "author_suggest": book.get("author"),
        "genres": book.get("genres", []),
        "isbn": book.get("isbn"),
        "publishYear": book.get("publishYear"),
        "averageRating": book.get("averageRating", 0),
        "totalReviews": book.get("totalReviews", 0),
        "owner": str(book.get("owner")),
    }


class SearchService:
    def __init__(self, client: Optional[Elasticsearch] = None, index_name: str = config.SEARCH_INDEX):
        self._client = client
        self.index_name = index_name

    @property
    def client(self) -> Elasticsearch:
        if self._client is None:
            auth = None
            if config.ELASTICSEARCH_USERNAME:
                auth = (config.ELASTICSEARCH_USERNAME, config.ELASTICSEARCH_PASSWORD or "")
            self._client = Elasticsearch(config.ELASTICSEARCH_URL, basic_auth=auth)
        return self._client

    def initialize(self) -> None:
        if not self.client.indices.exists(index=self.index_name):
            self.create_index()

    def create_index(self) -> None:
        self.client.indices.create(index=self.index_name, settings=INDEX_SETTINGS, mappings=INDEX_MAPPINGS)
        logger.info("Created search index %s", self.index_name)

    def index_book(self, book: Dict[str, Any]) -> None:
        self.client.index(index=self.index_name, id=str(book["_id"]), document=book_document(book))

    def delete_book(self, book_id: str) -> None:
        self.client.delete(index=self.index_name, id=str(book_id))

    def search(self, params: SearchParams) -> Dict[str, Any]:
        body = build_search_query(params)
        response = self.client.search(
            index=self.index_name,
            query=body["query"],
            sort=body["sort"],
            from_=body["from"],
            size=body["size"],
        )
        hits = response["hits"]
        total = hits["total"]["value"]
        return {
            "total": total,
            "books": [{"id": hit["_id"], **hit["_source"], "score": hit.get("_score")} for hit in hits["hits"]],
            "page": params.page,
            "totalPages": math.ceil(total / params.limit),
        }

    def suggest(self, query: str, limit: int = 5) -> Dict[str, List[str]]:
        response = self.client.search(
            index=self.index_name,
            suggest={
                "title_suggest": {"prefix": query, "completion": {"field": "title_suggest", "size": limit}},
                "author_suggest": {"prefix": query, "completion": {"field": "author_suggest", "size": limit}},
            },
        )
        suggestions = response["suggest"]
        return {
            "titles": [o["text"] for o in suggestions["title_suggest"][0]["options"]],
            "authors": [o["text"] for o in suggestions["author_suggest"][0]["options"]],
        }

    def sync_book(self, book: Dict[str, Any]) -> None:
        """Index ``book``, logging instead of raising when the cluster is unavailable."""
        try:
            self.index_book(book)
        except Exception:
            logger.exception("Failed to index book %s", book.get("_id"))

    def unsync_book(self, book_id: str) -> None:
        try:
            self.delete_book(book_id)
        except Exception:
            logger.exception("Failed to remove book %s from search index", book_id)


search_service = SearchService()


def get_search_service() -> SearchService:
    return search_service
