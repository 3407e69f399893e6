"""
Request metrics, the analytics document and the background collectors.

All writes to the analytics document are single atomic updates ($push/$set
with upsert) so concurrent handlers and collectors never overwrite each
other's entries.
"""

import asyncio
import logging
import os
import shutil
import threading
from datetime import datetime, timedelta
from http import HTTPStatus
from typing import Any, Dict, List, Optional

from fastapi import Request
from pymongo import ReturnDocument
from starlette.middleware.base import BaseHTTPMiddleware

import config
from database import db, utcnow
from schemas import BookMetric, ErrorEntry, GenreCount, SystemMetric, UserMetric

logger = logging.getLogger(__name__)

ANALYTICS = "analytics"


class RequestMetrics:
    """Per-process request counters, shared between the middleware and the collector."""

    def __init__(self):
        self._lock = threading.Lock()
        self._total = 0
        self._successful = 0
        self._failed = 0

    def record(self, status_code: int) -> None:
        with self._lock:
            self._total += 1
            if status_code < 400:
                self._successful += 1
            else:
                self._failed += 1

    def snapshot(self) -> Dict[str, int]:
        with self._lock:
            return {"total": self._total, "successful": self._successful, "failed": self._failed}

    def snapshot_and_reset(self) -> Dict[str, int]:
        with self._lock:
            counts = {"total": self._total, "successful": self._successful, "failed": self._failed}
            self._total = self._successful = self._failed = 0
            return counts


# Analytics document

def get_analytics() -> Dict[str, Any]:
    """Return the analytics document, creating it on first use."""
    return db[ANALYTICS].find_one_and_update(
        {},
        {"$setOnInsert": {
            "systemMetrics": [], "userMetrics": [], "bookMetrics": [], "errors": [], "backups": [],
            "createdAt": utcnow(),
        }},
        upsert=True,
        return_document=ReturnDocument.AFTER,
    )


def push_entry(field: str, entry: Dict[str, Any]) -> None:
    db[ANALYTICS].update_one({}, {"$push": {field: entry}, "$set": {"updatedAt": utcnow()}}, upsert=True)


def get_entries(field: str) -> List[Dict[str, Any]]:
    doc = db[ANALYTICS].find_one({}, {field: 1})
    return (doc or {}).get(field, [])


def clear_errors() -> None:
    db[ANALYTICS].update_one({}, {"$set": {"errors": [], "updatedAt": utcnow()}})


def record_error(code: int, message: Optional[str], endpoint: str, user_id: Optional[str] = None) -> None:
    entry = ErrorEntry(timestamp=utcnow(), code=str(code), message=message, endpoint=endpoint, userId=user_id)
    push_entry("errors", entry.model_dump())


def record_backup(entry: Dict[str, Any]) -> None:
    push_entry("backups", entry)


# Middleware

class RequestTrackingMiddleware(BaseHTTPMiddleware):
    def __init__(self, app, metrics: RequestMetrics):
        super().__init__(app)
        self.metrics = metrics

    async def dispatch(self, request: Request, call_next):
        try:
            response = await call_next(request)
        except Exception:
            self.metrics.record(500)
            await self._log_error(request, 500)
            raise
        self.metrics.record(response.status_code)
        if response.status_code >= 400:
            await self._log_error(request, response.status_code)
        return response

    @staticmethod
    async def _log_error(request: Request, status_code: int) -> None:
        user_id = getattr(request.state, "user_id", None)
        try:
            await asyncio.to_thread(record_error, status_code, _reason(status_code), request.url.path, user_id)
        except Exception:
            logger.exception("Error logging analytics error")


def _reason(status_code: int) -> str:
    try:
        return HTTPStatus(status_code).phrase
    except ValueError:
        return ""


# Collectors

def collect_system_metrics(metrics: RequestMetrics) -> Dict[str, Any]:
    load = os.getloadavg()[0] if hasattr(os, "getloadavg") else None
    page_size = os.sysconf("SC_PAGE_SIZE")
    total_memory = page_size * os.sysconf("SC_PHYS_PAGES")
    free_memory = page_size * os.sysconf("SC_AVPHYS_PAGES")
    disk = shutil.disk_usage(config.BACKUP_DIR if os.path.isdir(config.BACKUP_DIR) else os.getcwd())

    entry = SystemMetric(
        timestamp=utcnow(),
        cpu={"usage": load, "temperature": None},
        memory={"total": total_memory, "used": total_memory - free_memory, "free": free_memory},
        disk={"total": disk.total, "used": disk.used, "free": disk.free},
        requests=metrics.snapshot_and_reset(),
    ).model_dump()
    push_entry("systemMetrics", entry)
    return entry


def calculate_daily_metrics(now: Optional[datetime] = None) -> Dict[str, Any]:
    now = now or utcnow()
    # stored datetimes come back naive UTC; the day boundary is UTC midnight
    today = now.replace(hour=0, minute=0, second=0, microsecond=0, tzinfo=None)

    total_users = db["user"].count_documents({})
    new_users = db["user"].count_documents({"createdAt": {"$gte": today}})
    total_books = db["book"].count_documents({})
    books_added = db["book"].count_documents({"createdAt": {"$gte": today}})

    genres = db["book"].aggregate([
        {"$unwind": "$genres"},
        {"$group": {"_id": "$genres", "count": {"$sum": 1}}},
        {"$sort": {"count": -1}},
        {"$limit": 5},
    ])
    ratings = list(db["book"].aggregate([
        {"$group": {"_id": None, "avg": {"$avg": "$averageRating"}, "reviews": {"$sum": "$totalReviews"}}},
    ]))

    user_metric = UserMetric(
        date=now,
        totalUsers=total_users,
        newUsers=new_users,
        activeUsers=round(total_users * 0.1),
    ).model_dump()
    book_metric = BookMetric(
        date=now,
        totalBooks=total_books,
        booksAdded=books_added,
        mostPopularGenres=[GenreCount(genre=g["_id"], count=g["count"]) for g in genres],
        averageRating=round(ratings[0]["avg"] or 0, 1) if ratings else 0,
        totalReviews=ratings[0]["reviews"] if ratings else 0,
    ).model_dump()

    db[ANALYTICS].update_one(
        {},
        {"$push": {"userMetrics": user_metric, "bookMetrics": book_metric}, "$set": {"updatedAt": utcnow()}},
        upsert=True,
    )
    return {"userMetrics": user_metric, "bookMetrics": book_metric}


def seconds_until_midnight(now: Optional[datetime] = None) -> float:
    """Seconds until the next UTC midnight, the boundary calculate_daily_metrics uses."""
    now = now or utcnow()
    midnight = (now + timedelta(days=1)).replace(hour=0, minute=0, second=0, microsecond=0)
    return (midnight - now).total_seconds()


async def run_metrics_collector(metrics: RequestMetrics, interval: int = config.METRICS_INTERVAL_SECONDS):
    while True:
        await asyncio.sleep(interval)
        try:
            await asyncio.to_thread(collect_system_metrics, metrics)
        except Exception:
            logger.exception("Error collecting system metrics")


async def run_daily_rollup():
    while True:
        await asyncio.sleep(seconds_until_midnight())
        try:
            await asyncio.to_thread(calculate_daily_metrics)
        except Exception:
            logger.exception("Error calculating daily metrics")
