import asyncio
import logging

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pymongo.errors import DuplicateKeyError
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

import config
from analytics import RequestMetrics, RequestTrackingMiddleware, get_analytics, run_daily_rollup, run_metrics_collector
from database import db, ensure_indexes
from routers import admin, auth, books, upload
from routers import search as search_routes
from search import search_service

logging.basicConfig(
    level=config.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

request_metrics = RequestMetrics()

# App and CORS
app = FastAPI(title="Book Management API", version="1.0.0")
app.state.limiter = search_routes.limiter
app.state.request_metrics = request_metrics
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

app.add_middleware(RequestTrackingMiddleware, metrics=request_metrics)
app.add_middleware(
    CORSMiddleware,
    allow_origins=config.ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "PATCH", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization"],
)


@app.middleware("http")
async def security_headers(request: Request, call_next):
    response = await call_next(request)
    response.headers["X-Content-Type-Options"] = "nosniff"
    response.headers["X-Frame-Options"] = "DENY"
    response.headers["X-XSS-Protection"] = "1; mode=block"
    return response


# Error handling
@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(status_code=400, content={"detail": jsonable_encoder(exc.errors())})


@app.exception_handler(DuplicateKeyError)
async def duplicate_key_handler(request: Request, exc: DuplicateKeyError):
    return JSONResponse(status_code=409, content={"detail": "Duplicate key", "keyValue": exc.details.get("keyValue") if exc.details else None})


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    content = {"detail": "Internal server error"}
    if config.is_development():
        content["error"] = str(exc)
    return JSONResponse(status_code=500, content=content)


# Routes
app.include_router(auth.router)
app.include_router(books.router)
app.include_router(search_routes.router)
app.include_router(upload.router)
app.include_router(admin.router)


@app.on_event("startup")
async def startup():
    ensure_indexes()
    get_analytics()
    try:
        search_service.initialize()
    except Exception:
        logger.exception("Error initializing search service")
    app.state.background_tasks = [
        asyncio.create_task(run_metrics_collector(request_metrics)),
        asyncio.create_task(run_daily_rollup()),
    ]
    logger.info("Book Management API started (environment=%s)", config.ENVIRONMENT)


@app.on_event("shutdown")
async def shutdown():
    for task in getattr(app.state, "background_tasks", []):
        task.cancel()


@app.get("/")
def root():
    return {
        "message": "Welcome to Book Management API",
        "endpoints": {
            "auth": "/api/auth",
            "books": "/api/books",
            "search": "/api/search",
            "upload": "/api/upload",
            "admin": "/api/admin",
        },
    }


@app.get("/health")
def health():
    try:
        db.command("ping")
        database = "connected"
    except Exception as e:
        database = f"disconnected: {str(e)[:80]}"
    return {"status": "healthy", "mongodb": database}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=config.PORT)
