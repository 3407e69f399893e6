import logging
import os

from dotenv import load_dotenv

load_dotenv()

logger = logging.getLogger(__name__)


def _required(name: str) -> str:
    value = os.getenv(name)
    if not value:
        logger.critical("Missing required environment variable %s", name)
        raise SystemExit(f"Missing required environment variable: {name}")
    return value


def _csv(value: str):
    return [item.strip() for item in value.split(",") if item.strip()]


# Database
DATABASE_URL = _required("DATABASE_URL")
DATABASE_NAME = os.getenv("DATABASE_NAME", "bookmanagement")

# Auth
SECRET_KEY = _required("SECRET_KEY")
ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", 24 * 60))

# HTTP
PORT = int(os.getenv("PORT", 5555))
ENVIRONMENT = os.getenv("ENVIRONMENT", "production")
ALLOWED_ORIGINS = _csv(os.getenv("ALLOWED_ORIGINS", "http://localhost:5173"))
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

# Search
ELASTICSEARCH_URL = os.getenv("ELASTICSEARCH_URL", "http://localhost:9200")
ELASTICSEARCH_USERNAME = os.getenv("ELASTICSEARCH_USERNAME")
ELASTICSEARCH_PASSWORD = os.getenv("ELASTICSEARCH_PASSWORD")
SEARCH_INDEX = os.getenv("SEARCH_INDEX", "books")

# Backups
AWS_REGION = os.getenv("AWS_REGION")
AWS_ACCESS_KEY_ID = os.getenv("AWS_ACCESS_KEY_ID")
AWS_SECRET_ACCESS_KEY = os.getenv("AWS_SECRET_ACCESS_KEY")
AWS_BACKUP_BUCKET = os.getenv("AWS_BACKUP_BUCKET")
BACKUP_DIR = os.getenv("BACKUP_DIR", os.path.join(os.getcwd(), "backups"))

# Images
CLOUDINARY_CLOUD_NAME = os.getenv("CLOUDINARY_CLOUD_NAME")
CLOUDINARY_API_KEY = os.getenv("CLOUDINARY_API_KEY")
CLOUDINARY_API_SECRET = os.getenv("CLOUDINARY_API_SECRET")

# Book metadata
GOOGLE_BOOKS_API = os.getenv("GOOGLE_BOOKS_API", "https://www.googleapis.com/books/v1/volumes")

# Background jobs
METRICS_INTERVAL_SECONDS = int(os.getenv("METRICS_INTERVAL_SECONDS", 5 * 60))


def is_development() -> bool:
    return ENVIRONMENT == "development"
