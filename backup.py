"""
Database backup and restore.

A backup bundle is a gzip-compressed Extended JSON document::

    {timestamp, books[], users[], analytics[], metadata: {version, totalBooks, totalUsers}}

User password hashes are never written to a bundle. Bundles are kept in
``BACKUP_DIR`` and, when ``AWS_BACKUP_BUCKET`` is configured, uploaded to S3.
"""

import gzip
import logging
import os
from typing import Any, Dict, List, Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError
from bson import json_util

import config
from analytics import get_entries, record_backup
from database import db, utcnow

logger = logging.getLogger(__name__)

BACKUP_VERSION = "1.0"
REQUIRED_FIELDS = ("timestamp", "books", "users", "analytics", "metadata")


class InvalidBackupError(ValueError):
    pass


class BackupNotFoundError(FileNotFoundError):
    pass


class BackupService:
    def __init__(self, backup_dir: Optional[str] = None, bucket: Optional[str] = None, s3_client=None):
        self.backup_dir = backup_dir or config.BACKUP_DIR
        self.bucket = bucket if bucket is not None else config.AWS_BACKUP_BUCKET
        self._s3_client = s3_client

    @property
    def s3_client(self):
        if self._s3_client is None:
            self._s3_client = boto3.client(
                "s3",
                region_name=config.AWS_REGION,
                aws_access_key_id=config.AWS_ACCESS_KEY_ID,
                aws_secret_access_key=config.AWS_SECRET_ACCESS_KEY,
            )
        return self._s3_client

    def create_backup(self) -> Dict[str, Any]:
        try:
            now = utcnow()
            timestamp = now.isoformat().replace(":", "-").replace(".", "-").replace("+", "-")
            key = f"backup-{timestamp}.json.gz"
            path = os.path.join(self.backup_dir, key)
            os.makedirs(self.backup_dir, exist_ok=True)

            books = list(db["book"].find({}))
            users = list(db["user"].find({}, {"password": 0}))
            analytics = list(db["analytics"].find({}))
            bundle = {
                "timestamp": timestamp,
                "books": books,
                "users": users,
                "analytics": analytics,
                "metadata": {
                    "version": BACKUP_VERSION,
                    "totalBooks": len(books),
                    "totalUsers": len(users),
                },
            }
            self.compress_and_save(bundle, path)

            location = "local"
            if self.bucket:
                self.upload_to_s3(path, key)
                location = "s3"

            size = os.path.getsize(path)
            record_backup({"timestamp": now, "location": location, "size": size, "status": "completed", "key": key})
            logger.info("Backup %s written (%d bytes, %s)", key, size, location)
            return {"success": True, "path": path, "key": key, "timestamp": timestamp, "location": location, "size": size}
        except Exception as exc:
            logger.exception("Error creating backup")
            record_backup({"timestamp": utcnow(), "status": "failed", "error": str(exc)})
            raise

    def restore_from_backup(self, locator: str) -> Dict[str, Any]:
        """Replace all books, users and analytics with the contents of a bundle.

        The three collections are cleared and reloaded one after another; a
        failure part-way leaves whatever was already written in place.
        Password hashes of users that exist both now and in the bundle are kept.
        """
        path = self.resolve(locator)
        data = self.read_and_decompress(path)
        try:
            bundle = json_util.loads(data)
        except ValueError as exc:
            raise InvalidBackupError(f"Invalid backup data: {exc}") from exc
        self.validate_backup_data(bundle)

        passwords = {u["_id"]: u["password"] for u in db["user"].find({}, {"password": 1}) if u.get("password")}
        users = []
        for user in bundle["users"]:
            user = dict(user)
            if user.get("_id") in passwords:
                user["password"] = passwords[user["_id"]]
            users.append(user)

        for name, docs in (("book", bundle["books"]), ("user", users), ("analytics", bundle["analytics"])):
            db[name].delete_many({})
            if docs:
                db[name].insert_many(docs)

        logger.info("Restored backup %s (%s)", bundle["timestamp"], bundle["metadata"])
        return {"success": True, "timestamp": bundle["timestamp"], "metadata": bundle["metadata"]}

    def resolve(self, locator: str) -> str:
        if not locator:
            raise BackupNotFoundError("Backup path is required")
        candidates = [locator, os.path.join(self.backup_dir, os.path.basename(locator))]
        for path in candidates:
            if os.path.isfile(path):
                return path
        if self.bucket:
            path = candidates[1]
            os.makedirs(self.backup_dir, exist_ok=True)
            try:
                self.download_from_s3(os.path.basename(locator), path)
            except (BotoCoreError, ClientError) as exc:
                raise BackupNotFoundError(f"Backup not found: {locator}") from exc
            return path
        raise BackupNotFoundError(f"Backup not found: {locator}")

    @staticmethod
    def compress_and_save(data: Dict[str, Any], path: str) -> None:
        with gzip.open(path, "wt", encoding="utf-8") as fh:
            fh.write(json_util.dumps(data))

    @staticmethod
    def read_and_decompress(path: str) -> str:
        try:
            with gzip.open(path, "rt", encoding="utf-8") as fh:
                return fh.read()
        except (OSError, EOFError) as exc:
            raise InvalidBackupError(f"Could not read backup {path}: {exc}") from exc

    def upload_to_s3(self, path: str, key: str) -> None:
        self.s3_client.upload_file(path, self.bucket, key)

    def download_from_s3(self, key: str, path: str) -> None:
        self.s3_client.download_file(self.bucket, key, path)

    @staticmethod
    def validate_backup_data(data: Any) -> None:
        if not isinstance(data, dict):
            raise InvalidBackupError("Invalid backup data structure")
        missing = [f for f in REQUIRED_FIELDS if data.get(f) is None]
        if missing:
            raise InvalidBackupError(f"Invalid backup data. Missing fields: {', '.join(missing)}")
        if not all(isinstance(data[f], list) for f in ("books", "users", "analytics")):
            raise InvalidBackupError("Invalid backup data structure")

    def schedule_backup(self, cron_expression: Optional[str] = None) -> Dict[str, Any]:
        # TODO: register cron_expression with a scheduler instead of backing up immediately
        logger.info("Backup requested with schedule %r; running now", cron_expression)
        return self.create_backup()

    @staticmethod
    def list_backups() -> List[Dict[str, Any]]:
        return get_entries("backups")


backup_service = BackupService()


def get_backup_service() -> BackupService:
    return backup_service
