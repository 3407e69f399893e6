"""
Administration commands.

    python cli.py create-admin --email admin@example.com --name "Site Admin" --password ...
    python cli.py reset-admin-password --email admin@example.com --password ...
    python cli.py ensure-indexes
    python cli.py backup
    python cli.py restore backups/backup-....json.gz
"""

import argparse
import getpass
import logging
import sys

import config
from backup import BackupService
from database import create_document, db, ensure_indexes, utcnow
from schemas import Role, User as UserSchema
from security import hash_password

logger = logging.getLogger("cli")


def create_admin(email: str, name: str, password: str) -> bool:
    """Create an admin account; False when the email is already registered."""
    email = email.lower()
    if db["user"].find_one({"email": email}):
        logger.info("Admin user already exists: %s", email)
        return False
    create_document("user", UserSchema(name=name, email=email, password=hash_password(password), role=Role.ADMIN))
    logger.info("Admin user created: %s", email)
    return True


def reset_admin_password(email: str, name: str, password: str) -> None:
    email = email.lower()
    result = db["user"].update_one(
        {"email": email},
        {"$set": {"password": hash_password(password), "role": Role.ADMIN.value, "updatedAt": utcnow()}},
    )
    if result.matched_count == 0:
        logger.info("Admin user not found, creating %s", email)
        create_admin(email, name, password)
    else:
        logger.info("Admin password reset: %s", email)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Book Management API administration")
    sub = parser.add_subparsers(dest="command", required=True)

    for cmd in ("create-admin", "reset-admin-password"):
        p = sub.add_parser(cmd)
        p.add_argument("--email", required=True)
        p.add_argument("--name", default="Administrator")
        p.add_argument("--password", help="prompted for when omitted")

    sub.add_parser("ensure-indexes")
    sub.add_parser("backup")
    restore = sub.add_parser("restore")
    restore.add_argument("locator", help="backup file path or S3 key")
    return parser


def main(argv=None) -> int:
    logging.basicConfig(level=config.LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    args = build_parser().parse_args(argv)

    if args.command in ("create-admin", "reset-admin-password"):
        password = args.password or getpass.getpass("Password: ")
        if args.command == "create-admin":
            create_admin(args.email, args.name, password)
        else:
            reset_admin_password(args.email, args.name, password)
    elif args.command == "ensure-indexes":
        ensure_indexes()
    elif args.command == "backup":
        result = BackupService().create_backup()
        print(result["path"])
    elif args.command == "restore":
        result = BackupService().restore_from_backup(args.locator)
        print(f"Restored backup from {result['timestamp']}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
