import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel
from pymongo import ReturnDocument

import analytics
from backup import BackupNotFoundError, BackupService, InvalidBackupError, get_backup_service
from database import db, parse_object_id, utcnow
from schemas import Role
from security import public_user, require_role

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/admin", tags=["admin"], dependencies=[Depends(require_role(Role.ADMIN))])


class RestoreRequest(BaseModel):
    backupPath: str


class ScheduleRequest(BaseModel):
    cronExpression: Optional[str] = None


class RoleRequest(BaseModel):
    role: Role


@router.post("/backup")
def create_backup(backups: BackupService = Depends(get_backup_service)):
    try:
        return backups.create_backup()
    except Exception:
        raise HTTPException(status_code=500, detail="Error creating backup")


@router.post("/backup/restore")
def restore_backup(payload: RestoreRequest, backups: BackupService = Depends(get_backup_service)):
    try:
        return backups.restore_from_backup(payload.backupPath)
    except BackupNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc))
    except InvalidBackupError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    except Exception:
        logger.exception("Error restoring from backup %s", payload.backupPath)
        raise HTTPException(status_code=500, detail="Error restoring from backup")


@router.get("/backups")
def list_backups(backups: BackupService = Depends(get_backup_service)):
    return backups.list_backups()


@router.post("/backup/schedule")
def schedule_backup(payload: ScheduleRequest, backups: BackupService = Depends(get_backup_service)):
    try:
        return backups.schedule_backup(payload.cronExpression)
    except Exception:
        raise HTTPException(status_code=500, detail="Error scheduling backup")


@router.get("/metrics/system")
def system_metrics():
    return analytics.get_entries("systemMetrics")


@router.get("/metrics/users")
def user_metrics():
    return analytics.get_entries("userMetrics")


@router.get("/metrics/books")
def book_metrics():
    return analytics.get_entries("bookMetrics")


@router.post("/metrics/rollup")
def run_rollup():
    return analytics.calculate_daily_metrics()


@router.get("/logs/errors")
def error_logs():
    return analytics.get_entries("errors")


@router.delete("/logs/errors")
def clear_error_logs():
    analytics.clear_errors()
    return {"message": "Error logs cleared successfully"}


@router.get("/users")
def list_users(role: Optional[Role] = None, limit: int = Query(100, ge=1, le=1000)):
    q = {"role": role.value} if role else {}
    users = [public_user(u) for u in db["user"].find(q, {"password": 0}).limit(limit)]
    return {"count": len(users), "data": users}


@router.put("/users/{user_id}/role")
def update_user_role(user_id: str, payload: RoleRequest):
    oid = parse_object_id(user_id)
    user = db["user"].find_one_and_update(
        {"_id": oid},
        {"$set": {"role": payload.role.value, "updatedAt": utcnow()}},
        projection={"password": 0},
        return_document=ReturnDocument.AFTER,
    ) if oid else None
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    logger.info("User %s role set to %s", user_id, payload.role.value)
    return public_user(user)
