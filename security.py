from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from fastapi import Depends, HTTPException, Request
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError, jwt
from passlib.context import CryptContext

import config
from database import db, parse_object_id
from schemas import ROLE_CAPABILITIES, Capability, Role

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/login", auto_error=False)


def sanitize(doc: Dict) -> Dict:
    if not doc:
        return doc
    d = {**doc}
    if "_id" in d:
        d["_id"] = str(d["_id"])
    return d


def public_user(doc: Dict) -> Dict:
    d = sanitize(doc)
    if d:
        d.pop("password", None)
    return d


def hash_password(password: str) -> str:
    if len(password) < 6:
        raise HTTPException(status_code=400, detail="Password must be at least 6 characters long")
    return pwd_context.hash(password)


def verify_password(password: str, hashed: str) -> bool:
    if not hashed:
        return False
    return pwd_context.verify(password, hashed)


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None):
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=config.ACCESS_TOKEN_EXPIRE_MINUTES))
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, config.SECRET_KEY, algorithm=config.ALGORITHM)


def get_current_user(request: Request, token: Optional[str] = Depends(oauth2_scheme)) -> Dict[str, Any]:
    credentials_exception = HTTPException(
        status_code=401,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )
    if not token:
        raise HTTPException(status_code=401, detail="No token, authorization denied", headers={"WWW-Authenticate": "Bearer"})
    try:
        payload = jwt.decode(token, config.SECRET_KEY, algorithms=[config.ALGORITHM])
        user_id: str = payload.get("sub")
        if user_id is None:
            raise credentials_exception
    except JWTError:
        raise credentials_exception
    oid = parse_object_id(user_id)
    if oid is None:
        raise credentials_exception
    user = db["user"].find_one({"_id": oid}, {"password": 0})
    if not user:
        raise credentials_exception
    user = sanitize(user)
    # read by the request-tracking middleware when recording errors
    request.state.user_id = user["_id"]
    return user


def user_role(user: Dict[str, Any]) -> Role:
    try:
        return Role(user.get("role", Role.USER.value))
    except ValueError:
        return Role.USER


def has_capability(user: Dict[str, Any], capability: Capability) -> bool:
    return capability in ROLE_CAPABILITIES[user_role(user)]


def require_role(*roles: Role):
    def role_dep(current_user=Depends(get_current_user)):
        if user_role(current_user) not in roles:
            names = " or ".join(r.value for r in roles)
            raise HTTPException(status_code=403, detail=f"Access denied. {names} privileges required.")
        return current_user
    return role_dep


def require_capability(*capabilities: Capability):
    def capability_dep(current_user=Depends(get_current_user)):
        missing = [c.value for c in capabilities if not has_capability(current_user, c)]
        if missing:
            raise HTTPException(status_code=403, detail=f"Access denied. Required permissions: {', '.join(missing)}")
        return current_user
    return capability_dep


def is_owner_or_admin(user: Dict[str, Any], owner_id: Any) -> bool:
    return str(owner_id) == user["_id"] or user_role(user) is Role.ADMIN
