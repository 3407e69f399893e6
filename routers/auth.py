from typing import Any, Dict, List

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, EmailStr, Field
from pymongo import ReturnDocument

from database import create_document, db, parse_object_id, utcnow
from schemas import Genre, Preferences, User as UserSchema
from security import create_access_token, get_current_user, hash_password, public_user, verify_password

router = APIRouter(prefix="/api/auth", tags=["auth"])


class RegisterRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    email: EmailStr
    password: str


class LoginRequest(BaseModel):
    email: EmailStr
    password: str


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    user: Dict[str, Any]


class PreferencesRequest(BaseModel):
    favoriteGenres: List[Genre]


class UpdatePasswordRequest(BaseModel):
    old_password: str
    new_password: str


@router.post("/register", response_model=TokenResponse, status_code=201)
def register(payload: RegisterRequest):
    email = payload.email.lower()
    if db["user"].find_one({"email": email}):
        raise HTTPException(status_code=409, detail="Email already registered")
    user = UserSchema(
        name=payload.name.strip(),
        email=email,
        password=hash_password(payload.password),
    )
    uid = create_document("user", user)
    doc = db["user"].find_one({"_id": parse_object_id(uid)})
    return TokenResponse(access_token=create_access_token({"sub": uid}), user=public_user(doc))


@router.post("/login", response_model=TokenResponse)
def login(payload: LoginRequest):
    user = db["user"].find_one({"email": payload.email.lower()})
    if not user or not verify_password(payload.password, user.get("password", "")):
        raise HTTPException(status_code=401, detail="Invalid email or password")
    db["user"].update_one({"_id": user["_id"]}, {"$set": {"lastLogin": utcnow()}})
    token = create_access_token({"sub": str(user["_id"])})
    return TokenResponse(access_token=token, user=public_user(user))


@router.get("/me")
def me(current_user=Depends(get_current_user)):
    return current_user


@router.put("/preferences")
def update_preferences(payload: PreferencesRequest, current_user=Depends(get_current_user)):
    prefs = Preferences(favoriteGenres=payload.favoriteGenres).model_dump()
    user = db["user"].find_one_and_update(
        {"_id": parse_object_id(current_user["_id"])},
        {"$set": {"preferences": prefs, "updatedAt": utcnow()}},
        projection={"password": 0},
        return_document=ReturnDocument.AFTER,
    )
    return public_user(user)


@router.put("/password")
def update_password(payload: UpdatePasswordRequest, current_user=Depends(get_current_user)):
    user = db["user"].find_one({"_id": parse_object_id(current_user["_id"])})
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    if not verify_password(payload.old_password, user.get("password", "")):
        raise HTTPException(status_code=400, detail="Old password incorrect")
    new_hash = hash_password(payload.new_password)
    db["user"].update_one({"_id": user["_id"]}, {"$set": {"password": new_hash, "updatedAt": utcnow()}})
    return {"message": "Password updated"}

