from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt
from fastapi import Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from passlib.context import CryptContext
from pymongo.database import Database

from config import JWT_ALGO, JWT_EXPIRE_DAYS, JWT_SECRET
from database import get_db, serialize_doc, to_object_id

# Password hashing
pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")

# Missing credentials must be a 401, not HTTPBearer's default error.
security = HTTPBearer(auto_error=False)


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(password: str, hashed: str) -> bool:
    if not hashed:
        return False
    return pwd_context.verify(password, hashed)


def create_token(payload: dict) -> str:
    exp = datetime.now(timezone.utc) + timedelta(days=JWT_EXPIRE_DAYS)
    to_encode = {**payload, "exp": exp}
    return jwt.encode(to_encode, JWT_SECRET, algorithm=JWT_ALGO)


def decode_token(token: str) -> dict:
    try:
        return jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALGO])
    except jwt.ExpiredSignatureError:
        raise HTTPException(status_code=401, detail="Token expired")
    except jwt.InvalidTokenError:
        raise HTTPException(status_code=401, detail="Invalid token")


def resolve_token_user(database: Database, token: Optional[str]) -> dict:
    """Turn a bearer token into the stored user, without the password."""
    if not token:
        raise HTTPException(status_code=401, detail="Not authorized, no token")
    payload = decode_token(token)
    user_id = payload.get("id")
    if not user_id:
        raise HTTPException(status_code=401, detail="Invalid token payload")
    try:
        oid = to_object_id(user_id)
    except HTTPException:
        raise HTTPException(status_code=401, detail="Invalid token payload")
    user = database["user"].find_one({"_id": oid}, {"password": 0})
    if not user:
        raise HTTPException(status_code=401, detail="User not found")
    return serialize_doc(user)


def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    database: Database = Depends(get_db),
):
    token = credentials.credentials if credentials else None
    return resolve_token_user(database, token)


def require_admin(user=Depends(get_current_user)):
    if user.get("role") != "admin":
        raise HTTPException(status_code=403, detail="Admin only")
    return user
