import logging
import os
from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import Depends, Header, HTTPException
from jose import JWTError, jwt
from passlib.context import CryptContext
from pydantic import BaseModel, EmailStr

from database import create_document, db, get_collection
from schemas import Admin

logger = logging.getLogger(__name__)

JWT_SECRET = os.getenv("JWT_SECRET", "dev-secret-change-me")
JWT_ALG = "HS256"
JWT_EXPIRES_MINUTES = int(os.getenv("JWT_EXPIRES_MINUTES", 60 * 24))
ADMIN_EMAIL = os.getenv("ADMIN_EMAIL")
ADMIN_PASSWORD = os.getenv("ADMIN_PASSWORD")

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(password: str, password_hash: str) -> bool:
    return pwd_context.verify(password, password_hash)


def create_token(data: dict, expires_minutes: int = JWT_EXPIRES_MINUTES) -> str:
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + timedelta(minutes=expires_minutes)
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, JWT_SECRET, algorithm=JWT_ALG)


class AuthUser(BaseModel):
    id: str
    email: EmailStr
    name: str
    role: str = "customer"


def get_current_user(authorization: Optional[str] = Header(None)) -> AuthUser:
    if not authorization:
        raise HTTPException(status_code=401, detail="Missing Authorization header")
    try:
        scheme, token = authorization.split()
        if scheme.lower() != "bearer":
            raise ValueError("Invalid auth scheme")
    except ValueError:
        raise HTTPException(status_code=401, detail="Invalid Authorization header")
    try:
        payload = jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALG])
        return AuthUser(**{
            "id": payload.get("id"),
            "email": payload.get("email"),
            "name": payload.get("name"),
            "role": payload.get("role", "customer"),
        })
    except (JWTError, ValueError):
        raise HTTPException(status_code=401, detail="Invalid or expired token")


def require_admin(user: AuthUser = Depends(get_current_user)) -> AuthUser:
    if user.role != "admin":
        raise HTTPException(status_code=403, detail="Admin only")
    return user


def login_admin(email: str, password: str) -> dict:
    admin = get_collection("admin").find_one({"email": email.strip().lower()})
    if not admin or not verify_password(password, admin.get("password_hash", "")):
        raise HTTPException(status_code=400, detail="Invalid credentials")
    user = {"id": str(admin["_id"]), "email": admin["email"], "name": admin["name"], "role": "admin"}
    return {"token": create_token(user), "admin": user}


def ensure_admin() -> None:
    """Create the first admin from ADMIN_EMAIL/ADMIN_PASSWORD when none exists."""
    if db is None or not ADMIN_EMAIL or not ADMIN_PASSWORD:
        return
    if get_collection("admin").count_documents({}) > 0:
        return
    admin = Admin(name="Admin", email=ADMIN_EMAIL.lower(), password_hash=hash_password(ADMIN_PASSWORD))
    create_document("admin", admin)
    logger.info("Created initial admin %s", ADMIN_EMAIL)
