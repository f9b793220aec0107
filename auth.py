"""Users, opaque bearer tokens and the auth dependencies used by every protected route."""

import hashlib
import secrets
from datetime import timedelta
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException
from pydantic import BaseModel, EmailStr
from pymongo.database import Database

import config
from database import as_utc, get_db, utcnow
from errors import Forbidden, ValidationError
from logging_config import get_logger
from schemas import TokenResponse, UserCreate, UserLogin

logger = get_logger(__name__)

router = APIRouter(prefix="/auth", tags=["auth"])


class AuthUser(BaseModel):
    id: str
    email: EmailStr
    name: str
    role: str = "user"

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"


# -------------------- Helpers --------------------

def hash_password(password: str, salt: Optional[str] = None) -> tuple[str, str]:
    if not salt:
        salt = secrets.token_hex(16)
    h = hashlib.sha256((salt + password).encode()).hexdigest()
    return h, salt


def verify_password(password: str, salt: str, expected_hash: str) -> bool:
    h, _ = hash_password(password, salt)
    return secrets.compare_digest(h, expected_hash)


def issue_token(db: Database, user_id) -> str:
    token = secrets.token_urlsafe(32)
    expires = utcnow() + timedelta(days=config.TOKEN_TTL_DAYS)
    db["user"].update_one({"_id": user_id}, {"$set": {"token": token, "token_expires": expires}})
    return token


def get_user_by_token(db: Database, token: str) -> Optional[dict]:
    user = db["user"].find_one({"token": token})
    if not user:
        return None
    expires = as_utc(user.get("token_expires"))
    if expires is None or expires <= utcnow():
        return None
    return user


def to_auth_user(user: dict) -> AuthUser:
    return AuthUser(
        id=str(user["_id"]),
        email=user["email"],
        name=user.get("name", ""),
        role=user.get("role", "user"),
    )


def public_user(user: dict) -> dict:
    return {
        "id": str(user["_id"]),
        "name": user.get("name", ""),
        "email": user["email"],
        "role": user.get("role", "user"),
        "created_at": as_utc(user["created_at"]).isoformat() if user.get("created_at") else None,
    }


def create_user(db: Database, name: str, email: str, password: str, role: str = "user") -> dict:
    if db["user"].find_one({"email": email}):
        raise ValidationError("Email already registered")
    pw_hash, salt = hash_password(password)
    now = utcnow()
    user_doc = {
        "name": name,
        "email": email,
        "password_hash": pw_hash,
        "salt": salt,
        "role": role,
        "is_active": True,
        "created_at": now,
        "updated_at": now,
    }
    user_doc["_id"] = db["user"].insert_one(user_doc).inserted_id
    return user_doc


def bootstrap_admin(db: Database) -> Optional[str]:
    """Create the initial admin account from configuration if no admin exists yet."""
    if db["user"].find_one({"role": "admin"}):
        logger.info("admin_exists")
        return None
    if not config.ADMIN_EMAIL or not config.ADMIN_PASSWORD:
        logger.warning("admin_bootstrap_skipped", reason="ADMIN_EMAIL or ADMIN_PASSWORD not set")
        return None
    user = create_user(db, config.ADMIN_NAME, config.ADMIN_EMAIL, config.ADMIN_PASSWORD, role="admin")
    logger.info("admin_created", email=config.ADMIN_EMAIL)
    return str(user["_id"])


# -------------------- Dependencies --------------------

async def auth_dependency(
    authorization: Optional[str] = Header(None),
    db: Database = Depends(get_db),
) -> AuthUser:
    if not authorization or not authorization.lower().startswith("bearer "):
        raise HTTPException(status_code=401, detail="Missing or invalid authorization header")
    token = authorization.split(" ", 1)[1]
    user = get_user_by_token(db, token)
    if not user:
        raise HTTPException(status_code=401, detail="Invalid or expired token")
    return to_auth_user(user)


async def admin_dependency(user: AuthUser = Depends(auth_dependency)) -> AuthUser:
    if not user.is_admin:
        raise Forbidden(f"User role {user.role} is not authorized to access this route")
    return user


# -------------------- Routes --------------------

@router.post("/register", response_model=TokenResponse, status_code=201)
def register(payload: UserCreate, db: Database = Depends(get_db)):
    user = create_user(db, payload.name, payload.email, payload.password)
    logger.info("user_registered", user_id=str(user["_id"]))
    return TokenResponse(access_token=issue_token(db, user["_id"]))


@router.post("/login", response_model=TokenResponse)
def login(payload: UserLogin, db: Database = Depends(get_db)):
    user = db["user"].find_one({"email": payload.email})
    if not user:
        raise HTTPException(status_code=401, detail="Invalid credentials")
    if not verify_password(payload.password, user.get("salt", ""), user.get("password_hash", "")):
        raise HTTPException(status_code=401, detail="Invalid credentials")
    return TokenResponse(access_token=issue_token(db, user["_id"]))


@router.get("/me")
def me(user: AuthUser = Depends(auth_dependency)):
    return {"success": True, "data": user.model_dump()}
