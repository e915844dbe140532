import hashlib
import hmac
import secrets
from datetime import datetime, timedelta, timezone
from typing import Optional, Tuple

import jwt
from fastapi import Depends, HTTPException, Request, Response
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from config import Settings
from database import Repositories, serialize_doc, to_object_id

JWT_ALGO = "HS256"
COOKIE_NAME = "token"
PBKDF2_ROUNDS = 100_000
PRIVATE_USER_FIELDS = (
    "password_hash",
    "salt",
    "verificationCode",
    "verificationCodeExpire",
    "resetPasswordCode",
    "resetPasswordExpire",
)

security = HTTPBearer(auto_error=False)


# ----------------------- Passwords -----------------------
def hash_password(password: str, salt: Optional[str] = None) -> Tuple[str, str]:
    if not salt:
        salt = secrets.token_hex(16)
    h = hashlib.pbkdf2_hmac("sha256", password.encode(), salt.encode(), PBKDF2_ROUNDS).hex()
    return h, salt


def verify_password(password: str, salt: str, expected_hash: str) -> bool:
    h, _ = hash_password(password, salt)
    return hmac.compare_digest(h, expected_hash)


def generate_code() -> str:
    """Six digit numeric code, uniform over 100000-999999."""
    return str(100000 + secrets.randbelow(900000))


def public_user(user: dict) -> dict:
    return serialize_doc({k: v for k, v in user.items() if k not in PRIVATE_USER_FIELDS})


# ----------------------- Tokens -----------------------
def create_token(user_id: str, settings: Settings) -> str:
    exp = datetime.now(timezone.utc) + timedelta(days=settings.jwt_expires_days)
    return jwt.encode({"id": user_id, "exp": exp}, settings.jwt_secret, algorithm=JWT_ALGO)


def decode_token(token: str, settings: Settings) -> dict:
    try:
        return jwt.decode(token, settings.jwt_secret, algorithms=[JWT_ALGO])
    except jwt.ExpiredSignatureError:
        raise HTTPException(status_code=401, detail="Token expired")
    except jwt.InvalidTokenError:
        raise HTTPException(status_code=401, detail="Invalid token")


def set_token_cookie(response: Response, token: str, settings: Settings) -> None:
    response.set_cookie(
        COOKIE_NAME,
        token,
        max_age=settings.cookie_expires_days * 24 * 60 * 60,
        httponly=True,
        samesite="lax",
        secure=settings.is_production,
        path="/",
    )


def clear_token_cookie(response: Response, settings: Settings) -> None:
    response.set_cookie(
        COOKIE_NAME,
        "",
        expires=datetime.now(timezone.utc),
        max_age=0,
        httponly=True,
        samesite="lax",
        secure=settings.is_production,
        path="/",
    )


def send_token(user: dict, settings: Settings, response: Response) -> dict:
    token = create_token(str(user["_id"]), settings)
    set_token_cookie(response, token, settings)
    return {"success": True, "token": token, "user": public_user(user)}


# ----------------------- Dependencies -----------------------
def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_repos(request: Request) -> Repositories:
    return request.app.state.repos


def current_user(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    settings: Settings = Depends(get_settings),
    repos: Repositories = Depends(get_repos),
) -> dict:
    token = request.cookies.get(COOKIE_NAME)
    if not token and credentials is not None:
        token = credentials.credentials
    if not token:
        raise HTTPException(status_code=401, detail="Login first to access this resource")
    payload = decode_token(token, settings)
    user_id = payload.get("id")
    if not user_id:
        raise HTTPException(status_code=401, detail="Invalid token payload")
    user = repos.users.find_one(_id=to_object_id(user_id))
    if not user:
        raise HTTPException(status_code=401, detail="User not found")
    return user


def admin_user(user: dict = Depends(current_user)) -> dict:
    if user.get("role") != "admin":
        raise HTTPException(
            status_code=403,
            detail=f"Role ({user.get('role')}) is not allowed to access this resource",
        )
    return user
