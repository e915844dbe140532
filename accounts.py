"""
User accounts: registration with email verification, login, password reset
and the admin user screens.
"""

from datetime import timedelta
from typing import Any, Dict, List, Optional
from urllib.parse import urlencode

import structlog
from fastapi import HTTPException
from pymongo.errors import DuplicateKeyError

from config import Settings
from database import NEWEST_FIRST, Repositories, utcnow
from mailer import MailError, Mailer, password_reset_email, verification_email, welcome_email
from schemas import ProfileUpdateBody, RegisterBody, User, UserUpdateBody
from security import generate_code, hash_password, verify_password

logger = structlog.get_logger(__name__)

VERIFICATION_TTL = timedelta(minutes=10)
RESET_TTL = timedelta(minutes=30)
RESET_CODE_ATTEMPTS = 20
INVALID_CREDENTIALS = "Invalid email or password"


class AccountService:
    def __init__(self, repos: Repositories, settings: Settings, mailer: Mailer):
        self.users = repos.users
        self.settings = settings
        self.mailer = mailer

    def _by_email_or_404(self, email: str) -> Dict[str, Any]:
        user = self.users.find_one(email=email)
        if not user:
            raise HTTPException(status_code=404, detail="User not found")
        return user

    def _check_unique(self, email: Optional[str] = None, phone: Optional[str] = None, exclude=None) -> None:
        if email:
            other = self.users.find_one(email=email)
            if other and other["_id"] != exclude:
                raise HTTPException(status_code=400, detail="User already exist with this email")
        if phone:
            other = self.users.find_one(phone=phone)
            if other and other["_id"] != exclude:
                raise HTTPException(status_code=400, detail="User already exist with this phone number")

    def _send_verification(self, user: Dict[str, Any], code: str) -> None:
        query = urlencode({"code": code, "email": user["email"]})
        url = f"{self.settings.frontend_url}/register?{query}"
        self.mailer.send_quietly(
            user["email"],
            "Verify your email - MP Books & Stationery",
            verification_email(user["name"], url),
        )

    # ----------------------- Registration -----------------------
    def register(self, body: RegisterBody) -> Dict[str, Any]:
        self._check_unique(email=body.email, phone=body.phone)

        pw_hash, salt = hash_password(body.password)
        code = generate_code()
        user = User(name=body.name, email=body.email, phone=body.phone, password_hash=pw_hash, salt=salt)
        try:
            doc = self.users.insert({
                **user.model_dump(),
                "verificationCode": code,
                "verificationCodeExpire": utcnow() + VERIFICATION_TTL,
            })
        except DuplicateKeyError:
            raise HTTPException(status_code=400, detail="User already exist with this email or phone number")
        logger.info("user_registered", user_id=str(doc["_id"]))

        self._send_verification(doc, code)
        return doc

    def verify_email(self, email: str, code: str) -> Dict[str, Any]:
        user = self._by_email_or_404(email)
        match = self.users.find_one(
            _id=user["_id"],
            verificationCode=code,
            verificationCodeExpire={"$gt": utcnow()},
        )
        if not match:
            raise HTTPException(status_code=400, detail="Invalid or expired verification code")

        user = self.users.update(
            user["_id"],
            {"isVerified": True},
            unset=("verificationCode", "verificationCodeExpire"),
        )
        self.mailer.send_quietly(user["email"], "Welcome to MP Books & Stationery!", welcome_email(user["name"]))
        return user

    def resend_verification_code(self, email: str) -> None:
        user = self._by_email_or_404(email)
        if user.get("isVerified"):
            raise HTTPException(status_code=400, detail="Email is already verified.")
        code = generate_code()
        user = self.users.update(user["_id"], {
            "verificationCode": code,
            "verificationCodeExpire": utcnow() + VERIFICATION_TTL,
        })
        self._send_verification(user, code)

    # ----------------------- Sessions -----------------------
    def login(self, email: str, password: str) -> Dict[str, Any]:
        user = self.users.find_one(email=email)
        if not user or not verify_password(password, user.get("salt", ""), user.get("password_hash", "")):
            logger.info("login_failed")
            raise HTTPException(status_code=401, detail=INVALID_CREDENTIALS)
        logger.info("login_succeeded", user_id=str(user["_id"]))
        return user

    # ----------------------- Passwords -----------------------
    def _live_reset_holders(self, code: str, limit: int = 2) -> List[Dict[str, Any]]:
        return self.users.find({"resetPasswordCode": code, "resetPasswordExpire": {"$gt": utcnow()}}, limit=limit)

    def _unused_reset_code(self, user_id) -> str:
        # the code alone identifies the account on reset, so no two live codes may match
        for _ in range(RESET_CODE_ATTEMPTS):
            code = generate_code()
            if all(u["_id"] == user_id for u in self._live_reset_holders(code)):
                return code
            logger.info("reset_code_collision")
        raise HTTPException(status_code=500, detail="Could not issue a reset code, please try again")

    def forgot_password(self, email: str) -> Dict[str, Any]:
        user = self.users.find_one(email=email)
        if not user:
            raise HTTPException(status_code=404, detail="User not found with this email")

        code = self._unused_reset_code(user["_id"])
        self.users.update(user["_id"], {"resetPasswordCode": code, "resetPasswordExpire": utcnow() + RESET_TTL})
        url = f"{self.settings.frontend_url}/reset-password?{urlencode({'code': code})}"
        try:
            self.mailer.send(user["email"], "Password Reset - MP Books & Stationery", password_reset_email(user["name"], url))
        except MailError as e:
            self.users.update(user["_id"], {}, unset=("resetPasswordCode", "resetPasswordExpire"))
            logger.error("reset_email_failed", user_id=str(user["_id"]), error=str(e))
            raise HTTPException(status_code=500, detail="Email could not be sent")
        return user

    def reset_password(self, code: str, password: str) -> Dict[str, Any]:
        holders = self._live_reset_holders(code)
        if len(holders) != 1:
            raise HTTPException(status_code=400, detail="Password reset code is invalid or has expired")
        user = holders[0]
        pw_hash, salt = hash_password(password)
        return self.users.update(
            user["_id"],
            {"password_hash": pw_hash, "salt": salt},
            unset=("resetPasswordCode", "resetPasswordExpire"),
        )

    def update_password(self, user: Dict[str, Any], old_password: str, password: str) -> Dict[str, Any]:
        if not verify_password(old_password, user.get("salt", ""), user.get("password_hash", "")):
            raise HTTPException(status_code=400, detail="Old password is incorrect")
        pw_hash, salt = hash_password(password)
        return self.users.update(user["_id"], {"password_hash": pw_hash, "salt": salt})

    # ----------------------- Profile -----------------------
    def update_profile(self, user: Dict[str, Any], body: ProfileUpdateBody) -> Dict[str, Any]:
        changes = body.model_dump(exclude_none=True)
        self._check_unique(email=changes.get("email"), phone=changes.get("phone"), exclude=user["_id"])
        return self.users.update(user["_id"], changes)

    # ----------------------- Admin -----------------------
    def all_users(self, role: Optional[str] = None, is_verified: Optional[bool] = None) -> List[Dict[str, Any]]:
        query: Dict[str, Any] = {}
        if role:
            query["role"] = role
        if is_verified is not None:
            query["isVerified"] = is_verified
        return self.users.find(query, sort=NEWEST_FIRST)

    def get_user(self, user_id: str) -> Dict[str, Any]:
        user = self.users.get(user_id)
        if not user:
            raise HTTPException(status_code=404, detail=f"User not found with id: {user_id}")
        return user

    def update_user(self, user_id: str, body: UserUpdateBody) -> Dict[str, Any]:
        user = self.get_user(user_id)
        changes = body.model_dump(exclude_none=True)
        self._check_unique(email=changes.get("email"), exclude=user["_id"])
        return self.users.update(user["_id"], changes)

    def delete_user(self, user_id: str) -> None:
        user = self.get_user(user_id)
        self.users.delete(user["_id"])
        logger.info("user_deleted", user_id=user_id)
