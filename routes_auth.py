import re
from datetime import timedelta

import structlog
from fastapi import APIRouter, Depends, Response
from pydantic import BaseModel, EmailStr, Field, field_validator
from pymongo.errors import DuplicateKeyError

from config import Settings, get_settings
from database import Database, as_utc, get_db, utcnow
from errors import AuthenticationError, Conflict, NotFound, ValidationFailed, envelope
from notifications import send_password_reset_email, send_verification_email
from schemas import Passwordreset, Tempuser, User
from security import (
    clear_token_cookie, create_token, generate_verify_code, get_current_user, hash_password,
    public_user, set_token_cookie, verify_password,
)

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/api/auth", tags=["auth"])

CODE_TTL = timedelta(minutes=10)


# ============ Request models ==========
class SignUpRequest(BaseModel):
    name: str = Field(..., min_length=2, max_length=50, pattern=r"^[a-zA-Z\s]+$")
    email: EmailStr
    password: str = Field(..., min_length=8)
    role: str = Field(..., pattern=r"^(customer|seller)$")

    @field_validator("password")
    @classmethod
    def password_strength(cls, value: str) -> str:
        if not (re.search(r"[a-z]", value) and re.search(r"[A-Z]", value) and re.search(r"\d", value)):
            raise ValueError("Password must contain at least one uppercase letter, one lowercase letter, and one number")
        return value


class VerifyEmailRequest(BaseModel):
    email: EmailStr
    verify_code: str = Field(..., min_length=1)


class EmailRequest(BaseModel):
    email: EmailStr


class SignInRequest(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=1)


class ResetPasswordRequest(BaseModel):
    email: EmailStr
    verify_code: str = Field(..., min_length=1)
    new_password: str = Field(..., min_length=6)


# ===================== Sign-up and verification =====================
@router.post("/sign-up")
def sign_up(payload: SignUpRequest, db: Database = Depends(get_db), settings: Settings = Depends(get_settings)):
    email = payload.email.lower()
    if db.get_document("user", {"email": email}):
        raise Conflict("User already exists!!")

    code = generate_verify_code()
    db["tempuser"].delete_many({"email": email})
    db.create_document("tempuser", Tempuser(
        name=payload.name.strip(),
        email=email,
        password_hash=hash_password(payload.password),
        role=payload.role,
        verify_code=code,
        verify_code_expires=utcnow() + CODE_TTL,
    ))
    send_verification_email(settings, email, payload.name, code)
    logger.info("signup_pending_verification", email=email, role=payload.role)
    return envelope(message="Verification email sent successfully")


@router.post("/verify-email")
def verify_email(payload: VerifyEmailRequest, db: Database = Depends(get_db)):
    email = payload.email.lower()
    temp = db.get_document("tempuser", {"email": email})
    if not temp:
        raise NotFound("User not found or verification code expired")
    if as_utc(temp["verify_code_expires"]) < utcnow():
        raise ValidationFailed("Verification code has expired")
    if temp["verify_code"] != payload.verify_code.strip():
        raise ValidationFailed("Invalid verification code")

    try:
        db.create_document("user", User(
            name=temp["name"], email=temp["email"], password_hash=temp["password_hash"], role=temp["role"],
        ))
    except DuplicateKeyError:
        raise Conflict("User already exists!!")
    db.delete_document("tempuser", temp["_id"])
    logger.info("user_verified", email=email, role=temp["role"])
    return envelope(message="Email verified successfully")


@router.post("/resend-verification")
def resend_verification(payload: EmailRequest, db: Database = Depends(get_db),
                        settings: Settings = Depends(get_settings)):
    email = payload.email.lower()
    temp = db.get_document("tempuser", {"email": email})
    if not temp:
        raise NotFound("User not found. Please sign up again.")
    code = generate_verify_code()
    db.update_document("tempuser", temp["_id"], {"verify_code": code, "verify_code_expires": utcnow() + CODE_TTL})
    send_verification_email(settings, email, temp["name"], code)
    return envelope(message="Verification code sent successfully")


# ===================== Session =====================
@router.post("/sign-in")
def sign_in(payload: SignInRequest, response: Response, db: Database = Depends(get_db),
            settings: Settings = Depends(get_settings)):
    user = db.get_document("user", {"email": payload.email.lower()})
    if not user:
        raise NotFound("User not found")
    if not verify_password(payload.password, user["password_hash"]):
        logger.info("signin_rejected", email=user["email"])
        raise AuthenticationError("Invalid password")
    set_token_cookie(response, create_token(user, settings), settings)
    logger.info("signin", user_id=user["_id"], role=user["role"])
    return envelope(data={"user": public_user(user)}, message="Sign-in successful")


@router.post("/logout")
def logout(response: Response, settings: Settings = Depends(get_settings)):
    clear_token_cookie(response, settings)
    return envelope(message="Logout successful")


@router.get("/me")
def me(user: dict = Depends(get_current_user)):
    return envelope(data={"user": public_user(user)})


# ===================== Password reset =====================
@router.post("/forgot-password")
def forgot_password(payload: EmailRequest, db: Database = Depends(get_db),
                    settings: Settings = Depends(get_settings)):
    email = payload.email.lower()
    user = db.get_document("user", {"email": email})
    if not user:
        raise NotFound("No account found with this email address")
    code = generate_verify_code()
    db["passwordreset"].delete_many({"email": email})
    db.create_document("passwordreset", Passwordreset(
        email=email, verify_code=code, verify_code_expires=utcnow() + CODE_TTL,
    ))
    send_password_reset_email(settings, email, user["name"], code)
    return envelope(message="Password reset code sent to your email")


@router.post("/reset-password")
def reset_password(payload: ResetPasswordRequest, db: Database = Depends(get_db)):
    email = payload.email.lower()
    reset = db.get_document("passwordreset", {"email": email, "is_used": False})
    if not reset:
        raise NotFound("Invalid or expired password reset request")
    if as_utc(reset["verify_code_expires"]) < utcnow():
        raise ValidationFailed("Verification code has expired")
    if reset["verify_code"] != payload.verify_code.strip():
        raise ValidationFailed("Invalid verification code")
    user = db.get_document("user", {"email": email})
    if not user:
        raise NotFound("User not found")

    db.update_document("user", user["_id"], {"password_hash": hash_password(payload.new_password)})
    db.update_document("passwordreset", reset["_id"], {"is_used": True})
    logger.info("password_reset", user_id=user["_id"])
    return envelope(message="Password reset successfully")
