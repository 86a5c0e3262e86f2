import logging
import smtplib

import jwt
from fastapi import APIRouter, Depends
from sqlalchemy import or_
from sqlalchemy.orm import Session

from core.config import settings
from core.db import commit_or_conflict, get_db
from core.errors import Conflict, Forbidden, Internal, Unauthorized, ValidationFailed
from core.tenancy import StoreAccess, require_store_roles, role_in_store
from models.user import User
from schemas.auth import (
    AuthOut,
    ForgotPasswordRequest,
    LoginRequest,
    RefreshTokenRequest,
    RegisterRequest,
    ResetPasswordRequest,
    StoreRegisterRequest,
    TokenPair,
    VerifyOtpRequest,
)
from schemas.common import Envelope, MessageOut
from schemas.users import user_out
from security import jwt as jwt_utils
from security.password import hash_password, verify_password
from services import otp
from services.email import send_templated_email
from services.staff import StaffRoleRegistry

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["auth"])


def token_pair(db: Session, user: User) -> TokenPair:
    claims = jwt_utils.principal_claims(user.role, user.store_roles(db))
    return TokenPair(
        access_token=jwt_utils.create_access_token(str(user.id), claims),
        refresh_token=jwt_utils.create_refresh_token(str(user.id)),
    )


def find_by_identifier(db: Session, identifier: str):
    """Email if it contains '@', phone number otherwise."""
    identifier = identifier.strip()
    if "@" in identifier:
        return db.query(User).filter(User.email == identifier.lower()).one_or_none()
    return db.query(User).filter(User.phone == identifier).one_or_none()


def _notify(user: User, subject: str, template: str, **context) -> None:
    try:
        send_templated_email(user.email, subject, template, {"name": user.name, **context})
    except (smtplib.SMTPException, OSError) as e:
        logger.warning("Could not send '%s' to user %s: %s", subject, user.id, e)


def _create_user(db: Session, data: RegisterRequest) -> User:
    email = data.email.lower()
    conditions = [User.email == email]
    if data.phone:
        conditions.append(User.phone == data.phone)
    existing = db.query(User).filter(or_(*conditions)).first()
    if existing:
        field = "email" if existing.email == email else "phone"
        raise Conflict(f"User already exists with this {field}")
    user = User(
        name=data.name.strip(),
        email=email,
        phone=data.phone,
        password_hash=hash_password(data.password),
        role="customer",
    )
    db.add(user)
    return user


@router.post("/register", response_model=Envelope[AuthOut], status_code=201)
def register(data: RegisterRequest, db: Session = Depends(get_db)):
    user = _create_user(db, data)
    commit_or_conflict(db, "User already exists")
    db.refresh(user)
    logger.info("Registered user %s", user.id)
    _notify(user, f"Welcome to {settings.APP_NAME}", "emails/welcome.txt", app_name=settings.APP_NAME)
    return {
        "message": "User created successfully",
        "data": {"user": user_out(db, user), "token": token_pair(db, user)},
    }


@router.post("/store/register", response_model=Envelope[AuthOut], status_code=201)
def register_store_user(
    data: StoreRegisterRequest,
    access: StoreAccess = Depends(require_store_roles("store_admin")),
    db: Session = Depends(get_db),
):
    """Register a user who starts out with a role in the admin's store."""
    user = _create_user(db, data)
    db.flush()
    StaffRoleRegistry(db).set_role(access.store.id, user, data.store_role)
    commit_or_conflict(db, "User already exists")
    db.refresh(user)
    logger.info("User %s registered user %s as %s of store %s", access.user.id, user.id, data.store_role, access.store.id)
    _notify(
        user,
        f"Welcome to {settings.APP_NAME}",
        "emails/welcome.txt",
        app_name=settings.APP_NAME,
        store_name=access.store.name,
        store_role=data.store_role,
    )
    return {
        "message": "User created successfully",
        "data": {"user": user_out(db, user, access.store.id), "token": token_pair(db, user)},
    }


@router.post("/login", response_model=Envelope[AuthOut])
def login(data: LoginRequest, db: Session = Depends(get_db)):
    user = find_by_identifier(db, data.identifier)
    if not user or not verify_password(data.password, user.password_hash):
        raise Unauthorized("Invalid credentials")
    if data.store_id is not None:
        if not user.is_privileged and role_in_store(user.store_roles(db), data.store_id) is None:
            raise Forbidden("You do not have access to this store", error="NoStoreAccess")
    return {
        "message": "User authenticated",
        "data": {"user": user_out(db, user, data.store_id), "token": token_pair(db, user)},
    }


@router.post("/refresh-token", response_model=Envelope[TokenPair])
def refresh_token(data: RefreshTokenRequest, db: Session = Depends(get_db)):
    try:
        payload = jwt_utils.decode_refresh(data.refresh_token)
        user_id = int(payload["sub"])
    except (jwt.PyJWTError, KeyError, ValueError):
        raise Unauthorized("Invalid refresh token")
    user = db.get(User, user_id)
    if not user:
        raise Unauthorized("User not found")
    return {"message": "Token refreshed", "data": token_pair(db, user)}


@router.post("/forgot-password", response_model=MessageOut)
def forgot_password(data: ForgotPasswordRequest, db: Session = Depends(get_db)):
    user = find_by_identifier(db, data.identifier)
    if user:
        code = otp.issue_reset_code(user)
        if code:
            try:
                send_templated_email(
                    user.email,
                    "Password reset code",
                    "emails/password_reset_code.txt",
                    {"name": user.name, "code": code, "minutes": settings.OTP_TTL_SECONDS // 60},
                )
            except (smtplib.SMTPException, OSError) as e:
                otp.revoke_code(code)
                logger.error("Reset code email to user %s failed: %s", user.id, e)
                raise Internal("OTP could not be sent", error=str(e))
    else:
        logger.info("Password reset requested for unknown identifier")
    # Same answer whether or not the account exists
    return {"message": "If an account matches, a reset code has been sent"}


@router.post("/verify-otp", response_model=MessageOut)
def verify_otp(data: VerifyOtpRequest):
    if otp.peek_code(data.code) is None:
        raise ValidationFailed("Invalid or expired OTP")
    return {"message": "OTP verified successfully"}


@router.post("/reset-password", response_model=MessageOut)
def reset_password(data: ResetPasswordRequest, db: Session = Depends(get_db)):
    user_id = otp.consume_code(data.code)
    user = db.get(User, user_id) if user_id is not None else None
    if not user:
        raise ValidationFailed("Invalid or expired OTP")
    user.password_hash = hash_password(data.new_password)
    db.commit()
    logger.info("Password reset for user %s", user.id)
    _notify(user, "Password reset successful", "emails/password_reset_success.txt")
    return {"message": "Password updated successfully"}
