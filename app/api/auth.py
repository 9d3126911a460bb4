import logging
import os
from datetime import timedelta

from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer, OAuth2PasswordRequestForm
from pydantic import BaseModel, EmailStr, Field
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.api.errors import http_error
from app.core.errors import ConflictError, PermissionDeniedError
from app.core.security import (
    ACCESS_TOKEN_EXPIRE_MINUTES,
    create_access_token,
    decode_access_token,
    get_password_hash,
    verify_password,
)
from app.db.models import User
from app.db.session import get_db

logger = logging.getLogger("uvicorn.error")

router = APIRouter(prefix="/auth", tags=["auth"])
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/login")

# Comma-separated operator emails allowed to rewrite shared AI prompts.
PROMPT_ADMIN_EMAILS = {
    email.strip().lower() for email in os.getenv("PROMPT_ADMIN_EMAILS", "").split(",") if email.strip()
}


class SignupRequest(BaseModel):
    email: EmailStr
    password: str = Field(min_length=8, max_length=128)


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"


def _bad_credentials() -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Invalid credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )


def _issue_token(user: User) -> TokenResponse:
    token = create_access_token(subject=str(user.id), expires_delta=timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES))
    return TokenResponse(access_token=token)


def get_current_user(token: str = Depends(oauth2_scheme), db: Session = Depends(get_db)) -> User:
    try:
        user_id = int(decode_access_token(token))
    except Exception:
        raise _bad_credentials()

    user = db.get(User, user_id)
    if user is None:
        raise _bad_credentials()
    return user


def require_prompt_admin(user: User = Depends(get_current_user)) -> User:
    if user.email.lower() not in PROMPT_ADMIN_EMAILS:
        logger.warning("prompt_admin_denied user_id=%s", user.id)
        raise http_error(PermissionDeniedError("Only operators may change AI prompts"))
    return user


@router.post("/signup", response_model=TokenResponse, status_code=status.HTTP_201_CREATED)
def signup(payload: SignupRequest, db: Session = Depends(get_db)) -> TokenResponse:
    email = payload.email.lower()
    if db.query(User.id).filter(User.email == email).first():
        raise http_error(ConflictError("Email already registered"))

    user = User(email=email, password_hash=get_password_hash(payload.password))
    db.add(user)
    try:
        db.commit()
    except IntegrityError:
        # Same email signed up concurrently.
        db.rollback()
        raise http_error(ConflictError("Email already registered"))
    return _issue_token(user)


@router.post("/login", response_model=TokenResponse)
def login(form_data: OAuth2PasswordRequestForm = Depends(), db: Session = Depends(get_db)) -> TokenResponse:
    user = db.query(User).filter(User.email == form_data.username.lower()).first()
    if user is None or not verify_password(form_data.password, user.password_hash):
        raise _bad_credentials()
    return _issue_token(user)
