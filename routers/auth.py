"""
Router for registration, login and account endpoints.
"""

import logging

from fastapi import APIRouter, Depends, status
from fastapi.responses import JSONResponse
from sqlalchemy import func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from config import Settings, get_settings
from database import get_db
from errors import Conflict, NotFound, Unauthorized
from models import User
from schemas import Identity, LoginRequest, RegisterRequest, TokenResponse, envelope
from security import create_access_token, get_current_identity, hash_password, verify_password

router = APIRouter(prefix="/auth", tags=["auth"])
account_router = APIRouter(prefix="/api", tags=["account"])


def find_user_by_email(db: Session, email: str):
    return db.scalars(select(User).where(func.lower(User.email) == email.lower())).first()


@router.post("/register", status_code=status.HTTP_201_CREATED)
def register(request: RegisterRequest, db: Session = Depends(get_db)):
    """Create an account. Nothing sensitive is echoed back."""
    email = request.email.lower()
    username = request.username.strip()

    existing = db.scalars(
        select(User).where(or_(func.lower(User.email) == email, User.username == username))
    ).first()
    if existing is not None:
        if existing.email.lower() == email:
            logging.debug(f"User with email '{email}' already exists.")
            raise Conflict("User with email already exists")
        raise Conflict("Username is already taken")

    user = User(username=username, email=email, password_hash=hash_password(request.password))
    db.add(user)
    try:
        db.commit()
    except IntegrityError:
        # Lost a race against a concurrent registration
        db.rollback()
        raise Conflict("User with email or username already exists")

    logging.info(f"User with ID '{user.id}' created.")
    return JSONResponse(status_code=status.HTTP_201_CREATED, content=envelope(True, "User created successfully"))


@router.post("/login")
def login(request: LoginRequest, db: Session = Depends(get_db), settings: Settings = Depends(get_settings)):
    user = find_user_by_email(db, request.email)
    # Same answer for unknown email and wrong password
    if user is None or not verify_password(request.password, user.password_hash):
        logging.debug(f"Failed login attempt for '{request.email.lower()}'.")
        raise Unauthorized("Invalid credentials")

    token = create_access_token(user.id, user.email, user.username, settings)
    logging.info(f"User {user.email} logged in successfully.")
    return envelope(True, "Login successful", TokenResponse(token=token).model_dump())


@account_router.get("/profile")
def profile(identity: Identity = Depends(get_current_identity)):
    return envelope(True, "Welcome to your profile!", identity.model_dump())


@account_router.post("/delete")
def delete_account(identity: Identity = Depends(get_current_identity), db: Session = Depends(get_db)):
    """Delete the caller's own account; their projects go with it."""
    user = db.get(User, identity.user_id)
    if user is None:
        logging.error(f"User {identity.user_id} from a verified token not found. Already deleted?")
        raise NotFound("User account not found or already deleted.")

    db.delete(user)
    db.commit()
    logging.info(f"User with ID '{identity.user_id}' (email: '{identity.email}') deleted successfully.")
    return envelope(True, "User account deleted successfully")
