"""
Authentication API endpoints: registration, login and the current user.
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

import schemas
from database import get_db
from models import User
from auth.security import hash_password, verify_password, create_access_token
from auth.dependencies import get_current_user

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/auth", tags=["auth"])


@router.post("/register", response_model=schemas.User, status_code=status.HTTP_201_CREATED)
def register(request: schemas.RegisterRequest, db: Session = Depends(get_db)):
    """Register a new user account (400 if the e-mail is taken)."""
    logger.info(f"Registration attempt for email: {request.email}")

    existing_user = db.query(User).filter(User.email == request.email).first()
    if existing_user:
        logger.info(f"Registration failed: email already exists: {request.email}")
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Email already registered",
        )

    user = User(
        name=request.name,
        email=request.email,
        password_hash=hash_password(request.password),
        department=request.department,
        position=request.position,
    )
    db.add(user)
    db.commit()
    db.refresh(user)

    logger.info(f"User registered: {user.email} (ID: {user.id})")
    return user


@router.post("/login", response_model=schemas.TokenResponse)
def login(request: schemas.LoginRequest, db: Session = Depends(get_db)):
    """Exchange credentials for an access token."""
    user = db.query(User).filter(User.email == request.email).first()

    if user is None or not verify_password(request.password, user.password_hash):
        logger.info(f"Login failed for email: {request.email}")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid email or password",
            headers={"WWW-Authenticate": "Bearer"},
        )

    if not user.is_active:
        logger.info(f"Login attempt for inactive user: {request.email}")
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="User account is inactive",
        )

    token = create_access_token({"sub": str(user.id), "role": user.role, "email": user.email})
    logger.info(f"User logged in: {user.email}")
    return schemas.TokenResponse(access_token=token)


@router.get("/me", response_model=schemas.User)
def me(current_user: User = Depends(get_current_user)):
    return current_user
