"""
Authentication API endpoints.

This module provides REST API endpoints for:
- User registration and login (stateless access tokens, no refresh)
- Reading and updating the caller's own profile
- Changing the caller's password
"""

import logging

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

import schemas
from auth.dependencies import get_current_user
from auth.security import create_access_token
from database import get_db
from models import User
from services.user_service import UserService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/auth", tags=["auth"])


def _auth_response(user: User) -> dict:
    return {"access_token": create_access_token(user.id), "token_type": "bearer", "user": user}


@router.post("/register", response_model=schemas.AuthResponse, status_code=status.HTTP_201_CREATED)
async def register(request: schemas.RegisterRequest, db: Session = Depends(get_db)):
    """
    Register a new user account and log it in.

    Raises:
        EmailAlreadyRegistered: 400 if the email is taken
    """
    user = UserService(db).create_user(request.name, request.email, request.password)
    return _auth_response(user)


@router.post("/login", response_model=schemas.AuthResponse)
async def login(request: schemas.LoginRequest, db: Session = Depends(get_db)):
    """
    Login with email and password.

    Raises:
        InvalidCredentials: 401 for an unknown email or wrong password
        AccountDeactivated: 401 if the account has been deactivated
    """
    user = UserService(db).authenticate(request.email, request.password)
    return _auth_response(user)


@router.get("/me", response_model=schemas.User)
async def get_me(current_user: User = Depends(get_current_user)):
    return current_user


@router.put("/profile", response_model=schemas.User)
async def update_profile(
    request: schemas.ProfileUpdate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return UserService(db).update_profile(current_user, name=request.name, avatar=request.avatar)


@router.post("/change-password")
async def change_password(
    request: schemas.ChangePasswordRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """
    Replace the caller's password after verifying the current one.

    Tokens already issued stay valid until they expire.
    """
    UserService(db).change_password(current_user, request.current_password, request.new_password)
    return {"message": "Password changed successfully"}
