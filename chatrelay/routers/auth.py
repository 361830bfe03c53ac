# chatrelay/routers/auth.py
import secrets
from uuid import uuid4

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from chatrelay.core.database import get_db
from chatrelay.models.access_token import AccessToken
from chatrelay.models.user import User
from chatrelay.schemas.auth import AuthRequest, AuthResponse

router = APIRouter()

@router.post("/login", response_model=AuthResponse)
def auth(payload: AuthRequest, db: Session = Depends(get_db)):
    """
    Receives an email, checks if the user exists.
    If not, creates the user.
    Returns the user's id with a fresh bearer token for the
    `Authorization` header.
    """
    # 1. Check if the user exists
    user = db.query(User).filter(User.email == payload.email).first()

    # 2. If not found, create the user
    if not user:
        user = User(id=str(uuid4()), email=payload.email)
        db.add(user)
        db.commit()
        db.refresh(user)

    # 3. Issue a token for this session
    access = AccessToken(token=secrets.token_urlsafe(32), user_id=user.id)
    db.add(access)
    db.commit()

    return AuthResponse(user_id=user.id, email=user.email, token=access.token)
