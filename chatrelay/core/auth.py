# chatrelay/core/auth.py
from typing import Optional

from fastapi import Depends, Header
from sqlalchemy.orm import Session

from chatrelay.core.database import get_db
from chatrelay.models.access_token import AccessToken
from chatrelay.models.user import User


def _bearer_token(authorization: Optional[str]) -> Optional[str]:
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def get_optional_user(
    authorization: Optional[str] = Header(None),
    db: Session = Depends(get_db),
) -> Optional[User]:
    """
    Resolves the caller from an ``Authorization: Bearer <token>`` header.

    Returns None for a missing or unknown token; each route picks the error
    surface it reports.
    """
    token = _bearer_token(authorization)
    if token is None:
        return None
    access = db.query(AccessToken).filter(AccessToken.token == token).first()
    if not access:
        return None
    return access.user
