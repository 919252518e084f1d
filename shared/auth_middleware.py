# shared/auth_middleware.py
import os
from typing import Optional

import jwt
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import BaseModel

# Tokens are issued by Supabase Auth and signed with the project JWT secret
JWT_SECRET_KEY = os.getenv("SUPABASE_JWT_SECRET", "dev-secret-key-change-in-production")
JWT_ALGORITHM = "HS256"

ADMIN_EMAILS = {
    email.strip().lower() for email in os.getenv("ADMIN_EMAILS", "").split(",") if email.strip()
}

security = HTTPBearer()


class TokenData(BaseModel):
    subject: str
    email: str
    name: Optional[str] = None

    @property
    def is_admin(self) -> bool:
        return self.email in ADMIN_EMAILS


def _email_from_payload(payload: dict) -> Optional[str]:
    if payload.get("email"):
        return payload["email"]
    metadata = payload.get("user_metadata") or {}
    return metadata.get("email") or metadata.get("user_email")


def _name_from_payload(payload: dict) -> Optional[str]:
    metadata = payload.get("user_metadata") or {}
    return (
        metadata.get("full_name")
        or metadata.get("name")
        or metadata.get("user_name")
        or metadata.get("preferred_username")
    )


def verify_token(token: str) -> TokenData:
    """Verify and decode JWT token"""
    try:
        payload = jwt.decode(
            token,
            JWT_SECRET_KEY,
            algorithms=[JWT_ALGORITHM],
            options={"verify_aud": False},
        )
    except jwt.ExpiredSignatureError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Token has expired")
    except jwt.InvalidTokenError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")

    subject = payload.get("sub")
    if subject is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token: missing subject"
        )

    email = _email_from_payload(payload)
    if not email:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token: missing email"
        )

    return TokenData(subject=subject, email=email.lower(), name=_name_from_payload(payload))


async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
) -> TokenData:
    """FastAPI dependency to get current user from JWT token"""
    return verify_token(credentials.credentials)


async def require_admin(current_user: TokenData = Depends(get_current_user)) -> TokenData:
    """FastAPI dependency that requires admin privileges"""
    if not current_user.is_admin:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN, detail="Admin privileges required"
        )
    return current_user
