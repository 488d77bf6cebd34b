"""
Survey Review Hub - Auth Router

Login and bearer-token resolution. Tokens are HS256 JWTs whose ``sub`` is the
user id.
"""

from fastapi import APIRouter, Depends, HTTPException, Header
from pydantic import BaseModel
from datetime import datetime, timezone
from typing import Optional
import jwt as pyjwt
import logging

from services.bootstrap import verify_password
from services.roles import ROLE_DISPLAY_NAMES

security_logger = logging.getLogger("security")

router = APIRouter(prefix="/auth", tags=["auth"])

TOKEN_TTL_SECONDS = 86400

# Review services - set by main app
services = None

def set_dependencies(review_services):
    global services
    services = review_services


class LoginRequest(BaseModel):
    username: str
    password: str


def create_token(user_id: str, secret: Optional[str] = None) -> str:
    payload = {"sub": user_id, "exp": datetime.now(timezone.utc).timestamp() + TOKEN_TTL_SECONDS}
    return pyjwt.encode(payload, secret or services.config.jwt_secret, algorithm="HS256")


async def get_current_user(authorization: Optional[str] = Header(None)) -> str:
    """Resolve the bearer token to a known user id."""
    if not authorization or not authorization.lower().startswith("bearer "):
        raise HTTPException(status_code=401, detail="Missing bearer token")

    token = authorization.split(" ", 1)[1].strip()
    try:
        payload = pyjwt.decode(token, services.config.jwt_secret, algorithms=["HS256"])
    except pyjwt.ExpiredSignatureError:
        raise HTTPException(status_code=401, detail="Token expired")
    except pyjwt.InvalidTokenError:
        security_logger.warning("Rejected invalid bearer token")
        raise HTTPException(status_code=401, detail="Invalid token")

    user_id = payload.get("sub")
    if not user_id or not services.directory.user_exists(user_id):
        raise HTTPException(status_code=401, detail="Unknown user")
    return user_id


def _user_info(user_id: str) -> dict:
    principal = services.directory.get_user(user_id)
    return {
        "username": user_id,
        "display_name": principal.display_name if principal else user_id,
        "role": principal.role if principal else None,
        "role_display_name": ROLE_DISPLAY_NAMES.get(principal.role) if principal else None,
        "is_administrator": bool(principal and principal.is_administrator),
    }


@router.post("/login")
async def login(req: LoginRequest):
    """Authenticate user and return JWT token."""
    expected = services.credentials.get(req.username)
    if expected and verify_password(expected, req.password):
        return {"token": create_token(req.username), "user": _user_info(req.username)}
    security_logger.warning("Failed login for user %s", req.username)
    raise HTTPException(status_code=401, detail="Invalid credentials")


@router.get("/me")
async def get_me(user_id: str = Depends(get_current_user)):
    """Current user info."""
    return _user_info(user_id)
