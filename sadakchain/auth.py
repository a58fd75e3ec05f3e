from datetime import datetime, timedelta
from typing import Any, Dict, Optional

from fastapi import Request
from jose import JWTError, jwt
from passlib.context import CryptContext

from .config import token_config
from .schemas import AuthSession, SessionUser

pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")

SESSION_KEY = "auth_session"


class LoginRequired(Exception):
    """Raised by route dependencies when no auth session is stored."""


def get_password_hash(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    return pwd_context.verify(plain_password, hashed_password)


def create_access_token(subject: str, expires_delta: Optional[timedelta] = None, claims: Optional[Dict[str, Any]] = None) -> str:
    cfg = token_config()
    expire = datetime.utcnow() + (expires_delta or timedelta(minutes=cfg["minutes"]))
    payload = {"sub": subject, "exp": expire}
    if claims:
        payload.update(claims)
    return jwt.encode(payload, cfg["secret"], algorithm=cfg["algorithm"])


def decode_access_token(token: str) -> Optional[Dict[str, Any]]:
    cfg = token_config()
    try:
        return jwt.decode(token, cfg["secret"], algorithms=[cfg["algorithm"]])
    except JWTError:
        return None


def stored_session(request: Request) -> Optional[AuthSession]:
    raw = request.session.get(SESSION_KEY)
    if not raw:
        return None
    try:
        return AuthSession.model_validate(raw)
    except ValueError:
        request.session.pop(SESSION_KEY, None)
        return None


def store_session(request: Request, session: Optional[AuthSession]) -> None:
    if session is None:
        request.session.pop(SESSION_KEY, None)
    else:
        request.session[SESSION_KEY] = session.model_dump(mode="json")


async def get_current_user_optional(request: Request) -> Optional[SessionUser]:
    session = stored_session(request)
    return session.user if session else None


async def get_current_user(request: Request) -> SessionUser:
    user = await get_current_user_optional(request)
    if not user:
        raise LoginRequired()
    return user
