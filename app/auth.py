"""
Caller identity. Tokens are issued by the identity provider (HS256, `sub` = user id);
this service only verifies them.
"""
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt

from app.config import Settings, settings
from app.services.errors import Unauthorized

security = HTTPBearer(auto_error=False)


@dataclass(frozen=True)
class CurrentUser:
    id: str
    email: Optional[str] = None


def create_access_token(user_id: str, expires_delta: Optional[timedelta] = None, config: Settings = settings, **claims) -> str:
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=config.ACCESS_TOKEN_EXPIRE_MINUTES))
    to_encode = {**claims, "sub": user_id, "exp": expire}
    if config.JWT_AUDIENCE:
        to_encode["aud"] = config.JWT_AUDIENCE
    return jwt.encode(to_encode, config.JWT_SECRET, algorithm=config.AUTH_ALGORITHM)


def decode_access_token(token: str, config: Settings = settings) -> CurrentUser:
    try:
        payload = jwt.decode(
            token,
            config.JWT_SECRET,
            algorithms=[config.AUTH_ALGORITHM],
            audience=config.JWT_AUDIENCE or None,
            options={"verify_aud": bool(config.JWT_AUDIENCE)},
        )
    except JWTError as e:
        raise Unauthorized("Token inválido") from e
    user_id = payload.get("sub")
    if not user_id:
        raise Unauthorized("Token inválido")
    return CurrentUser(id=str(user_id), email=payload.get("email"))


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> CurrentUser:
    if credentials is None or not credentials.credentials:
        raise Unauthorized("Não autenticado")
    return decode_access_token(credentials.credentials)
