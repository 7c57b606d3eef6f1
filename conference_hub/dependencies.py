"""Reusable FastAPI dependencies for auth, clock and database access."""
from datetime import datetime
from typing import Callable

from fastapi import Depends, HTTPException, Security, status
from fastapi.security import APIKeyHeader, OAuth2PasswordBearer
from sqlalchemy.orm import Session

from .auth import decode_token
from .config import get_settings
from .database import get_db
from .models import RoleEnum, User

oauth_scheme = OAuth2PasswordBearer(tokenUrl="/auth/token")
service_api_key_header = APIKeyHeader(name="X-Service-Key", auto_error=False)


def get_current_user(token: str = Depends(oauth_scheme), db: Session = Depends(get_db)) -> User:
    payload = decode_token(token)
    username: str | None = payload.get("sub")
    if username is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing subject in token")
    user = db.query(User).filter(User.username == username).first()
    if not user:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")
    return user


def get_current_active_user(current_user: User = Depends(get_current_user)) -> User:
    return current_user


def allow_roles(*roles: RoleEnum) -> Callable[[User], User]:
    def dependency(current_user: User = Depends(get_current_active_user)) -> User:
        if current_user.role not in roles:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Insufficient permissions")
        return current_user

    return dependency


require_manager = allow_roles(RoleEnum.ADMIN, RoleEnum.FACILITY_MANAGER)


def require_service_key(api_key: str = Security(service_api_key_header)) -> None:
    if not api_key or api_key != get_settings().service_api_key:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Invalid service key")


def get_now() -> datetime:
    """Facility-local wall clock; overridden in tests to pin "today"."""
    return datetime.now()
