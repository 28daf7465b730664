# auth.py
from asyncio import iscoroutinefunction
from datetime import datetime, timedelta, timezone
from functools import wraps
import logging
import os
import warnings

from jose import JWTError, jwt
from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer

from .schemas import Actor, Role

# Get JWT secret key from environment variable
SECRET_KEY = os.getenv("JWT_SECRET_KEY")
if not SECRET_KEY:
    warnings.warn("JWT_SECRET_KEY not set, using an insecure development key", RuntimeWarning, stacklevel=2)
    SECRET_KEY = "insecure-dev-key"  # noqa: S105
ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", 30))

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="token")


def create_access_token(data: dict, expires_delta: timedelta = None):
    to_encode = data.copy()
    if expires_delta:
        expire = datetime.now(timezone.utc) + expires_delta
    else:
        expire = datetime.now(timezone.utc) + timedelta(minutes=15)
    to_encode.update({"exp": expire})
    encoded_jwt = jwt.encode(to_encode, SECRET_KEY, algorithm=ALGORITHM)
    return encoded_jwt


def issue_token(role: Role, subject_id: str) -> str:
    return create_access_token(
        data={"sub": subject_id, "role": Role(role).value},
        expires_delta=timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES),
    )


async def get_current_actor(token: str = Depends(oauth2_scheme)) -> Actor:
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )
    try:
        payload = jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
        subject_id: str = payload.get("sub")
        role = Role(payload.get("role"))
        if subject_id is None:
            raise credentials_exception
    except (JWTError, ValueError) as e:
        logging.error(f"Token rejected: {str(e)}")
        raise credentials_exception
    return Actor(role=role, subject_id=subject_id)


def role_required(required_roles):
    def decorator(func):
        @wraps(func)
        async def async_wrapper(*args, actor: Actor = Depends(get_current_actor), **kwargs):
            if actor.role not in required_roles and actor.role != Role.ADMIN:
                raise HTTPException(status_code=403, detail="User does not have the required role")
            return await func(*args, actor=actor, **kwargs)

        @wraps(func)
        def sync_wrapper(*args, actor: Actor = Depends(get_current_actor), **kwargs):
            if actor.role not in required_roles and actor.role != Role.ADMIN:
                raise HTTPException(status_code=403, detail="User does not have the required role")
            return func(*args, actor=actor, **kwargs)

        if iscoroutinefunction(func):
            return async_wrapper
        else:
            return sync_wrapper

    return decorator
