from uuid import UUID

from fastapi import Depends, HTTPException, status
from fastapi.requests import HTTPConnection
from fastapi.security import OAuth2PasswordBearer
import jwt
from jwt.exceptions import PyJWTError
from pydantic import BaseModel

from telequeue.core.config import settings
from telequeue.core.redis import redis_client
from telequeue.services.queue_coordinator import QueueCoordinator

# Tokens are issued by the auth service; this service only checks them
oauth2_scheme = OAuth2PasswordBearer(tokenUrl=f"{settings.API_V1_STR}/auth/login")

class CurrentIdentity(BaseModel):
    user_id: UUID
    role: str

async def get_current_identity(
    connection: HTTPConnection,
    token: str = Depends(oauth2_scheme)
) -> CurrentIdentity:
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )
    try:
        payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
        user_id = payload.get("sub")
        role = payload.get("role")
        if user_id is None or role is None:
            raise credentials_exception
        identity = CurrentIdentity(user_id=user_id, role=role)
    except (PyJWTError, ValueError):
        raise credentials_exception

    # Logged out tokens are removed from the registry
    if await redis_client.get_token(token) is None:
        raise credentials_exception
    connection.state.identity = identity
    return identity

def get_coordinator(connection: HTTPConnection) -> QueueCoordinator:
    return connection.app.state.coordinator
