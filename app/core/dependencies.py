from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from pydantic import BaseModel
from typing import Callable
from app.core.security import decode_token

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/token")


class Actor(BaseModel):
    """Authenticated caller as asserted by the identity service"""
    id: str
    role: str = "member"


async def get_current_actor(token: str = Depends(oauth2_scheme)) -> Actor:
    """Get current caller from JWT token"""
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )

    payload = decode_token(token)
    subject = payload.get("sub")
    token_type = payload.get("type")

    if subject is None or token_type != "access":
        raise credentials_exception

    return Actor(id=str(subject), role=payload.get("role", "member"))


def require_role(*roles: str) -> Callable:
    """Dependency factory restricting an endpoint to the given roles"""

    async def checker(actor: Actor = Depends(get_current_actor)) -> Actor:
        if actor.role not in roles:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Role '{actor.role}' is not allowed to perform this action"
            )
        return actor

    return checker


require_admin = require_role("admin")
require_committee = require_role("committee", "admin")
require_officer = require_role("loan_officer", "admin")
