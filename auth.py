import logging
import os
from typing import Optional

from fastapi import Header, HTTPException, status
from jose import JWTError, jwt
from pydantic import BaseModel, EmailStr, ValidationError

logger = logging.getLogger(__name__)

# Tokens are issued by the identity provider; this service only verifies them.
SECRET_KEY = os.getenv("JWT_SECRET", "dev-secret-change-me")
ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")
AUDIENCE = os.getenv("JWT_AUDIENCE")


class Identity(BaseModel):
    uid: str
    email: EmailStr
    name: str = ""


def verify_token(token: str) -> Identity:
    try:
        payload = jwt.decode(
            token,
            SECRET_KEY,
            algorithms=[ALGORITHM],
            audience=AUDIENCE,
            options={"verify_aud": AUDIENCE is not None},
        )
    except JWTError as exc:
        logger.warning("Rejected bearer token: %s", exc)
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")
    uid = payload.get("sub")
    email = payload.get("email")
    if not uid or not email:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")
    try:
        return Identity(uid=uid, email=email, name=payload.get("name") or "")
    except ValidationError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")


async def get_identity(authorization: Optional[str] = Header(None)) -> Identity:
    if not authorization or not authorization.startswith("Bearer "):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing or invalid Authorization header",
        )
    return verify_token(authorization.split(" ", 1)[1])
