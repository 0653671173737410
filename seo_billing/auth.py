from dataclasses import dataclass
from typing import Optional

from fastapi import Header, HTTPException
from jose import jwt

from seo_billing import config


@dataclass
class CurrentUser:
    id: str
    email: Optional[str] = None


def verify_token(authorization: str = Header(...)) -> CurrentUser:
    try:
        scheme, token = authorization.split()
        if scheme.lower() != "bearer":
            raise ValueError("not a bearer token")
        claims = jwt.decode(token, config.JWT_SECRET, algorithms=["HS256"])
        user_id = claims["sub"]
    except Exception:
        raise HTTPException(status_code=401, detail="Invalid or missing token")
    return CurrentUser(id=str(user_id), email=claims.get("email"))
