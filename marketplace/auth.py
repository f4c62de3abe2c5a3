from datetime import datetime, timedelta, timezone
from typing import Dict, Optional

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt
from passlib.context import CryptContext

from .config import ACCESS_TOKEN_EXPIRE_MINUTES, ALGORITHM, SECRET_KEY
from .errors import Forbidden, Unauthenticated

ROLES = ("BUYER", "SELLER", "ADMIN")

pwd_context = CryptContext(schemes=["argon2", "bcrypt"], deprecated="auto")

# auto_error is off so a missing header becomes our own 401
security = HTTPBearer(auto_error=False)


def verify_password(plain_password, hashed_password):
    return pwd_context.verify(plain_password, hashed_password)


def get_password_hash(password):
    return pwd_context.hash(password)


def create_access_token(user_id: int, role: str, email: Optional[str] = None) -> str:
    expire = datetime.now(timezone.utc) + timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES)
    to_encode = {"sub": str(user_id), "role": role, "exp": expire}
    if email:
        to_encode["email"] = email
    return jwt.encode(to_encode, SECRET_KEY, algorithm=ALGORITHM)


def decode_access_token(token: str) -> Dict:
    """Turn a bearer token into ``{"id", "role", "email"}``.

    Pure function of the token and the signing key; no database lookup.
    """
    try:
        payload = jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
    except JWTError:
        raise Unauthenticated("Invalid or expired token")

    subject = payload.get("sub")
    role = payload.get("role")
    if subject is None or role not in ROLES:
        raise Unauthenticated("Invalid or expired token")
    try:
        user_id = int(subject)
    except (TypeError, ValueError):
        raise Unauthenticated("Invalid or expired token")

    return {"id": user_id, "role": role, "email": payload.get("email")}


def get_current_user(credentials: Optional[HTTPAuthorizationCredentials] = Depends(security)) -> Dict:
    if credentials is None or not credentials.credentials:
        raise Unauthenticated("Authentication required")
    return decode_access_token(credentials.credentials)


def get_optional_user(credentials: Optional[HTTPAuthorizationCredentials] = Depends(security)) -> Optional[Dict]:
    if credentials is None or not credentials.credentials:
        return None
    return decode_access_token(credentials.credentials)


def require_roles(*roles: str):
    def _dependency(current_user: Dict = Depends(get_current_user)) -> Dict:
        if current_user["role"] not in roles:
            raise Forbidden(f"{' or '.join(r.title() for r in roles)} access required")
        return current_user

    return _dependency


get_current_admin = require_roles("ADMIN")
get_current_seller = require_roles("SELLER", "ADMIN")
