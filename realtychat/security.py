from datetime import datetime, timedelta, timezone
from typing import Optional
from fastapi import Depends, HTTPException
from fastapi.security import OAuth2PasswordBearer
from jose import jwt, JWTError
from passlib.context import CryptContext
from motor.motor_asyncio import AsyncIOMotorDatabase

from .config import get_settings
from .db import get_db
from .errors import AuthError
from .utils import to_id, parse_object_id

settings = get_settings()
ALGO = "HS256"
pwd = CryptContext(schemes=["bcrypt"], deprecated="auto")
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/login")


def hash_password(plain: str) -> str:
    return pwd.hash(plain)


def verify_password(plain: str, hashed: str) -> bool:
    return pwd.verify(plain, hashed)


def create_access_token(user_id: str, expires_hours: Optional[int] = None) -> str:
    expire = datetime.now(timezone.utc) + timedelta(hours=expires_hours or settings.jwt_expires_hours)
    payload = {"sub": user_id, "exp": expire}
    return jwt.encode(payload, settings.jwt_secret, algorithm=ALGO)


class TokenVerifier:
    """Verifica tokens JWT y devuelve la identidad (user id) que contienen."""

    def __init__(self, secret: str, algorithm: str = ALGO):
        self.secret = secret
        self.algorithm = algorithm

    def verify(self, token: Optional[str]) -> str:
        if not token or not isinstance(token, str):
            raise AuthError("Token ausente")
        try:
            payload = jwt.decode(token, self.secret, algorithms=[self.algorithm])
        except JWTError as e:
            raise AuthError(f"Token inválido: {e}") from e
        sub = payload.get("sub")
        if not sub:
            raise AuthError("Token inválido")
        return str(sub)


def get_token_verifier() -> TokenVerifier:
    return TokenVerifier(settings.jwt_secret)


async def get_current_user_id(
    token: str = Depends(oauth2_scheme),
    verifier: TokenVerifier = Depends(get_token_verifier),
) -> str:
    try:
        return verifier.verify(token)
    except AuthError:
        raise HTTPException(status_code=401, detail="Token inválido")


async def get_current_user(
    db: AsyncIOMotorDatabase = Depends(get_db),
    user_id: str = Depends(get_current_user_id),
):
    oid = parse_object_id(user_id)
    doc = await db.users.find_one({"_id": oid}) if oid else None
    if not doc:
        raise HTTPException(status_code=401, detail="Usuario no encontrado")
    return to_id(doc)
