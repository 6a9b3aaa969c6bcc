from datetime import datetime, timedelta, timezone
from functools import lru_cache

from cryptography.fernet import Fernet
from jose import JWTError, jwt

from app.config import get_settings

_ENCRYPTED_PREFIX = "fernet:"


# -- Identity provider session tokens ------------------------------------------

def create_access_token(data: dict, expires_minutes: int = 60) -> str:
    """Issue a session token (used by tests and local development)."""
    settings = get_settings()
    payload = {
        **data,
        "type": "access",
        "iat": datetime.now(timezone.utc),
        "exp": datetime.now(timezone.utc) + timedelta(minutes=expires_minutes),
    }
    return jwt.encode(payload, settings.jwt_secret_key, algorithm=settings.jwt_algorithm)


def decode_token(token: str) -> dict | None:
    settings = get_settings()
    try:
        return jwt.decode(token, settings.jwt_secret_key, algorithms=[settings.jwt_algorithm])
    except JWTError:
        return None


# -- Facebook token encryption at rest -------------------------------------------

@lru_cache()
def _fernet(key: str) -> Fernet:
    return Fernet(key.encode())


def encrypt_token(token: str) -> str:
    key = get_settings().token_encryption_key
    if not key:
        return token
    return _ENCRYPTED_PREFIX + _fernet(key).encrypt(token.encode()).decode()


def decrypt_token(stored: str) -> str:
    if not stored.startswith(_ENCRYPTED_PREFIX):
        return stored
    key = get_settings().token_encryption_key
    if not key:
        raise RuntimeError("TOKEN_ENCRYPTION_KEY not configured")
    return _fernet(key).decrypt(stored[len(_ENCRYPTED_PREFIX):].encode()).decode()
