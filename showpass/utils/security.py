import logging

import bcrypt

logger = logging.getLogger(__name__)

BCRYPT_ROUNDS = 12


# ---------------- Password Hashing ----------------
def _normalize_password(password: str | bytes) -> bytes:
    if isinstance(password, str):
        password_bytes = password.encode("utf-8")
    elif isinstance(password, bytes):
        password_bytes = password
    else:
        raise TypeError("Password must be str or bytes")

    if len(password_bytes) > 72:
        logger.debug("Truncating password to 72 bytes for bcrypt compatibility")
        password_bytes = password_bytes[:72]
    return password_bytes


def hash_password(password: str | bytes, rounds: int = BCRYPT_ROUNDS) -> str:
    """Hash a password using bcrypt. Callers store the result; nothing hashes implicitly on save."""
    secret = _normalize_password(password)
    salt = bcrypt.gensalt(rounds=rounds)
    return bcrypt.hashpw(secret, salt).decode("utf-8")


def verify_password(plain_password: str | bytes, hashed_password: str | bytes) -> bool:
    if not hashed_password:
        return False
    if isinstance(hashed_password, str):
        hashed_password = hashed_password.encode("utf-8")
    try:
        return bcrypt.checkpw(_normalize_password(plain_password), hashed_password)
    except ValueError:
        logger.warning("Stored password hash is not a valid bcrypt hash")
        return False
