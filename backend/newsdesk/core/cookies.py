"""
Session Cookie Codec - Signed Session IDs

Session cookies carry the session id inside an HS256 token so a client
cannot forge or guess another visitor's session id.
"""
import time
import uuid
import logging
from typing import Optional
import jwt

logger = logging.getLogger(__name__)

JWT_ALGORITHM = "HS256"


def new_session_id() -> str:
    """Generate a fresh session id."""
    return uuid.uuid4().hex


def sign_session_id(session_id: str, secret: str) -> str:
    """
    Encode a session id into a cookie value.

    Args:
        session_id: Session identifier (store primary key)
        secret: Signing secret

    Returns:
        Signed token string
    """
    payload = {
        "sid": session_id,
        "iat": int(time.time())
    }
    return jwt.encode(payload, secret, algorithm=JWT_ALGORITHM)


def unsign_session_id(token: str, secret: str) -> Optional[str]:
    """
    Recover the session id from a cookie value.

    Returns:
        Session id if the signature is valid, None otherwise
    """
    try:
        payload = jwt.decode(token, secret, algorithms=[JWT_ALGORITHM])
    except jwt.InvalidTokenError as e:
        logger.debug(f"🚫 Invalid session cookie: {e}")
        return None

    sid = payload.get("sid")
    return sid if isinstance(sid, str) and sid else None
