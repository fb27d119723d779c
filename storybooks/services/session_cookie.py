"""
Session cookie signing and attributes.

The cookie carries only the opaque session token, wrapped in an HS256 JWS
keyed by SESSION_SECRET. A tampered or foreign cookie decodes to None and is
treated exactly like a missing one.
"""
from jose import JWTError, jwt

from storybooks.config import Settings


class SessionCookie:
    """Encodes, decodes and describes the session cookie."""

    ALGORITHM = "HS256"

    def __init__(self, settings: Settings):
        self._secret = settings.SESSION_SECRET.get_secret_value()
        self.secure = settings.SESSION_COOKIE_SECURE

    @property
    def name(self) -> str:
        # `__Host-` requires Secure + Path=/ + no Domain; browsers reject it on HTTP.
        return "__Host-storybooks_session" if self.secure else "storybooks_session"

    def encode(self, session_token: str) -> str:
        """
        Sign a session token for cookie delivery.

        Args:
            session_token: Opaque token issued by the session store

        Returns:
            Compact JWS string
        """
        return jwt.encode({"sid": session_token}, self._secret, algorithm=self.ALGORITHM)

    def decode(self, value: str | None) -> str | None:
        """
        Verify a cookie value and extract the session token.

        Returns:
            Session token or None if missing or invalid
        """
        if not value:
            return None
        try:
            payload = jwt.decode(value, self._secret, algorithms=[self.ALGORITHM])
        except JWTError:
            return None
        sid = payload.get("sid")
        return sid if isinstance(sid, str) and sid else None

    def set_kwargs(self, session_token: str) -> dict:
        # No max_age/expires: the cookie lives for the browser session only.
        return {
            "key": self.name,
            "value": self.encode(session_token),
            "httponly": True,
            "secure": self.secure,
            "samesite": "lax",
            "path": "/",
        }

    def delete_kwargs(self) -> dict:
        return {
            "key": self.name,
            "httponly": True,
            "secure": self.secure,
            "samesite": "lax",
            "path": "/",
        }
