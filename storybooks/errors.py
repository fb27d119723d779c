"""
Authentication error taxonomy.

Every failure here ends in the same user-visible outcome (redirect to the
public entry page without a session). Messages are for logs only and are
never rendered to the browser.
"""


class AuthError(Exception):
    """Base class for authentication and session failures."""

    def __init__(self, message: str = "Authentication failed") -> None:
        super().__init__(message)


class AuthDenied(AuthError):
    """The user declined consent at the provider."""

    def __init__(self, reason: str = "access_denied") -> None:
        super().__init__(f"Provider reported: {reason}")
        self.reason = reason


class AuthStateMismatch(AuthError):
    """Callback state is missing, unknown, expired or already used."""

    def __init__(self, message: str = "State mismatch") -> None:
        super().__init__(message)


class AuthProviderError(AuthError):
    """Network or protocol fault while talking to the provider."""


class DirectoryError(AuthError):
    """Local user persistence failed."""


class StateStoreError(AuthError):
    """The pending authorization request store is unreachable."""


class LoginRequired(AuthError):
    """Raised by the authenticated-request gate for anonymous requests."""

    def __init__(self, message: str = "Login required") -> None:
        super().__init__(message)
