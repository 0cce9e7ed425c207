"""
Application error taxonomy.

Every error carries the HTTP status it maps to and a caller-facing message.
The handlers registered in main.py render them as {"error": message}.
"""
from typing import Optional


class AppError(Exception):
    status_code = 500
    message = "Internal server error"

    def __init__(self, message: Optional[str] = None, details: Optional[str] = None):
        super().__init__(message or self.message)
        self.message = message or self.message
        self.details = details


class ValidationError(AppError):
    """Bad or missing caller input."""
    status_code = 400
    message = "Invalid request"


class AuthenticationError(AppError):
    status_code = 401
    message = "Unauthorized"


class InvalidCredentialsError(AuthenticationError):
    # same message for unknown email and wrong password
    message = "Invalid credentials"


class NotFoundError(AppError):
    status_code = 404
    message = "Not found"


class ConfigurationError(AppError):
    """Required secrets or credentials are missing."""
    status_code = 500
    message = "Server configuration error"


class PersistenceError(AppError):
    """The backing store rejected or failed an operation."""
    status_code = 500
    message = "Failed to save data"
