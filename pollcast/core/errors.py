"""
Relay error taxonomy.

Each error knows the HTTP status it maps to so the Flask layer can translate
it without a lookup table.
"""

from enum import Enum, auto
from typing import Any, Dict, Optional


class RelayErrorCodes(Enum):
    """Error codes returned in the `code` field of error responses"""
    INVALID_REQUEST = auto()
    AUTH_FAILED = auto()
    RATE_LIMIT_EXCEEDED = auto()
    INVALID_CODE = auto()
    DELIVERY_FAILED = auto()
    STORE_UNAVAILABLE = auto()
    INTERNAL = auto()


class RelayError(Exception):
    """Base class for errors that map onto an HTTP response"""
    status_code = 500
    code = RelayErrorCodes.INTERNAL

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> Dict[str, Any]:
        return {
            'error': self.message,
            'code': self.code.name
        }


class ValidationError(RelayError):
    """Malformed token, identifier or code; raised before any store access"""
    status_code = 400
    code = RelayErrorCodes.INVALID_REQUEST


class AuthError(RelayError):
    """Token has the right shape but no registered identity"""
    status_code = 401
    code = RelayErrorCodes.AUTH_FAILED

    def __init__(self, message: str = 'User not registered'):
        super().__init__(message)


class RateLimited(RelayError):
    status_code = 429
    code = RelayErrorCodes.RATE_LIMIT_EXCEEDED

    def __init__(self, retry_after: int, message: str = 'Rate limited'):
        super().__init__(message)
        self.retry_after = retry_after

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data['retryAfter'] = self.retry_after
        return data


class ExpiredOrInvalidCode(RelayError):
    status_code = 400
    code = RelayErrorCodes.INVALID_CODE

    def __init__(self, message: str = 'Invalid or expired code. Please get a new code from the bot.'):
        super().__init__(message)


class TransportFailure(RelayError):
    """The messaging provider could not be reached or rejected the message"""
    status_code = 500
    code = RelayErrorCodes.DELIVERY_FAILED

    def __init__(self, message: str = 'Failed to send notification', cause: Optional[Exception] = None):
        super().__init__(message)
        self.cause = cause


class StoreError(RelayError):
    """Redis call failed; surfaces as a generic 500"""
    status_code = 500
    code = RelayErrorCodes.STORE_UNAVAILABLE

    def to_dict(self) -> Dict[str, Any]:
        return {
            'error': 'Internal server error',
            'code': self.code.name
        }
