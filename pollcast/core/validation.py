"""Input shape checks shared by every relay endpoint."""

import re
from typing import Any, Optional

from pollcast.core.errors import ValidationError

TOKEN_PATTERN = re.compile(r'^[a-f0-9]{48}$')
SCOPE_ID_PATTERN = re.compile(r'^[a-f0-9-]{8,}$', re.IGNORECASE)
CODE_PATTERN = re.compile(r'^[0-9]{6}$')


def is_valid_token(value: Any) -> bool:
    return isinstance(value, str) and bool(TOKEN_PATTERN.match(value))


def is_valid_scope_id(value: Any) -> bool:
    """Course and activity ids are GUID-like: hex digits and hyphens, 8+ chars"""
    return isinstance(value, str) and bool(SCOPE_ID_PATTERN.match(value))


def require_token(value: Any) -> str:
    if not value:
        raise ValidationError('Missing userToken')
    if not is_valid_token(value):
        raise ValidationError('Invalid userToken format')
    return value


def optional_scope_id(value: Any, field: str) -> Optional[str]:
    """Empty values count as absent; anything else must be GUID-shaped."""
    if value is None or value == '':
        return None
    if not is_valid_scope_id(value):
        raise ValidationError(f'Invalid {field} format')
    return value


def require_code(value: Any) -> str:
    if isinstance(value, int) and not isinstance(value, bool):
        value = str(value)
    if not isinstance(value, str) or not CODE_PATTERN.match(value):
        raise ValidationError('Invalid code format')
    return value
