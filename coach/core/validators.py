"""
Input Validators - Sanitization and format checks for user input.
"""
import re
from typing import Optional, Tuple

from coach.core.logging_config import get_logger

logger = get_logger(__name__)

MAX_MESSAGE_LENGTH = 4000

# Base64url token, 32 bytes = 43 chars, no padding
INVITATION_TOKEN_PATTERN = re.compile(r"^[A-Za-z0-9_-]{43}$")


def sanitize_message(message: str, max_length: int = MAX_MESSAGE_LENGTH) -> str:
    """
    Sanitize a conversation message.

    - Removes null bytes
    - Strips leading/trailing whitespace
    - Limits length

    Inner whitespace is kept: line breaks matter in a conversation.
    """
    if not message:
        return ""

    cleaned = message.replace("\x00", "").strip()

    if len(cleaned) > max_length:
        cleaned = cleaned[:max_length]

    return cleaned


def validate_message(message: str) -> Tuple[bool, str, Optional[str]]:
    """
    Full validation and sanitization of a conversation message.

    Returns:
        Tuple of (is_valid, sanitized_message, error_message)
    """
    if not message or not message.strip():
        return False, "", "Message cannot be empty"

    if len(message.strip()) > MAX_MESSAGE_LENGTH:
        return False, "", f"Message too long (max {MAX_MESSAGE_LENGTH} characters)"

    sanitized = sanitize_message(message)
    if not sanitized:
        return False, "", "Message cannot be empty after sanitization"

    return True, sanitized, None


def is_valid_invitation_token(token: str) -> bool:
    """Check a token has the shape produced by generate_token()."""
    return bool(token) and INVITATION_TOKEN_PATTERN.match(token) is not None
