"""
Token utilities for invitation links and OAuth state.
"""
import hmac
import secrets


def generate_token(num_bytes: int = 32) -> str:
    """
    Generate a cryptographically secure random token.

    Args:
        num_bytes: Number of random bytes (default 32 = 256 bits)

    Returns:
        Unpadded base64url string (43 characters for 32 bytes)
    """
    return secrets.token_urlsafe(num_bytes)


def compare_tokens(a: str, b: str) -> bool:
    """Compare two tokens in constant time."""
    return hmac.compare_digest(a.encode("utf-8"), b.encode("utf-8"))
