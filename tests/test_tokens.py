from coach.core.tokens import compare_tokens, generate_token
from coach.core.validators import (
    MAX_MESSAGE_LENGTH,
    is_valid_invitation_token,
    sanitize_message,
    validate_message,
)


def test_generated_token_is_43_url_safe_chars():
    token = generate_token()
    assert len(token) == 43
    assert is_valid_invitation_token(token)


def test_generated_tokens_differ():
    assert generate_token() != generate_token()


def test_compare_tokens():
    token = generate_token()
    assert compare_tokens(token, token)
    assert not compare_tokens(token, generate_token())


def test_invitation_token_shape():
    assert not is_valid_invitation_token("")
    assert not is_valid_invitation_token("short")
    assert not is_valid_invitation_token("a" * 42 + "=")
    assert not is_valid_invitation_token("a" * 44)
    assert is_valid_invitation_token("A-b_" + "c" * 39)


def test_sanitize_message_keeps_line_breaks():
    assert sanitize_message("  hi\nthere\x00  ") == "hi\nthere"


def test_validate_message():
    assert validate_message("   ") == (False, "", "Message cannot be empty")
    ok, cleaned, error = validate_message("  I hear you. ")
    assert ok and cleaned == "I hear you." and error is None

    ok, _, error = validate_message("x" * (MAX_MESSAGE_LENGTH + 1))
    assert not ok
    assert "too long" in error
