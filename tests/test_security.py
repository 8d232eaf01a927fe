import pytest

from goldmarket.core.middleware import SANITIZE_SKIP_KEYS
from goldmarket.core.security import (
    build_csp,
    generate_session_token,
    generate_token,
    hash_password,
    is_strong_password,
    is_valid_email,
    is_valid_username,
    mask_sensitive,
    sanitize_data,
    sanitize_input,
    security_headers,
    tokens_match,
    verify_password,
)


def test_sanitize_input_encodes_html_after_trimming():
    assert sanitize_input("  <b>Tom & 'Jerry'</b> ") == (
        "&lt;b&gt;Tom &amp; &#x27;Jerry&#x27;&lt;&#x2F;b&gt;"
    )
    assert sanitize_input(42) == 42
    assert sanitize_input(None) is None


def test_sanitize_data_recurses_and_skips_secrets():
    payload = {
        "name": "<script>",
        "tags": ["a&b", {"deep": '"x"'}],
        "password": "P@ss&word1",
        "timezone": "Asia/Riyadh",
        "amount": 10.5,
    }
    cleaned = sanitize_data(payload, SANITIZE_SKIP_KEYS)
    assert cleaned["name"] == "&lt;script&gt;"
    assert cleaned["tags"] == ["a&amp;b", {"deep": "&quot;x&quot;"}]
    assert cleaned["password"] == "P@ss&word1"
    assert cleaned["timezone"] == "Asia/Riyadh"
    assert cleaned["amount"] == 10.5


def test_tokens():
    token = generate_token()
    assert len(token) == 64
    assert token != generate_token()
    assert len(generate_session_token()) >= 40
    assert tokens_match(token, token)
    assert not tokens_match(token, token.upper())
    assert not tokens_match("", "")
    assert not tokens_match(None, token)


def test_password_hashing():
    hashed = hash_password("Secret@123", rounds=4)
    assert hashed != "Secret@123"
    assert verify_password("Secret@123", hashed)
    assert not verify_password("secret@123", hashed)
    assert not verify_password("Secret@123", "not-a-bcrypt-hash")


@pytest.mark.parametrize(
    "password,strong",
    [
        ("Admin@12345", True),
        ("admin@12345", False),
        ("ADMIN@12345", False),
        ("Admin12345", False),
        ("Ad@1", False),
    ],
)
def test_password_strength(password, strong):
    assert is_strong_password(password) is strong


def test_identity_checks():
    assert is_valid_username("gold_admin")
    assert not is_valid_username("ab")
    assert not is_valid_username("has space")
    assert is_valid_email("a.b@example.com")
    assert not is_valid_email("nope@")


def test_mask_sensitive():
    assert mask_sensitive("1234567890ab") == "1234****90ab"
    assert mask_sensitive("short") == "*****"


def test_security_headers_and_csp():
    headers = security_headers()
    assert headers["X-Frame-Options"] == "DENY"
    assert "frame-ancestors 'none'" in headers["Content-Security-Policy"]
    assert "'nonce-abc'" in build_csp(nonce="abc")
