"""
Core security helpers — recipient key encryption and webhook signatures.

Payout recipient keys (CPF / PIX keys) are stored Fernet-encrypted inside
quotes. Chain watcher webhooks are signed with HMAC-SHA256.
"""

import hashlib
import hmac
import logging

from cryptography.fernet import Fernet, InvalidToken

from floatpay.config import settings

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Fernet cipher — lazily initialised from settings
# ---------------------------------------------------------------------------

_fernet: Fernet | None = None


def _get_fernet() -> Fernet:
    global _fernet
    if _fernet is None:
        _fernet = Fernet(settings.FERNET_KEY.encode())
    return _fernet


def configure_fernet(key: str | bytes) -> None:
    """Override the Fernet key at runtime (used in tests)."""
    global _fernet
    if isinstance(key, str):
        key = key.encode()
    _fernet = Fernet(key)


def encrypt_value(plaintext: str) -> str:
    """Encrypt a string value using Fernet. Returns base64-encoded ciphertext."""
    return _get_fernet().encrypt(plaintext.encode()).decode()


def decrypt_value(ciphertext: str) -> str:
    """Decrypt a Fernet-encrypted value. Raises ValueError on failure."""
    try:
        return _get_fernet().decrypt(ciphertext.encode()).decode()
    except InvalidToken as exc:
        raise ValueError("Unable to decrypt value") from exc


# ---------------------------------------------------------------------------
# Webhook signatures
# ---------------------------------------------------------------------------


def verify_webhook_signature(payload_body: bytes, signature: str) -> bool:
    """
    Verify a chain watcher HMAC-SHA256 signature (Alchemy format).

    When CHAIN_WEBHOOK_SECRET is empty (dev), returns True to allow
    unsigned requests during development.
    """
    secret = settings.CHAIN_WEBHOOK_SECRET
    if not secret:
        return True

    expected = hmac.new(
        secret.encode(),
        payload_body,
        hashlib.sha256,
    ).hexdigest()

    return hmac.compare_digest(expected, signature or "")


def mask_key(value: str | None) -> str:
    """Mask a payout key for logs, keeping the last four characters."""
    if not value:
        return ""
    if len(value) <= 4:
        return "****"
    return f"{'*' * (len(value) - 4)}{value[-4:]}"
