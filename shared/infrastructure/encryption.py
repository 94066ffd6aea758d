"""
Encryption utilities

Provides encryption/decryption for sensitive data such as payout
destination accounts (M-Pesa numbers).
Uses Fernet (AES-128-CBC + HMAC-SHA256 symmetric encryption).
"""

from cryptography.fernet import Fernet
from django.conf import settings
from django.core.exceptions import ImproperlyConfigured
import base64
import hashlib


def get_fernet() -> Fernet:
    """
    Build a Fernet instance from settings.ENCRYPTION_KEY

    Any string is accepted: it is hashed down to the 32 bytes Fernet needs,
    so the same configured value always yields the same key.
    """
    key = getattr(settings, 'ENCRYPTION_KEY', None)

    if not key:
        raise ImproperlyConfigured(
            "ENCRYPTION_KEY not configured in settings. "
            "Generate one with: python -c 'from cryptography.fernet import Fernet; print(Fernet.generate_key().decode())'"
        )

    if isinstance(key, str):
        key = base64.urlsafe_b64encode(hashlib.sha256(key.encode()).digest())

    return Fernet(key)


def encrypt_string(plaintext: str) -> str:
    """Encrypt a string, returning a base64 token."""
    if not plaintext:
        return ''
    return get_fernet().encrypt(plaintext.encode()).decode()


def decrypt_string(encrypted: str) -> str:
    """Decrypt a token produced by encrypt_string."""
    if not encrypted:
        return ''
    return get_fernet().decrypt(encrypted.encode()).decode()


def mask_account(account_number: str) -> str:
    """Show only the last four digits of an account number in logs and payloads."""
    if not account_number:
        return ''
    return f"{'*' * max(len(account_number) - 4, 0)}{account_number[-4:]}"
