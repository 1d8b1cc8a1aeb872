"""Fernet encryption for broker passwords and API secrets at rest."""

from cryptography.fernet import Fernet, InvalidToken

from journal_sync.config import settings
from journal_sync.errors import SyncError

_fernet: Fernet | None = None


def _get_fernet() -> Fernet:
    global _fernet
    if _fernet is None:
        key = settings.encryption_key
        if not key:
            raise RuntimeError(
                "TS_ENCRYPTION_KEY is not set; broker secrets cannot be stored. Generate a key with "
                "Fernet.generate_key() and put it in the environment or .env"
            )
        _fernet = Fernet(key.encode() if isinstance(key, str) else key)
    return _fernet


def encrypt_secret(plaintext: str | None) -> str | None:
    if plaintext is None or plaintext == "":
        return None
    return _get_fernet().encrypt(plaintext.encode()).decode()


def decrypt_secret(ciphertext: str | None) -> str:
    """Plaintext of a stored secret; empty string when none was stored."""
    if not ciphertext:
        return ""
    try:
        return _get_fernet().decrypt(ciphertext.encode()).decode()
    except InvalidToken:
        raise SyncError("Stored broker secret cannot be decrypted; was TS_ENCRYPTION_KEY rotated?")


def reset_cipher():
    """Forget the cached cipher so a changed key takes effect."""
    global _fernet
    _fernet = None
