"""Scoped access to custodial signing keys.

Secrets are stored as Fernet tokens wrapping the 64-byte Solana secret key.
Decryption happens only inside ``signing_keypair``, and the ``bytearray``
holding the plaintext is zeroed on exit, including when the body raises.

Zeroing is best-effort. ``Fernet.decrypt`` returns immutable ``bytes`` and
``Keypair.from_bytes`` needs another ``bytes`` copy; neither can be cleared
from Python, so those copies stay in memory until the garbage collector
reuses it. The ``Keypair`` itself holds the key in native memory owned by
solders.
"""

import logging
from collections.abc import Iterator
from contextlib import contextmanager

from cryptography.fernet import Fernet, InvalidToken
from solders.keypair import Keypair

from settlement.billing.exceptions import CredentialError
from settlement.config import settings

logger = logging.getLogger(__name__)

SECRET_KEY_LENGTH = 64


def _cipher(key: str | None = None) -> Fernet:
    key = key or settings.wallet_encryption_key
    if not key:
        raise CredentialError("WALLET_ENCRYPTION_KEY is not configured")
    try:
        return Fernet(key)
    except ValueError as e:
        raise CredentialError("WALLET_ENCRYPTION_KEY is not a valid Fernet key") from e


def _wipe(buffer: bytearray) -> None:
    for i in range(len(buffer)):
        buffer[i] = 0
    logger.debug("Signing buffer released")


def encrypt_secret(secret_key: bytes, key: str | None = None) -> str:
    """Encrypt a raw 64-byte secret key for storage on the user row."""
    if len(secret_key) != SECRET_KEY_LENGTH:
        raise CredentialError(f"Secret key must be {SECRET_KEY_LENGTH} bytes, got {len(secret_key)}")
    return _cipher(key).encrypt(secret_key).decode("ascii")


@contextmanager
def signing_keypair(encrypted_secret: str, key: str | None = None) -> Iterator[Keypair]:
    """Decrypt a stored secret and yield a Keypair for the duration of one transfer."""
    try:
        buffer = bytearray(_cipher(key).decrypt(encrypted_secret.encode("ascii")))
    except (InvalidToken, UnicodeEncodeError) as e:
        raise CredentialError("Stored wallet secret could not be decrypted") from e

    try:
        if len(buffer) != SECRET_KEY_LENGTH:
            raise CredentialError(f"Decrypted secret has {len(buffer)} bytes, expected {SECRET_KEY_LENGTH}")
        try:
            keypair = Keypair.from_bytes(bytes(buffer))
        except ValueError as e:
            raise CredentialError("Decrypted secret is not a valid ed25519 keypair") from e
        yield keypair
    finally:
        _wipe(buffer)
