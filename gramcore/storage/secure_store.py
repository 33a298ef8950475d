from __future__ import annotations

import base64
import binascii
import logging
import os
from typing import Any, Optional, Protocol

import keyring
from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric.x25519 import X25519PrivateKey, X25519PublicKey
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.hkdf import HKDF
from cryptography.hazmat.primitives.serialization import Encoding, PrivateFormat, PublicFormat, NoEncryption
from keyring.errors import KeyringError, KeyringLocked

from gramcore.core.errors import SecretCustodyError, SecretUnavailableError, UserCancelledError
from gramcore.core.models import EncryptedSecret

log = logging.getLogger(__name__)

SIMULATOR_ENV = "GRAM_PORTAL_SIMULATOR"

MAGIC_KR = b"GWAL1\0"     # keyring-held X25519 device key, AES-GCM sealed
_KR_SERVICE = "GramPortal"
_KR_USER = "device-key"
_HKDF_INFO = b"gram-portal wallet secret"
_KEY_LEN = 32
_NONCE_LEN = 12


class SecretCustody(Protocol):
    def encryption_public_key(self) -> Optional[bytes]:
        ...

    def encrypt(self, data: bytes) -> EncryptedSecret:
        ...

    def decrypt(self, secret: EncryptedSecret) -> bytes:
        ...


def _raw_public(key: X25519PrivateKey) -> bytes:
    return key.public_key().public_bytes(Encoding.Raw, PublicFormat.Raw)


def _derive_key(shared: bytes) -> bytes:
    return HKDF(algorithm=hashes.SHA256(), length=_KEY_LEN, salt=None, info=_HKDF_INFO).derive(shared)


class KeyringSecretCustody:
    """
    Device key pair kept in the system keyring.

    Each secret is sealed to the device public key with an ephemeral X25519
    exchange and AES-GCM. The device public key travels with the ciphertext, so
    a wiped or replaced keyring entry is detectable by comparing public keys.
    """

    def __init__(self, service: str = _KR_SERVICE, username: str = _KR_USER, backend: Any = None):
        self._service = service
        self._username = username
        # Anything with get_password/set_password; the keyring module by default.
        self._backend = backend or keyring

    def _get_device_key(self, create: bool = False) -> Optional[X25519PrivateKey]:
        try:
            val = self._backend.get_password(self._service, self._username)
        except KeyringLocked as e:
            raise UserCancelledError("Secure storage was not unlocked") from e
        except KeyringError as e:
            raise SecretCustodyError(f"Could not access the system keyring: {e}") from e
        if val:
            try:
                return X25519PrivateKey.from_private_bytes(base64.b64decode(val))
            except (ValueError, binascii.Error):
                log.warning("Ignoring malformed device key in keyring")
                if not create:
                    return None
        if not create:
            return None
        key = X25519PrivateKey.generate()
        raw = key.private_bytes(Encoding.Raw, PrivateFormat.Raw, NoEncryption())
        try:
            self._backend.set_password(self._service, self._username, base64.b64encode(raw).decode("ascii"))
        except KeyringLocked as e:
            raise UserCancelledError("Secure storage was not unlocked") from e
        except KeyringError as e:
            raise SecretCustodyError(f"Could not store the device key: {e}") from e
        return key

    def encryption_public_key(self) -> Optional[bytes]:
        """Device public key, or None when no usable secure storage exists."""
        try:
            key = self._get_device_key(create=True)
        except SecretCustodyError as e:
            log.warning("Secure storage not available: %s", e)
            return None
        return _raw_public(key) if key is not None else None

    def encrypt(self, data: bytes) -> EncryptedSecret:
        try:
            device = self._get_device_key(create=True)
        except UserCancelledError as e:
            raise SecretCustodyError(str(e)) from e
        if device is None:
            raise SecretCustodyError("No device key available")
        device_public = _raw_public(device)

        ephemeral = X25519PrivateKey.generate()
        shared = ephemeral.exchange(X25519PublicKey.from_public_bytes(device_public))
        nonce = os.urandom(_NONCE_LEN)
        ct = AESGCM(_derive_key(shared)).encrypt(nonce, data, device_public)
        return EncryptedSecret(
            public_key=device_public,
            ciphertext=MAGIC_KR + _raw_public(ephemeral) + nonce + ct,
        )

    def decrypt(self, secret: EncryptedSecret) -> bytes:
        device = self._get_device_key(create=False)
        if device is None:
            raise SecretUnavailableError("No device key in secure storage")
        device_public = _raw_public(device)
        if device_public != secret.public_key:
            raise SecretCustodyError("Secret was encrypted with a different device key")

        payload = secret.ciphertext
        if not payload.startswith(MAGIC_KR):
            raise SecretCustodyError("Unknown secret format")
        body = payload[len(MAGIC_KR):]
        if len(body) < _KEY_LEN + _NONCE_LEN:
            raise SecretCustodyError("Truncated secret")
        ephemeral_public = body[:_KEY_LEN]
        nonce = body[_KEY_LEN:_KEY_LEN + _NONCE_LEN]
        ct = body[_KEY_LEN + _NONCE_LEN:]
        try:
            shared = device.exchange(X25519PublicKey.from_public_bytes(ephemeral_public))
            return AESGCM(_derive_key(shared)).decrypt(nonce, ct, device_public)
        except (InvalidTag, ValueError) as e:
            raise SecretCustodyError("Could not decrypt secret") from e

    def reset(self) -> None:
        """Forget the device key; previously sealed secrets become unreadable."""
        try:
            self._backend.delete_password(self._service, self._username)
        except KeyringError as e:
            log.info("No device key removed: %s", e)


class PassthroughSecretCustody:
    """Simulator custody: no device key, data stored as-is."""

    def encryption_public_key(self) -> Optional[bytes]:
        return b""

    def encrypt(self, data: bytes) -> EncryptedSecret:
        return EncryptedSecret(public_key=b"", ciphertext=data)

    def decrypt(self, secret: EncryptedSecret) -> bytes:
        return secret.ciphertext


def default_custody() -> SecretCustody:
    if os.getenv(SIMULATOR_ENV) == "1":
        log.warning("Simulator mode: wallet secrets are stored without encryption")
        return PassthroughSecretCustody()
    return KeyringSecretCustody()


__all__ = [
    "KeyringSecretCustody",
    "PassthroughSecretCustody",
    "SecretCustody",
    "default_custody",
]
