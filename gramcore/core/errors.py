from __future__ import annotations


class GramCoreError(Exception):
    """Base class for errors raised to callers of the wallet core."""


class NetworkError(GramCoreError):
    """A download failed: transport error, timeout, bad status or empty payload."""


class FetchCancelled(GramCoreError):
    """The caller lost interest before the download completed."""


class SecretCustodyError(GramCoreError):
    """Generic failure of the secure key storage."""


class SecretUnavailableError(SecretCustodyError):
    """No usable device key exists in secure storage."""


class UserCancelledError(SecretCustodyError):
    """The user declined to unlock secure storage."""


class InvalidConfigurationError(GramCoreError, ValueError):
    """A configuration declaration cannot be applied."""


__all__ = [
    "GramCoreError",
    "NetworkError",
    "FetchCancelled",
    "SecretCustodyError",
    "SecretUnavailableError",
    "UserCancelledError",
    "InvalidConfigurationError",
]
