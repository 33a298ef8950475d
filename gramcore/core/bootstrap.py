"""Launch-time decisions built from the stored records and the device key."""

from __future__ import annotations

import enum
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import List, Optional, Sequence
from urllib.parse import parse_qs, unquote, urlparse

from gramcore.core.models import (
    ImportedWalletInfo,
    ImportedWalletState,
    ReadyWalletState,
    WalletInfo,
    WalletStateRecord,
)

TRANSFER_SCHEME = "ton"
TRANSFER_HOST = "transfer"


class LaunchKind(enum.Enum):
    WALLET_INFO = "wallet_info"
    WALLET_CREATED = "wallet_created"
    WALLET_IMPORTED = "wallet_imported"
    SECURE_STORAGE_RESET_CHANGED = "secure_storage_reset_changed"
    SECURE_STORAGE_RESET_NOT_AVAILABLE = "secure_storage_reset_not_available"
    INTRO = "intro"
    SECURE_STORAGE_NOT_AVAILABLE = "secure_storage_not_available"


@dataclass(frozen=True)
class LaunchDecision:
    kind: LaunchKind
    wallet_info: Optional[WalletInfo] = None
    imported_info: Optional[ImportedWalletInfo] = None


def decide_launch(
    records: Sequence[WalletStateRecord], device_public_key: Optional[bytes]
) -> LaunchDecision:
    """
    Pick the first screen. Only the first record is considered; a record whose
    secret was sealed under another device key means secure storage was reset.
    """
    if not records:
        if device_public_key is not None:
            return LaunchDecision(LaunchKind.INTRO)
        return LaunchDecision(LaunchKind.SECURE_STORAGE_NOT_AVAILABLE)

    record = records[0]
    if device_public_key is None:
        return LaunchDecision(LaunchKind.SECURE_STORAGE_RESET_NOT_AVAILABLE)
    if record.encrypted_secret.public_key != device_public_key:
        return LaunchDecision(LaunchKind.SECURE_STORAGE_RESET_CHANGED)

    info = record.info
    if isinstance(info, ReadyWalletState):
        if info.export_completed:
            return LaunchDecision(LaunchKind.WALLET_INFO, wallet_info=info.wallet_info)
        return LaunchDecision(LaunchKind.WALLET_CREATED, wallet_info=info.wallet_info)
    if isinstance(info, ImportedWalletState):
        return LaunchDecision(LaunchKind.WALLET_IMPORTED, imported_info=info.imported_info)
    raise TypeError(f"Unknown wallet state {type(info).__name__}")


def match_transfer_wallet(
    records: Sequence[WalletStateRecord], device_public_key: Optional[bytes]
) -> Optional[WalletInfo]:
    """Wallet an incoming transfer link may act on, if one is fully set up."""
    if not records or device_public_key is None:
        return None
    record = records[0]
    if record.encrypted_secret.public_key != device_public_key:
        return None
    info = record.info
    if isinstance(info, ReadyWalletState) and info.export_completed:
        return info.wallet_info
    return None


@dataclass(frozen=True)
class TransferRequest:
    address: str
    # Amount in nano units, as carried by the link.
    amount: Optional[int] = None
    comment: Optional[str] = None


def _first(params: dict, name: str) -> Optional[str]:
    values: List[str] = params.get(name) or []
    return values[0] if values else None


def parse_transfer_url(url: str) -> Optional[TransferRequest]:
    """Parse ``ton://transfer/<address>?amount=<nano>&text=<comment>``."""
    try:
        parsed = urlparse(url)
    except ValueError:
        return None
    if parsed.scheme.lower() != TRANSFER_SCHEME or parsed.netloc.lower() != TRANSFER_HOST:
        return None
    address = unquote(parsed.path.strip("/"))
    if not address or "/" in address:
        return None

    params = parse_qs(parsed.query)
    amount: Optional[int] = None
    raw_amount = _first(params, "amount")
    if raw_amount:
        try:
            value = Decimal(raw_amount)
        except InvalidOperation:
            value = None
        if value is not None and value.is_finite() and value >= 0 and value == value.to_integral_value():
            amount = int(value)
    return TransferRequest(address=address, amount=amount, comment=_first(params, "text"))


__all__ = [
    "LaunchDecision",
    "LaunchKind",
    "TransferRequest",
    "decide_launch",
    "match_transfer_wallet",
    "parse_transfer_url",
]
