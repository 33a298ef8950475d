from __future__ import annotations

import base64
import enum
from dataclasses import dataclass, replace
from typing import Any, Dict, Optional, Union


def _b64(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


def _unb64(value: Any) -> bytes:
    if not isinstance(value, str):
        raise ValueError("Expected base64 string")
    return base64.b64decode(value.encode("ascii"), validate=True)


# ----- Wallet records -----
@dataclass(frozen=True)
class EncryptedSecret:
    """Secret sealed by the secret custody layer. Never inspected here."""

    public_key: bytes
    ciphertext: bytes

    def to_dict(self) -> Dict[str, str]:
        return {"publicKey": _b64(self.public_key), "data": _b64(self.ciphertext)}

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> "EncryptedSecret":
        return EncryptedSecret(
            public_key=_unb64(data["publicKey"]),
            ciphertext=_unb64(data["data"]),
        )


@dataclass(frozen=True)
class WalletInfo:
    public_key: str
    encrypted_secret: EncryptedSecret

    def to_dict(self) -> Dict[str, Any]:
        return {
            "publicKey": self.public_key,
            "encryptedSecret": self.encrypted_secret.to_dict(),
        }

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> "WalletInfo":
        return WalletInfo(
            public_key=str(data["publicKey"]),
            encrypted_secret=EncryptedSecret.from_dict(data["encryptedSecret"]),
        )


@dataclass(frozen=True)
class ImportedWalletInfo:
    public_key: str
    encrypted_secret: EncryptedSecret

    def to_dict(self) -> Dict[str, Any]:
        return {
            "publicKey": self.public_key,
            "encryptedSecret": self.encrypted_secret.to_dict(),
        }

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> "ImportedWalletInfo":
        return ImportedWalletInfo(
            public_key=str(data["publicKey"]),
            encrypted_secret=EncryptedSecret.from_dict(data["encryptedSecret"]),
        )


@dataclass(frozen=True)
class ReadyWalletState:
    wallet_info: WalletInfo
    export_completed: bool = False
    # Last known chain state, kept as plain JSON for the blockchain client.
    cached_state: Optional[Dict[str, Any]] = None

    @property
    def encrypted_secret(self) -> EncryptedSecret:
        return self.wallet_info.encrypted_secret


@dataclass(frozen=True)
class ImportedWalletState:
    imported_info: ImportedWalletInfo

    @property
    def encrypted_secret(self) -> EncryptedSecret:
        return self.imported_info.encrypted_secret


WalletStateInfo = Union[ReadyWalletState, ImportedWalletState]


@dataclass(frozen=True)
class WalletStateRecord:
    info: WalletStateInfo

    @property
    def encrypted_secret(self) -> EncryptedSecret:
        return self.info.encrypted_secret

    def to_dict(self) -> Dict[str, Any]:
        if isinstance(self.info, ReadyWalletState):
            body: Dict[str, Any] = {
                "info": self.info.wallet_info.to_dict(),
                "exportCompleted": self.info.export_completed,
            }
            if self.info.cached_state is not None:
                body["state"] = self.info.cached_state
            return {"ready": body}
        return {"imported": {"info": self.info.imported_info.to_dict()}}

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> "WalletStateRecord":
        if "ready" in data:
            body = data["ready"]
            state = body.get("state")
            if state is not None and not isinstance(state, dict):
                raise ValueError("Cached wallet state must be an object")
            return WalletStateRecord(
                info=ReadyWalletState(
                    wallet_info=WalletInfo.from_dict(body["info"]),
                    export_completed=bool(body.get("exportCompleted", False)),
                    cached_state=state,
                )
            )
        if "imported" in data:
            return WalletStateRecord(
                info=ImportedWalletState(
                    imported_info=ImportedWalletInfo.from_dict(data["imported"]["info"])
                )
            )
        raise ValueError("Unknown wallet record variant")


# ----- Blockchain configuration -----
class ActiveNetwork(str, enum.Enum):
    TEST_NET = "testNet"


@dataclass(frozen=True)
class UrlSource:
    url: str


@dataclass(frozen=True)
class InlineSource:
    text: str


ConfigSource = Union[UrlSource, InlineSource]


def source_to_dict(source: ConfigSource) -> Dict[str, str]:
    if isinstance(source, UrlSource):
        return {"url": source.url}
    return {"string": source.text}


def source_from_dict(data: Dict[str, Any]) -> ConfigSource:
    if "url" in data:
        return UrlSource(str(data["url"]))
    if "string" in data:
        return InlineSource(str(data["string"]))
    raise ValueError("Unknown configuration source")


@dataclass(frozen=True)
class LocalBlockchainConfiguration:
    source: ConfigSource
    custom_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"source": source_to_dict(self.source)}
        if self.custom_id is not None:
            out["customId"] = self.custom_id
        return out

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> "LocalBlockchainConfiguration":
        custom_id = data.get("customId")
        return LocalBlockchainConfiguration(
            source=source_from_dict(data["source"]),
            custom_id=None if custom_id is None else str(custom_id),
        )


@dataclass(frozen=True)
class ResolvedConfiguration:
    source: ConfigSource
    value: str

    def to_dict(self) -> Dict[str, Any]:
        return {"source": source_to_dict(self.source), "value": self.value}

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> "ResolvedConfiguration":
        return ResolvedConfiguration(
            source=source_from_dict(data["source"]),
            value=str(data["value"]),
        )


@dataclass(frozen=True)
class BlockchainConfiguration:
    """Declared configuration of one network plus its last resolved content."""

    configuration: LocalBlockchainConfiguration
    resolved: Optional[ResolvedConfiguration] = None

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"configuration": self.configuration.to_dict()}
        if self.resolved is not None:
            out["resolved"] = self.resolved.to_dict()
        return out

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> "BlockchainConfiguration":
        resolved = data.get("resolved")
        return BlockchainConfiguration(
            configuration=LocalBlockchainConfiguration.from_dict(data["configuration"]),
            resolved=None if resolved is None else ResolvedConfiguration.from_dict(resolved),
        )


DEFAULT_TEST_NET_NAME = "testnet2"


@dataclass(frozen=True)
class EffectiveConfiguration:
    network_name: str
    config: str
    active_network: ActiveNetwork


@dataclass(frozen=True)
class EffectiveSource:
    network_name: str
    source: ConfigSource


@dataclass(frozen=True)
class LocalWalletConfiguration:
    """Declaration-only view of the configuration document."""

    test_net: LocalBlockchainConfiguration
    active_network: ActiveNetwork = ActiveNetwork.TEST_NET


@dataclass(frozen=True)
class MergedConfiguration:
    test_net: BlockchainConfiguration
    active_network: ActiveNetwork = ActiveNetwork.TEST_NET

    def network(self, network: ActiveNetwork) -> BlockchainConfiguration:
        # Only the test network is configurable for now.
        return self.test_net

    def with_network(
        self, network: ActiveNetwork, value: BlockchainConfiguration
    ) -> "MergedConfiguration":
        return replace(self, test_net=value)

    @property
    def local(self) -> LocalWalletConfiguration:
        return LocalWalletConfiguration(
            test_net=self.test_net.configuration,
            active_network=self.active_network,
        )

    @property
    def effective_source(self) -> EffectiveSource:
        declared = self.network(self.active_network).configuration
        return EffectiveSource(
            network_name=declared.custom_id or DEFAULT_TEST_NET_NAME,
            source=declared.source,
        )

    @property
    def effective(self) -> Optional[EffectiveConfiguration]:
        current = self.network(self.active_network)
        resolved = current.resolved
        if resolved is None or resolved.source != current.configuration.source:
            return None
        return EffectiveConfiguration(
            network_name=current.configuration.custom_id or DEFAULT_TEST_NET_NAME,
            config=resolved.value,
            active_network=self.active_network,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "testNet": self.test_net.to_dict(),
            "activeNetwork": self.active_network.value,
        }

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> "MergedConfiguration":
        return MergedConfiguration(
            test_net=BlockchainConfiguration.from_dict(data["testNet"]),
            active_network=ActiveNetwork(data.get("activeNetwork", ActiveNetwork.TEST_NET.value)),
        )


@dataclass(frozen=True)
class ResolvedUpdate:
    """One value produced by the configuration resolver."""

    source: ConfigSource
    network_name: str
    active_network: ActiveNetwork
    config: str


__all__ = [
    "ActiveNetwork",
    "BlockchainConfiguration",
    "ConfigSource",
    "DEFAULT_TEST_NET_NAME",
    "EffectiveConfiguration",
    "EffectiveSource",
    "EncryptedSecret",
    "ImportedWalletInfo",
    "ImportedWalletState",
    "InlineSource",
    "LocalBlockchainConfiguration",
    "LocalWalletConfiguration",
    "MergedConfiguration",
    "ReadyWalletState",
    "ResolvedConfiguration",
    "ResolvedUpdate",
    "UrlSource",
    "WalletInfo",
    "WalletStateInfo",
    "WalletStateRecord",
    "source_from_dict",
    "source_to_dict",
]
