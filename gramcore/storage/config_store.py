# JSON-based store for the merged blockchain configuration

from __future__ import annotations

import json
import logging
import os
from dataclasses import replace
from typing import Callable, Optional, Tuple
from urllib.parse import urlparse

from gramcore.core.errors import InvalidConfigurationError
from gramcore.core.models import (
    ActiveNetwork,
    BlockchainConfiguration,
    ConfigSource,
    EffectiveConfiguration,
    EffectiveSource,
    InlineSource,
    LocalBlockchainConfiguration,
    LocalWalletConfiguration,
    MergedConfiguration,
    ResolvedConfiguration,
    UrlSource,
)
from gramcore.storage.document_store import FileBackedStore, Subscription

log = logging.getLogger(__name__)

APP_DIR_NAME = "GramPortal"
HOME_ENV = "GRAM_PORTAL_HOME"
CONFIGURATION_FILE = "configuration_v2"

DEFAULT_CONFIG_URL = "https://ton.org/global-config-wallet.json"
# Reserved for the built-in network; custom setups must pick another id.
RESERVED_NETWORK_ID = "mainnet"

DEFAULT_CONFIGURATION = MergedConfiguration(
    test_net=BlockchainConfiguration(
        configuration=LocalBlockchainConfiguration(
            source=UrlSource(DEFAULT_CONFIG_URL),
            custom_id=RESERVED_NETWORK_ID,
        ),
        resolved=None,
    ),
    active_network=ActiveNetwork.TEST_NET,
)


def app_data_dir() -> str:
    """
    Cross-platform application data directory for the wallet documents.
    $GRAM_PORTAL_HOME when set, otherwise
    Windows: %APPDATA%/GramPortal (fallback to ~ if APPDATA missing)
    Linux/macOS: ~/.local/share/GramPortal
    """
    override = os.getenv(HOME_ENV)
    if override:
        path = os.path.expanduser(override)
    else:
        if os.name == "nt":
            base = os.getenv("APPDATA") or os.path.expanduser("~")
        else:
            base = os.path.expanduser("~/.local/share")
        path = os.path.join(base, APP_DIR_NAME)
    os.makedirs(path, exist_ok=True)
    return path


def get_config_path(base_dir: Optional[str] = None) -> str:
    """Absolute path to the configuration document."""
    return os.path.join(base_dir or app_data_dir(), CONFIGURATION_FILE)


def decode_configuration(data: Optional[bytes]) -> MergedConfiguration:
    if not data:
        return DEFAULT_CONFIGURATION
    try:
        raw = json.loads(data.decode("utf-8"))
        if not isinstance(raw, dict):
            raise ValueError("Config root is not a JSON object")
        return MergedConfiguration.from_dict(raw)
    except (ValueError, KeyError, TypeError, AttributeError, RecursionError) as e:
        # Recovery: defaults, the broken document stays until the next write
        log.warning("Error deserializing configuration: %s", e)
        return DEFAULT_CONFIGURATION


def encode_configuration(value: MergedConfiguration) -> bytes:
    return json.dumps(value.to_dict(), ensure_ascii=False, indent=2).encode("utf-8")


def effective_configuration(value: MergedConfiguration) -> Optional[EffectiveConfiguration]:
    """Resolved content usable right now, or None when it is stale or missing."""
    return value.effective


def effective_source(value: MergedConfiguration) -> EffectiveSource:
    return value.effective_source


def _is_valid_url(url: str) -> bool:
    try:
        parsed = urlparse(url)
    except ValueError:
        return False
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


def validate_declaration(
    source: ConfigSource,
    custom_id: Optional[str],
    active_network: ActiveNetwork = ActiveNetwork.TEST_NET,
) -> LocalWalletConfiguration:
    """
    Validate a user-edited declaration and return it as a LocalWalletConfiguration.
    Raises InvalidConfigurationError when the declaration cannot be applied.
    """
    if isinstance(source, UrlSource):
        url = source.url.strip()
        if not url or not _is_valid_url(url):
            raise InvalidConfigurationError("Invalid configuration URL")
        source = UrlSource(url)
    elif isinstance(source, InlineSource):
        if not source.text:
            raise InvalidConfigurationError("Configuration text is empty")
    else:
        raise InvalidConfigurationError("Unknown configuration source")

    cid = (custom_id or "").strip() or None
    if cid == RESERVED_NETWORK_ID:
        raise InvalidConfigurationError(
            f"Blockchain id '{RESERVED_NETWORK_ID}' is reserved for the default network"
        )
    return LocalWalletConfiguration(
        test_net=LocalBlockchainConfiguration(source=source, custom_id=cid),
        active_network=active_network,
    )


def apply_declaration(
    current: MergedConfiguration, local: LocalWalletConfiguration
) -> MergedConfiguration:
    """Replace the declaration and active network, keeping any resolved value."""
    network = current.network(local.active_network)
    updated = BlockchainConfiguration(configuration=local.test_net, resolved=network.resolved)
    merged = current.with_network(local.active_network, updated)
    return replace(merged, active_network=local.active_network)


def apply_resolved(
    current: MergedConfiguration, source: ConfigSource, value: str
) -> MergedConfiguration:
    """Record resolved content if it was computed for the current declaration."""
    network = current.network(current.active_network)
    if network.configuration.source != source:
        return current
    updated = BlockchainConfiguration(
        configuration=network.configuration,
        resolved=ResolvedConfiguration(source=source, value=value),
    )
    return current.with_network(current.active_network, updated)


class ConfigurationStore:
    """Typed view of the configuration document."""

    def __init__(self, storage: FileBackedStore):
        self._storage = storage

    def watch_merged(self, callback: Callable[[MergedConfiguration], None]) -> Subscription:
        return self._storage.watch(lambda data: callback(decode_configuration(data)))

    def get_merged_once(self) -> MergedConfiguration:
        return decode_configuration(self._storage.get())

    def watch_local(self, callback: Callable[[LocalWalletConfiguration], None]) -> Subscription:
        """Declaration-only changes; consecutive equal values are delivered once."""
        last: Optional[LocalWalletConfiguration] = None

        def on_merged(value: MergedConfiguration) -> None:
            nonlocal last
            local = value.local
            if local == last:
                return
            last = local
            callback(local)

        return self.watch_merged(on_merged)

    def update_merged(
        self,
        f: Callable[[MergedConfiguration], MergedConfiguration],
        skip_unchanged: bool = False,
    ) -> MergedConfiguration:
        """
        Apply ``f`` to the stored value and write the result. With
        ``skip_unchanged``, returning the very object ``f`` was given writes nothing.
        """

        def apply(data: Optional[bytes]) -> Tuple[Optional[bytes], MergedConfiguration]:
            current = decode_configuration(data)
            updated = f(current)
            if skip_unchanged and updated is current:
                return None, updated
            try:
                return encode_configuration(updated), updated
            except (TypeError, ValueError) as e:
                log.error("Error serializing configuration: %s", e)
                return b"", updated

        return self._storage.update(apply)

    def effective_configuration(self) -> Optional[EffectiveConfiguration]:
        return effective_configuration(self.get_merged_once())

    def effective_source(self) -> EffectiveSource:
        return effective_source(self.get_merged_once())


__all__ = [
    "APP_DIR_NAME",
    "CONFIGURATION_FILE",
    "ConfigurationStore",
    "DEFAULT_CONFIGURATION",
    "DEFAULT_CONFIG_URL",
    "RESERVED_NETWORK_ID",
    "app_data_dir",
    "apply_declaration",
    "apply_resolved",
    "decode_configuration",
    "effective_configuration",
    "effective_source",
    "encode_configuration",
    "get_config_path",
    "validate_declaration",
]
