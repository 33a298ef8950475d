from __future__ import annotations

import logging
import os
import threading
from typing import Callable, List, Optional, Tuple

from gramcore.core.errors import InvalidConfigurationError
from gramcore.core.models import (
    BlockchainConfiguration,
    ConfigSource,
    DEFAULT_TEST_NET_NAME,
    LocalWalletConfiguration,
    MergedConfiguration,
    ResolvedConfiguration,
    ResolvedUpdate,
    UrlSource,
    WalletStateRecord,
)
from gramcore.core.resolver import ConfigurationResolver
from gramcore.net.downloader import Downloader
from gramcore.storage.config_store import (
    ConfigurationStore,
    app_data_dir,
    apply_declaration,
    get_config_path,
)
from gramcore.storage.document_store import FileBackedStore
from gramcore.storage.record_store import RECORDS_FILE, WalletRecordStore
from gramcore.storage.secure_store import SecretCustody, default_custody

log = logging.getLogger(__name__)

# (config_text, network_name) -> None; raises ValueError when the chain client rejects it
ConfigValidator = Callable[[str, str], None]


class WalletContext:
    """Both wallet documents, the resolver and the external capabilities for one data directory."""

    def __init__(
        self,
        base_dir: Optional[str] = None,
        custody: Optional[SecretCustody] = None,
        downloader: Optional[Downloader] = None,
    ):
        self.base_dir = base_dir or app_data_dir()
        os.makedirs(self.base_dir, exist_ok=True)
        self._records_storage = FileBackedStore(os.path.join(self.base_dir, RECORDS_FILE))
        self._config_storage = FileBackedStore(get_config_path(self.base_dir))
        self.records = WalletRecordStore(self._records_storage)
        self.configuration = ConfigurationStore(self._config_storage)
        self.custody = custody or default_custody()
        self.downloader = downloader or Downloader()
        self.resolver = ConfigurationResolver(self.configuration, self.downloader)

        # Wallets belong to one chain: a different network name wipes them.
        self._network_lock = threading.Lock()
        cached = self.configuration.effective_configuration()
        self._network_name: Optional[str] = cached.network_name if cached is not None else None
        self._unregister = self.resolver.on_update(self._on_resolved)

    @property
    def network_name(self) -> Optional[str]:
        """Name of the network the stored wallets belong to, once known."""
        return self._network_name

    def _on_resolved(self, update: ResolvedUpdate) -> None:
        with self._network_lock:
            previous = self._network_name
            self._network_name = update.network_name
        if previous is not None and previous != update.network_name:
            log.info("Network changed from %s to %s", previous, update.network_name)
            self.delete_all_wallet_data()

    def snapshot(self) -> Tuple[List[WalletStateRecord], Optional[bytes]]:
        """Records and device key as used by launch and deep-link decisions."""
        return self.records.get_all(), self.custody.encryption_public_key()

    def update_resolved_configuration(
        self, local: LocalWalletConfiguration, source: ConfigSource, resolved_config: str
    ) -> MergedConfiguration:
        """Apply a declaration and its already-fetched content in one write."""

        def apply(current: MergedConfiguration) -> MergedConfiguration:
            updated = apply_declaration(current, local)
            network = updated.network(local.active_network)
            if network.configuration.source == source:
                network = BlockchainConfiguration(
                    configuration=network.configuration,
                    resolved=ResolvedConfiguration(source=source, value=resolved_config),
                )
                updated = updated.with_network(local.active_network, network)
            return updated

        return self.configuration.update_merged(apply)

    def apply_configuration(
        self, local: LocalWalletConfiguration, validate: Optional[ConfigValidator] = None
    ) -> MergedConfiguration:
        """
        Fetch (for URL sources), check and store a new declaration.
        Raises NetworkError when the URL cannot be downloaded and
        InvalidConfigurationError when the content is rejected.
        """
        declared = local.test_net
        network_name = declared.custom_id or DEFAULT_TEST_NET_NAME
        source = declared.source
        if isinstance(source, UrlSource):
            data = self.downloader.fetch(source.url)
            try:
                text = data.decode("utf-8")
            except UnicodeDecodeError as e:
                raise InvalidConfigurationError("Configuration at URL is not valid text") from e
        else:
            text = source.text
        if validate is not None:
            try:
                validate(text, network_name)
            except ValueError as e:
                raise InvalidConfigurationError(f"Configuration rejected: {e}") from e
        return self.update_resolved_configuration(local, source, text)

    def delete_all_wallet_data(self) -> None:
        log.info("Removing all wallet records")
        self.records.clear()

    def close(self) -> None:
        self._unregister()
        self.resolver.stop()
        self._records_storage.close()
        self._config_storage.close()
        self.downloader.close()

    def __enter__(self) -> "WalletContext":
        return self

    def __exit__(self, *exc) -> None:
        self.close()


__all__ = ["ConfigValidator", "WalletContext"]
