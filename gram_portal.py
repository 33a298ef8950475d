#!/usr/bin/env python3
"""
Gram Portal - Main Entry Point
Boots the wallet core for the current user.

Resolves the blockchain configuration (from cache when possible, otherwise
from the network), then reports which screen the wallet would start with.
An optional ton://transfer link is matched against the stored wallet.

Usage:
    python gram_portal.py [ton://transfer/<address>?amount=...&text=...]
"""

import sys

from gramcore import configure_logging
from gramcore.core.bootstrap import decide_launch, match_transfer_wallet, parse_transfer_url
from gramcore.core.context import WalletContext


def main(argv=None):
    argv = sys.argv[1:] if argv is None else argv
    configure_logging()

    try:
        with WalletContext() as context:
            config = context.resolver.initial_configuration()
            print(f"Network: {config.network_name} ({config.active_network.value})")

            records, public_key = context.snapshot()
            decision = decide_launch(records, public_key)
            print(f"Launch: {decision.kind.value}")

            if argv:
                request = parse_transfer_url(argv[0])
                wallet = match_transfer_wallet(records, public_key) if request else None
                if request is None:
                    print("Not a transfer link")
                elif wallet is None:
                    print("No wallet ready to send from")
                else:
                    print(f"Send from {wallet.public_key} to {request.address}")
    except KeyboardInterrupt:
        print("\n\nGram Portal closed by user.")
        sys.exit(0)
    except Exception as e:
        print(f"Fatal error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
