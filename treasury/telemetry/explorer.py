"""Block explorer links for transaction references."""

from __future__ import annotations

import os
import re
from dataclasses import dataclass, field
from typing import Mapping, Optional

DEFAULT_TX_BASES: dict[str, str] = {
    "arc": "https://testnet.arcscan.app/tx/",
    "ethereum": "https://sepolia.etherscan.io/tx/",
    "base": "https://sepolia.basescan.org/tx/",
    "avalanche": "https://testnet.snowtrace.io/tx/",
    "sui": "https://suiscan.xyz/testnet/tx/",
}


def _env_key(chain: str) -> str:
    return f"{re.sub(r'[^A-Z0-9]', '_', chain.upper())}_EXPLORER_TX_BASE"


@dataclass(frozen=True)
class ExplorerLinks:
    """Maps chain names to explorer transaction URL prefixes.

    Each default can be overridden with `<CHAIN>_EXPLORER_TX_BASE`
    (e.g. `BASE_EXPLORER_TX_BASE`).
    """

    tx_bases: Mapping[str, str] = field(default_factory=lambda: dict(DEFAULT_TX_BASES))

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> ExplorerLinks:
        env = os.environ if environ is None else environ
        bases = dict(DEFAULT_TX_BASES)
        for chain in list(bases):
            override = env.get(_env_key(chain))
            if override:
                bases[chain] = override
        return cls(tx_bases=bases)

    def tx_url(self, chain: str, tx_ref: Optional[str]) -> Optional[str]:
        if not tx_ref:
            return None
        base = self.tx_bases.get(chain)
        if not base:
            return None
        return f"{base}{tx_ref}"
