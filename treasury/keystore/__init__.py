"""Encrypted custodial keys for the secondary chain."""

from .cipher import EnvelopeCipher, parse_master_key
from .keys import SecondaryKeypair, derive_sui_address, generate_keypair, keypair_from_seed
from .store import CustodialKeyStore

__all__ = [
    "CustodialKeyStore",
    "EnvelopeCipher",
    "SecondaryKeypair",
    "derive_sui_address",
    "generate_keypair",
    "keypair_from_seed",
    "parse_master_key",
]
