"""Ed25519 keypairs for the secondary chain (Sui address scheme)."""

from __future__ import annotations

import hashlib
from dataclasses import dataclass, field

from nacl.signing import SigningKey

# Sui signature-scheme flag for Ed25519.
ED25519_FLAG = b"\x00"


def derive_sui_address(public_key: bytes) -> str:
    """Address = blake2b-256(flag || public key), hex with 0x prefix."""
    digest = hashlib.blake2b(ED25519_FLAG + public_key, digest_size=32).digest()
    return "0x" + digest.hex()


@dataclass(frozen=True)
class SecondaryKeypair:
    address: str
    public_key: bytes
    seed: bytes = field(repr=False)

    @property
    def private_key_material(self) -> str:
        return "0x" + self.seed.hex()

    def signing_key(self) -> SigningKey:
        return SigningKey(self.seed)


def keypair_from_seed(seed: bytes) -> SecondaryKeypair:
    signing_key = SigningKey(seed)
    public_key = bytes(signing_key.verify_key)
    return SecondaryKeypair(address=derive_sui_address(public_key), public_key=public_key, seed=bytes(signing_key))


def generate_keypair() -> SecondaryKeypair:
    return keypair_from_seed(bytes(SigningKey.generate()))
