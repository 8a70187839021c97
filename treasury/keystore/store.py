"""Custodial key store: at-most-once keypair generation per depositor.

The store fails closed: without a master key every read and write raises
`KeyStoreLockedError`, while the rest of the agent keeps running.
"""

from __future__ import annotations

import logging
from typing import Callable, Optional

from treasury.errors import ConfigurationError, KeyStoreLockedError
from treasury.keystore.cipher import EnvelopeCipher, parse_master_key
from treasury.keystore.keys import SecondaryKeypair, generate_keypair, keypair_from_seed
from treasury.persistence.interfaces import KeyRecordStore
from treasury.positions.tracker import Clock, utc_now
from treasury.types import CustodialKeyRecord

logger = logging.getLogger(__name__)


class CustodialKeyStore:
    def __init__(
        self,
        store: KeyRecordStore,
        *,
        cipher: Optional[EnvelopeCipher],
        clock: Optional[Clock] = None,
        keygen: Callable[[], SecondaryKeypair] = generate_keypair,
    ) -> None:
        self._store = store
        self._cipher = cipher
        self._clock = clock or utc_now
        self._keygen = keygen

    @classmethod
    def from_master_key(
        cls,
        store: KeyRecordStore,
        master_key: Optional[str],
        *,
        clock: Optional[Clock] = None,
    ) -> CustodialKeyStore:
        """Build a store; a missing master key yields a locked store (no error yet)."""
        cipher = None
        if master_key:
            cipher = EnvelopeCipher(parse_master_key(master_key))
        else:
            logger.warning("SUI_KEYSTORE_MASTER_KEY not set; custodial key operations are disabled")
        return cls(store, cipher=cipher, clock=clock)

    @property
    def unlocked(self) -> bool:
        return self._cipher is not None

    def _require_cipher(self) -> EnvelopeCipher:
        if self._cipher is None:
            raise KeyStoreLockedError("Missing SUI_KEYSTORE_MASTER_KEY (custodial key store is locked)")
        return self._cipher

    def _decrypt(self, record: CustodialKeyRecord) -> SecondaryKeypair:
        seed = self._require_cipher().decrypt(record.encrypted_secret, context=record.depositor)
        keypair = keypair_from_seed(seed)
        if keypair.address != record.secondary_address:
            raise ConfigurationError(f"Key record for {record.depositor} does not match its stored address")
        return keypair

    def get_key(self, depositor: str) -> Optional[SecondaryKeypair]:
        self._require_cipher()
        record = self._store.get_key_record(depositor=depositor)
        if record is None:
            return None
        return self._decrypt(record)

    def ensure_key(self, depositor: str) -> SecondaryKeypair:
        """Return the depositor's keypair, generating and storing it on first use."""
        cipher = self._require_cipher()
        existing = self._store.get_key_record(depositor=depositor)
        if existing is not None:
            return self._decrypt(existing)

        keypair = self._keygen()
        now = self._clock()
        record = CustodialKeyRecord(
            depositor=depositor.lower(),
            secondary_address=keypair.address,
            encrypted_secret=cipher.encrypt(keypair.seed, context=depositor),
            created_at=now,
            updated_at=now,
        )
        if self._store.insert_key_record(record=record):
            logger.info(f"Created custodial key for {depositor}: {keypair.address}")
            return keypair

        # Lost an insert race; the stored record wins.
        stored = self._store.get_key_record(depositor=depositor)
        if stored is None:
            raise ConfigurationError(f"Key record for {depositor} vanished during creation")
        return self._decrypt(stored)
