"""Tests for the SQLite-backed agent store."""

from datetime import datetime, timedelta, timezone

from treasury.storage.sqlite.schema import SCHEMA_PATH, iter_sql_statements
from treasury.storage.sqlite.stores import SqliteStores
from treasury.types import CustodialKeyRecord, GatewayPosition, LendingPosition, PendingBridge, Position

from tests.conftest import DEPOSITOR, OTHER_DEPOSITOR

NOW = datetime(2025, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


def _position(depositor: str = DEPOSITOR, family: str = "gateway", status: str = "active") -> Position:
    return Position(
        depositor=depositor,
        family=family,
        venue="base",
        principal_amount=25_000_000,
        pool_share_amount=0,
        opened_at=NOW,
        bridge_tx_ref="0xabc",
        status=status,
    )


class TestSchema:
    def test_init_schema_is_repeatable(self, sqlite_store: SqliteStores) -> None:
        """Applying the schema twice does not fail."""
        assert sqlite_store.init_schema() > 0

    def test_statement_splitting(self) -> None:
        """Comments are dropped; a semicolon inside a literal does not end the statement."""
        script = (
            "-- header; not a statement\n"
            "CREATE TABLE t (x TEXT DEFAULT 'a;b');\n"
            "\n"
            "INSERT INTO t VALUES ('1');\n"
        )
        assert list(iter_sql_statements(script)) == [
            "CREATE TABLE t (x TEXT DEFAULT 'a;b');",
            "INSERT INTO t VALUES ('1');",
        ]

    def test_bundled_schema_statement_count(self) -> None:
        statements = list(iter_sql_statements(SCHEMA_PATH.read_text(encoding="utf-8")))
        assert len(statements) == 6
        assert all(s.endswith(";") and not s.startswith("--") for s in statements)


class TestPositions:
    def test_upsert_and_get(self, sqlite_store: SqliteStores) -> None:
        sqlite_store.upsert_position(position=_position())
        assert sqlite_store.get_position(depositor=DEPOSITOR.upper().replace("0X", "0x"), family="gateway") == _position()

    def test_upsert_replaces_row(self, sqlite_store: SqliteStores) -> None:
        """A second upsert for the same (depositor, family) updates in place."""
        sqlite_store.upsert_position(position=_position())
        sqlite_store.upsert_position(position=_position(status="closed"))
        rows = sqlite_store.list_positions()
        assert len(rows) == 1
        assert rows[0].status == "closed"

    def test_list_filters(self, sqlite_store: SqliteStores) -> None:
        sqlite_store.upsert_position(position=_position())
        sqlite_store.upsert_position(position=_position(family="pool"))
        sqlite_store.upsert_position(position=_position(depositor=OTHER_DEPOSITOR, status="closed"))
        assert len(sqlite_store.list_positions(family="gateway")) == 2
        assert len(sqlite_store.list_positions(status="closed")) == 1
        assert len(sqlite_store.list_positions(depositor=DEPOSITOR)) == 2

    def test_delete(self, sqlite_store: SqliteStores) -> None:
        sqlite_store.upsert_position(position=_position())
        assert sqlite_store.delete_position(depositor=DEPOSITOR, family="gateway") is True
        assert sqlite_store.delete_position(depositor=DEPOSITOR, family="gateway") is False


class TestPendingBridges:
    def _bridge(self) -> PendingBridge:
        return PendingBridge(
            depositor=DEPOSITOR,
            destination_address="0xsui",
            amount=1_000_000,
            started_at=NOW,
            target_pool_key="SUI_DBUSDC",
            tx_ref="0xburn",
            expected_apy=8.5,
        )

    def test_add_and_list(self, sqlite_store: SqliteStores) -> None:
        sqlite_store.add_pending_bridge(bridge=self._bridge())
        assert sqlite_store.get_pending_bridge(depositor=DEPOSITOR) == self._bridge()
        assert sqlite_store.list_pending_bridges() == [self._bridge()]

    def test_complete_is_atomic_and_single_shot(self, sqlite_store: SqliteStores) -> None:
        """Completion removes the bridge and writes the position; a second call is a no-op."""
        sqlite_store.add_pending_bridge(bridge=self._bridge())
        position = _position(family="pool")
        assert sqlite_store.complete_pending_bridge(depositor=DEPOSITOR, position=position) is True
        assert sqlite_store.get_pending_bridge(depositor=DEPOSITOR) is None
        assert sqlite_store.get_position(depositor=DEPOSITOR, family="pool") == position
        assert sqlite_store.complete_pending_bridge(depositor=DEPOSITOR, position=position) is False


class TestKeyRecords:
    def test_insert_once(self, sqlite_store: SqliteStores) -> None:
        """A second insert for the same depositor is refused."""
        record = CustodialKeyRecord(
            depositor=DEPOSITOR,
            secondary_address="0xsui",
            encrypted_secret="v1:n:c",
            created_at=NOW,
            updated_at=NOW,
        )
        assert sqlite_store.insert_key_record(record=record) is True
        assert sqlite_store.insert_key_record(record=record) is False
        assert sqlite_store.get_key_record(depositor=DEPOSITOR) == record


class TestGatewayPositions:
    def test_upsert_list_delete(self, sqlite_store: SqliteStores) -> None:
        staged = GatewayPosition(
            depositor=DEPOSITOR,
            destination_venue="arc",
            amount=25_000_000,
            status="active",
            deposited_at=NOW,
            tx_ref="0xdep",
            last_attempt=NOW,
        )
        sqlite_store.upsert_gateway_position(position=staged)
        blocked = GatewayPosition(
            depositor=DEPOSITOR,
            destination_venue="arc",
            amount=25_000_000,
            status="blocked",
            deposited_at=NOW,
            tx_ref="0xdep",
            last_attempt=NOW + timedelta(minutes=1),
            last_error="mint failed",
        )
        sqlite_store.upsert_gateway_position(position=blocked)

        assert sqlite_store.get_gateway_position(depositor=DEPOSITOR, destination_venue="arc") == blocked
        assert sqlite_store.list_gateway_positions(status="active") == []
        assert sqlite_store.list_gateway_positions(status="blocked") == [blocked]
        assert sqlite_store.delete_gateway_position(depositor=DEPOSITOR, destination_venue="arc") is True


class TestLendingPositions:
    def test_keyed_by_chain_and_protocol(self, sqlite_store: SqliteStores) -> None:
        """A depositor can hold several protocols on the same chain."""
        for protocol in ("aave-v3", "compound-v3"):
            sqlite_store.upsert_lending_position(
                position=LendingPosition(
                    depositor=DEPOSITOR,
                    chain="base",
                    protocol=protocol,
                    asset="0xusdc",
                    amount=10_000_000,
                    a_token=None,
                    apy=7.5,
                    deposited_at=NOW,
                )
            )
        assert len(sqlite_store.list_lending_positions(depositor=DEPOSITOR)) == 2
        assert sqlite_store.get_lending_position(depositor=DEPOSITOR, chain="base", protocol="aave-v3").apy == 7.5
        assert sqlite_store.delete_lending_position(depositor=DEPOSITOR, chain="base", protocol="aave-v3") is True
        assert len(sqlite_store.list_lending_positions()) == 1
