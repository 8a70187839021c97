from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Optional, Sequence

from treasury.persistence.interfaces import AgentStore
from treasury.storage.sqlite.config import SqliteConfig
from treasury.storage.sqlite.schema import apply_schema
from treasury.types import (
    CustodialKeyRecord,
    GatewayPosition,
    LendingPosition,
    PendingBridge,
    Position,
)


def _to_iso(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat()


def _from_iso(value: Optional[str]) -> Optional[datetime]:
    if value is None:
        return None
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


_POSITION_UPSERT = """
    INSERT INTO positions (
        depositor, family, venue, principal_amount, pool_share_amount,
        opened_at, bridge_tx_ref, status
    )
    VALUES (
        :depositor, :family, :venue, :principal_amount, :pool_share_amount,
        :opened_at, :bridge_tx_ref, :status
    )
    ON CONFLICT (depositor, family) DO UPDATE SET
        venue = excluded.venue,
        principal_amount = excluded.principal_amount,
        pool_share_amount = excluded.pool_share_amount,
        opened_at = excluded.opened_at,
        bridge_tx_ref = excluded.bridge_tx_ref,
        status = excluded.status
"""


class SqliteStores(AgentStore):
    """Single entrypoint for the SQLite-backed agent state.

    All writes go through `engine.begin()` so each call is its own transaction;
    the agent is the only writer.
    """

    def __init__(self, *, config: SqliteConfig) -> None:
        self._config = config
        self._engine: Any | None = None

    def _require_sqlalchemy(self) -> tuple[Any, Any]:
        try:
            from sqlalchemy import create_engine, text  # type: ignore[import-not-found]
        except Exception as exc:  # pragma: no cover
            raise RuntimeError("SQLAlchemy is required for SqliteStores. Install the package dependencies.") from exc

        return create_engine, text

    def _get_engine(self) -> Any:
        if self._engine is None:
            create_engine, _ = self._require_sqlalchemy()
            self._engine = create_engine(self._config.database_url, echo=False)
        return self._engine

    def init_schema(self) -> int:
        return apply_schema(self._get_engine())

    # ========== Positions ==========

    @staticmethod
    def _position_from_row(row: Any) -> Position:
        return Position(
            depositor=row[0],
            family=row[1],
            venue=row[2],
            principal_amount=int(row[3]),
            pool_share_amount=int(row[4]),
            opened_at=_from_iso(row[5]),
            bridge_tx_ref=row[6],
            status=row[7],
        )

    @staticmethod
    def _position_params(position: Position) -> dict[str, Any]:
        return {
            "depositor": position.depositor.lower(),
            "family": position.family,
            "venue": position.venue,
            "principal_amount": int(position.principal_amount),
            "pool_share_amount": int(position.pool_share_amount),
            "opened_at": _to_iso(position.opened_at),
            "bridge_tx_ref": position.bridge_tx_ref,
            "status": position.status,
        }

    def get_position(self, *, depositor: str, family: str) -> Optional[Position]:
        engine = self._get_engine()
        _, text = self._require_sqlalchemy()

        stmt = text(
            """
            SELECT depositor, family, venue, principal_amount, pool_share_amount,
                   opened_at, bridge_tx_ref, status
            FROM positions
            WHERE depositor = :depositor AND family = :family
            """
        )
        with engine.begin() as conn:
            row = conn.execute(stmt, {"depositor": depositor.lower(), "family": family}).fetchone()
        return None if row is None else self._position_from_row(row)

    def list_positions(
        self,
        *,
        family: Optional[str] = None,
        status: Optional[str] = None,
        depositor: Optional[str] = None,
    ) -> Sequence[Position]:
        engine = self._get_engine()
        _, text = self._require_sqlalchemy()

        stmt = text(
            """
            SELECT depositor, family, venue, principal_amount, pool_share_amount,
                   opened_at, bridge_tx_ref, status
            FROM positions
            WHERE (:family IS NULL OR family = :family)
              AND (:status IS NULL OR status = :status)
              AND (:depositor IS NULL OR depositor = :depositor)
            ORDER BY opened_at ASC
            """
        )
        params = {
            "family": family,
            "status": status,
            "depositor": depositor.lower() if depositor else None,
        }
        with engine.begin() as conn:
            rows = conn.execute(stmt, params).fetchall()
        return [self._position_from_row(row) for row in rows]

    def upsert_position(self, *, position: Position) -> None:
        engine = self._get_engine()
        _, text = self._require_sqlalchemy()

        with engine.begin() as conn:
            conn.execute(text(_POSITION_UPSERT), self._position_params(position))

    def delete_position(self, *, depositor: str, family: str) -> bool:
        engine = self._get_engine()
        _, text = self._require_sqlalchemy()

        stmt = text("DELETE FROM positions WHERE depositor = :depositor AND family = :family")
        with engine.begin() as conn:
            result = conn.execute(stmt, {"depositor": depositor.lower(), "family": family})
        return (result.rowcount or 0) > 0

    # ========== Pending bridges ==========

    @staticmethod
    def _bridge_from_row(row: Any) -> PendingBridge:
        return PendingBridge(
            depositor=row[0],
            destination_address=row[1],
            amount=int(row[2]),
            started_at=_from_iso(row[3]),
            tx_ref=row[4],
            target_pool_key=row[5],
            expected_apy=None if row[6] is None else float(row[6]),
        )

    def get_pending_bridge(self, *, depositor: str) -> Optional[PendingBridge]:
        engine = self._get_engine()
        _, text = self._require_sqlalchemy()

        stmt = text(
            """
            SELECT depositor, destination_address, amount, started_at, tx_ref,
                   target_pool_key, expected_apy
            FROM pending_bridges
            WHERE depositor = :depositor
            """
        )
        with engine.begin() as conn:
            row = conn.execute(stmt, {"depositor": depositor.lower()}).fetchone()
        return None if row is None else self._bridge_from_row(row)

    def list_pending_bridges(self) -> Sequence[PendingBridge]:
        engine = self._get_engine()
        _, text = self._require_sqlalchemy()

        stmt = text(
            """
            SELECT depositor, destination_address, amount, started_at, tx_ref,
                   target_pool_key, expected_apy
            FROM pending_bridges
            ORDER BY started_at ASC
            """
        )
        with engine.begin() as conn:
            rows = conn.execute(stmt).fetchall()
        return [self._bridge_from_row(row) for row in rows]

    def add_pending_bridge(self, *, bridge: PendingBridge) -> None:
        engine = self._get_engine()
        _, text = self._require_sqlalchemy()

        stmt = text(
            """
            INSERT INTO pending_bridges (
                depositor, destination_address, amount, started_at, tx_ref,
                target_pool_key, expected_apy
            )
            VALUES (
                :depositor, :destination_address, :amount, :started_at, :tx_ref,
                :target_pool_key, :expected_apy
            )
            ON CONFLICT (depositor) DO UPDATE SET
                destination_address = excluded.destination_address,
                amount = excluded.amount,
                started_at = excluded.started_at,
                tx_ref = excluded.tx_ref,
                target_pool_key = excluded.target_pool_key,
                expected_apy = excluded.expected_apy
            """
        )
        params = {
            "depositor": bridge.depositor.lower(),
            "destination_address": bridge.destination_address,
            "amount": int(bridge.amount),
            "started_at": _to_iso(bridge.started_at),
            "tx_ref": bridge.tx_ref,
            "target_pool_key": bridge.target_pool_key,
            "expected_apy": bridge.expected_apy,
        }
        with engine.begin() as conn:
            conn.execute(stmt, params)

    def complete_pending_bridge(self, *, depositor: str, position: Position) -> bool:
        engine = self._get_engine()
        _, text = self._require_sqlalchemy()

        delete_stmt = text("DELETE FROM pending_bridges WHERE depositor = :depositor")
        with engine.begin() as conn:
            result = conn.execute(delete_stmt, {"depositor": depositor.lower()})
            if (result.rowcount or 0) == 0:
                return False
            conn.execute(text(_POSITION_UPSERT), self._position_params(position))
        return True

    # ========== Custodial keys ==========

    def get_key_record(self, *, depositor: str) -> Optional[CustodialKeyRecord]:
        engine = self._get_engine()
        _, text = self._require_sqlalchemy()

        stmt = text(
            """
            SELECT depositor, secondary_address, encrypted_secret, created_at, updated_at
            FROM custodial_keys
            WHERE depositor = :depositor
            """
        )
        with engine.begin() as conn:
            row = conn.execute(stmt, {"depositor": depositor.lower()}).fetchone()
        if row is None:
            return None
        return CustodialKeyRecord(
            depositor=row[0],
            secondary_address=row[1],
            encrypted_secret=row[2],
            created_at=_from_iso(row[3]),
            updated_at=_from_iso(row[4]),
        )

    def insert_key_record(self, *, record: CustodialKeyRecord) -> bool:
        engine = self._get_engine()
        _, text = self._require_sqlalchemy()

        stmt = text(
            """
            INSERT INTO custodial_keys (
                depositor, secondary_address, encrypted_secret, created_at, updated_at
            )
            VALUES (:depositor, :secondary_address, :encrypted_secret, :created_at, :updated_at)
            ON CONFLICT (depositor) DO NOTHING
            """
        )
        params = {
            "depositor": record.depositor.lower(),
            "secondary_address": record.secondary_address,
            "encrypted_secret": record.encrypted_secret,
            "created_at": _to_iso(record.created_at),
            "updated_at": _to_iso(record.updated_at),
        }
        with engine.begin() as conn:
            result = conn.execute(stmt, params)
        return (result.rowcount or 0) > 0

    # ========== Gateway (unified balance) positions ==========

    @staticmethod
    def _gateway_from_row(row: Any) -> GatewayPosition:
        return GatewayPosition(
            depositor=row[0],
            destination_venue=row[1],
            protocol=row[2],
            amount=int(row[3]),
            deposited_at=_from_iso(row[4]),
            tx_ref=row[5],
            status=row[6],
            last_attempt=_from_iso(row[7]),
            last_error=row[8],
        )

    def get_gateway_position(self, *, depositor: str, destination_venue: str) -> Optional[GatewayPosition]:
        engine = self._get_engine()
        _, text = self._require_sqlalchemy()

        stmt = text(
            """
            SELECT depositor, destination_venue, protocol, amount, deposited_at, tx_ref,
                   status, last_attempt, last_error
            FROM gateway_positions
            WHERE depositor = :depositor AND destination_venue = :destination_venue
            """
        )
        with engine.begin() as conn:
            row = conn.execute(
                stmt,
                {"depositor": depositor.lower(), "destination_venue": destination_venue},
            ).fetchone()
        return None if row is None else self._gateway_from_row(row)

    def list_gateway_positions(self, *, status: Optional[str] = None) -> Sequence[GatewayPosition]:
        engine = self._get_engine()
        _, text = self._require_sqlalchemy()

        stmt = text(
            """
            SELECT depositor, destination_venue, protocol, amount, deposited_at, tx_ref,
                   status, last_attempt, last_error
            FROM gateway_positions
            WHERE (:status IS NULL OR status = :status)
            ORDER BY deposited_at ASC
            """
        )
        with engine.begin() as conn:
            rows = conn.execute(stmt, {"status": status}).fetchall()
        return [self._gateway_from_row(row) for row in rows]

    def upsert_gateway_position(self, *, position: GatewayPosition) -> None:
        engine = self._get_engine()
        _, text = self._require_sqlalchemy()

        stmt = text(
            """
            INSERT INTO gateway_positions (
                depositor, destination_venue, protocol, amount, deposited_at, tx_ref,
                status, last_attempt, last_error
            )
            VALUES (
                :depositor, :destination_venue, :protocol, :amount, :deposited_at, :tx_ref,
                :status, :last_attempt, :last_error
            )
            ON CONFLICT (depositor, destination_venue) DO UPDATE SET
                protocol = excluded.protocol,
                amount = excluded.amount,
                deposited_at = excluded.deposited_at,
                tx_ref = excluded.tx_ref,
                status = excluded.status,
                last_attempt = excluded.last_attempt,
                last_error = excluded.last_error
            """
        )
        params = {
            "depositor": position.depositor.lower(),
            "destination_venue": position.destination_venue,
            "protocol": position.protocol,
            "amount": int(position.amount),
            "deposited_at": _to_iso(position.deposited_at),
            "tx_ref": position.tx_ref,
            "status": position.status,
            "last_attempt": _to_iso(position.last_attempt),
            "last_error": position.last_error,
        }
        with engine.begin() as conn:
            conn.execute(stmt, params)

    def delete_gateway_position(self, *, depositor: str, destination_venue: str) -> bool:
        engine = self._get_engine()
        _, text = self._require_sqlalchemy()

        stmt = text(
            """
            DELETE FROM gateway_positions
            WHERE depositor = :depositor AND destination_venue = :destination_venue
            """
        )
        with engine.begin() as conn:
            result = conn.execute(
                stmt,
                {"depositor": depositor.lower(), "destination_venue": destination_venue},
            )
        return (result.rowcount or 0) > 0

    # ========== Lending positions ==========

    @staticmethod
    def _lending_from_row(row: Any) -> LendingPosition:
        return LendingPosition(
            depositor=row[0],
            chain=row[1],
            protocol=row[2],
            asset=row[3],
            amount=int(row[4]),
            a_token=row[5],
            apy=None if row[6] is None else float(row[6]),
            deposited_at=_from_iso(row[7]),
            tx_ref=row[8],
            status=row[9],
        )

    def get_lending_position(self, *, depositor: str, chain: str, protocol: str) -> Optional[LendingPosition]:
        engine = self._get_engine()
        _, text = self._require_sqlalchemy()

        stmt = text(
            """
            SELECT depositor, chain, protocol, asset, amount, a_token, apy,
                   deposited_at, tx_ref, status
            FROM lending_positions
            WHERE depositor = :depositor AND chain = :chain AND protocol = :protocol
            """
        )
        with engine.begin() as conn:
            row = conn.execute(
                stmt,
                {"depositor": depositor.lower(), "chain": chain, "protocol": protocol},
            ).fetchone()
        return None if row is None else self._lending_from_row(row)

    def list_lending_positions(self, *, depositor: Optional[str] = None) -> Sequence[LendingPosition]:
        engine = self._get_engine()
        _, text = self._require_sqlalchemy()

        stmt = text(
            """
            SELECT depositor, chain, protocol, asset, amount, a_token, apy,
                   deposited_at, tx_ref, status
            FROM lending_positions
            WHERE (:depositor IS NULL OR depositor = :depositor)
            ORDER BY deposited_at ASC
            """
        )
        with engine.begin() as conn:
            rows = conn.execute(stmt, {"depositor": depositor.lower() if depositor else None}).fetchall()
        return [self._lending_from_row(row) for row in rows]

    def upsert_lending_position(self, *, position: LendingPosition) -> None:
        engine = self._get_engine()
        _, text = self._require_sqlalchemy()

        stmt = text(
            """
            INSERT INTO lending_positions (
                depositor, chain, protocol, asset, amount, a_token, apy,
                deposited_at, tx_ref, status, updated_at
            )
            VALUES (
                :depositor, :chain, :protocol, :asset, :amount, :a_token, :apy,
                :deposited_at, :tx_ref, :status, :updated_at
            )
            ON CONFLICT (depositor, chain, protocol) DO UPDATE SET
                asset = excluded.asset,
                amount = excluded.amount,
                a_token = excluded.a_token,
                apy = excluded.apy,
                deposited_at = excluded.deposited_at,
                tx_ref = excluded.tx_ref,
                status = excluded.status,
                updated_at = excluded.updated_at
            """
        )
        params = {
            "depositor": position.depositor.lower(),
            "chain": position.chain,
            "protocol": position.protocol,
            "asset": position.asset,
            "amount": int(position.amount),
            "a_token": position.a_token,
            "apy": position.apy,
            "deposited_at": _to_iso(position.deposited_at),
            "tx_ref": position.tx_ref,
            "status": position.status,
            "updated_at": _to_iso(datetime.now(timezone.utc)),
        }
        with engine.begin() as conn:
            conn.execute(stmt, params)

    def delete_lending_position(self, *, depositor: str, chain: str, protocol: str) -> bool:
        engine = self._get_engine()
        _, text = self._require_sqlalchemy()

        stmt = text(
            """
            DELETE FROM lending_positions
            WHERE depositor = :depositor AND chain = :chain AND protocol = :protocol
            """
        )
        with engine.begin() as conn:
            result = conn.execute(
                stmt,
                {"depositor": depositor.lower(), "chain": chain, "protocol": protocol},
            )
        return (result.rowcount or 0) > 0
