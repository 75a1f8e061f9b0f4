"""
Entitlement store: who has paid for the generator.

Contract:
- get(identity) returns the grant or None
- mark_paid(identity) is a single atomic upsert keyed by identity;
  repeating it returns the first grant unchanged
- paid is monotonic: nothing here (or anywhere) writes paid=False,
  updates or deletes a grant
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Dict, Optional, Protocol

from sqlalchemy import insert, select
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError

from starsgate.core.database import build_engine, create_all_tables, entitlements


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Entitlement:
    """Durable record that an identity has paid."""
    identity: str
    paid: bool
    granted_at: datetime
    source: str = "webhook"  # webhook | admin
    charge_id: Optional[str] = None


class EntitlementStore(Protocol):
    """Storage contract shared by the webhook processor and the gate."""

    def get(self, identity: str) -> Optional[Entitlement]:
        ...

    def mark_paid(self, identity: str, *, source: str = "webhook", charge_id: Optional[str] = None) -> Entitlement:
        ...


class InMemoryEntitlementStore:
    """Process-lifetime store backed by a dict.

    dict.setdefault is a single atomic operation, so concurrent grants for
    the same identity all observe the first one.
    """

    def __init__(self):
        self._grants: Dict[str, Entitlement] = {}

    def get(self, identity: str) -> Optional[Entitlement]:
        return self._grants.get(identity)

    def mark_paid(self, identity: str, *, source: str = "webhook", charge_id: Optional[str] = None) -> Entitlement:
        candidate = Entitlement(
            identity=identity,
            paid=True,
            granted_at=datetime.now(timezone.utc),
            source=source,
            charge_id=charge_id,
        )
        grant = self._grants.setdefault(identity, candidate)
        if grant is candidate:
            logger.info("entitlement.granted", extra={"identity": identity, "action": source})
        return grant

    def __len__(self) -> int:
        return len(self._grants)


class SqlEntitlementStore:
    """SQLAlchemy Core store over the `entitlements` table.

    mark_paid is one INSERT; the primary key turns a concurrent or repeated
    grant into an IntegrityError, after which the existing row is returned.
    """

    def __init__(self, engine: Engine):
        self._engine = engine

    @property
    def engine(self) -> Engine:
        return self._engine

    @staticmethod
    def _to_entitlement(row) -> Entitlement:
        granted_at = row.granted_at
        if granted_at is not None and granted_at.tzinfo is None:
            # SQLite drops tzinfo; values are written in UTC
            granted_at = granted_at.replace(tzinfo=timezone.utc)
        return Entitlement(
            identity=row.identity,
            paid=bool(row.paid),
            granted_at=granted_at,
            source=row.source,
            charge_id=row.charge_id,
        )

    def get(self, identity: str) -> Optional[Entitlement]:
        with self._engine.connect() as conn:
            row = conn.execute(
                select(entitlements).where(entitlements.c.identity == identity)
            ).fetchone()
        return self._to_entitlement(row) if row else None

    def mark_paid(self, identity: str, *, source: str = "webhook", charge_id: Optional[str] = None) -> Entitlement:
        try:
            with self._engine.begin() as conn:
                conn.execute(
                    insert(entitlements).values(
                        identity=identity,
                        paid=True,
                        granted_at=datetime.now(timezone.utc),
                        source=source,
                        charge_id=charge_id,
                    )
                )
            logger.info("entitlement.granted", extra={"identity": identity, "action": source})
        except IntegrityError:
            # Already granted (duplicate delivery or concurrent writer)
            logger.info("entitlement.already_granted", extra={"identity": identity, "action": source})

        grant = self.get(identity)
        if grant is None:
            raise RuntimeError(f"entitlement for {identity} missing after insert")
        return grant


def build_store(settings_obj, engine: Optional[Engine] = None) -> EntitlementStore:
    """Pick the store for the configured environment.

    DATABASE_URL set -> SqlEntitlementStore (tables created if missing),
    otherwise an in-memory store.
    """
    if engine is None and not getattr(settings_obj, "DATABASE_URL", None):
        logger.warning("DATABASE_URL not set; entitlements are kept in memory")
        return InMemoryEntitlementStore()

    eng = engine or build_engine(settings_obj.DATABASE_URL)
    create_all_tables(eng)
    return SqlEntitlementStore(eng)
