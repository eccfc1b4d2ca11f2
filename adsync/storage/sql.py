"""ADSYNC — SQLModel-backed Repositories."""

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Generic, List, Optional, Tuple, Type, TypeVar

from sqlalchemy import func
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, SQLModel, select

from adsync.core.errors import StorageError
from adsync.core.logging import get_logger
from adsync.models.entities import (
    Account,
    AdSet,
    Advertisement,
    Campaign,
    InsightRecord,
    SyncState,
)
from adsync.storage.base import (
    FAILED,
    SUCCESS,
    FailedSync,
    Repository,
    SyncStateStore,
    SyncStats,
)

logger = get_logger("storage")

T = TypeVar("T", bound=SQLModel)

# Columns copied from an incoming insight row onto the stored one.
_INSIGHT_MUTABLE = (
    "level",
    "account_id",
    "campaign_id",
    "adset_id",
    "ad_id",
    "date_stop",
    "currency",
    "spend",
    "impressions",
    "clicks",
    "unique_clicks",
    "reach",
    "purchases",
    "frequency",
    "ctr",
    "cpc",
    "cpm",
    "cpp",
    "purchase_value",
)


class SqlRepository(Generic[T]):
    """Existence check, insert, update, batch insert and count for one table."""

    def __init__(self, engine: Engine, model: Type[T]):
        self.engine = engine
        self.model = model
        self.name = model.__tablename__

    def _session(self) -> Session:
        return Session(self.engine, expire_on_commit=False)

    def exists_by_id(self, entity_id: Any) -> bool:
        try:
            with self._session() as session:
                return session.get(self.model, entity_id) is not None
        except SQLAlchemyError as e:
            raise StorageError(f"{self.name}: existence check failed for {entity_id}: {e}") from e

    def insert(self, entity: T) -> None:
        try:
            with self._session() as session:
                session.add(entity)
                session.commit()
        except SQLAlchemyError as e:
            raise StorageError(f"{self.name}: insert failed: {e}") from e

    def update(self, entity: T) -> None:
        try:
            with self._session() as session:
                session.merge(entity)
                session.commit()
        except SQLAlchemyError as e:
            raise StorageError(f"{self.name}: update failed: {e}") from e

    def batch_insert(self, entities: List[T]) -> int:
        if not entities:
            return 0
        try:
            with self._session() as session:
                session.add_all(entities)
                session.commit()
        except SQLAlchemyError as e:
            raise StorageError(f"{self.name}: batch insert of {len(entities)} failed: {e}") from e
        return len(entities)

    def count(self) -> int:
        try:
            with self._session() as session:
                return session.exec(select(func.count()).select_from(self.model)).one()
        except SQLAlchemyError as e:
            raise StorageError(f"{self.name}: count failed: {e}") from e


class InsightRepository(SqlRepository[InsightRecord]):
    """Insight rows keyed by (entity_id, date).

    ``batch_insert`` is an upsert: rows whose key already exists are
    updated in place, so re-syncing a day never duplicates data.
    """

    def __init__(self, engine: Engine):
        super().__init__(engine, InsightRecord)

    @staticmethod
    def _find(session: Session, entity_id: str, date: str):
        return session.exec(
            select(InsightRecord).where(
                InsightRecord.entity_id == entity_id,
                InsightRecord.date == date,
            )
        ).first()

    def exists_by_id(self, entity_id: Any) -> bool:
        key: Tuple[str, str] = tuple(entity_id)
        try:
            with self._session() as session:
                return self._find(session, *key) is not None
        except SQLAlchemyError as e:
            raise StorageError(f"{self.name}: existence check failed for {key}: {e}") from e

    def update(self, entity: InsightRecord) -> None:
        self.batch_insert([entity])

    def batch_insert(self, entities: List[InsightRecord]) -> int:
        if not entities:
            return 0
        # last row wins when the same key appears twice in one batch
        by_key = {record.key: record for record in entities}
        created = 0
        try:
            with self._session() as session:
                for (entity_id, date), record in by_key.items():
                    existing = self._find(session, entity_id, date)
                    if existing:
                        for column in _INSIGHT_MUTABLE:
                            setattr(existing, column, getattr(record, column))
                        existing.updated_at = datetime.now(timezone.utc)
                        session.add(existing)
                    else:
                        session.add(record)
                        created += 1
                session.commit()
        except SQLAlchemyError as e:
            raise StorageError(f"{self.name}: upsert of {len(by_key)} rows failed: {e}") from e
        logger.info(
            f"Upserted {len(by_key)} insight rows ({created} new)",
            extra={"entity_type": "insight"},
        )
        return len(by_key)


class SyncStateRepository:
    """Last outcome per (scope, account_id). Each mark is an upsert."""

    name = SyncState.__tablename__

    def __init__(self, engine: Engine):
        self.engine = engine

    def _session(self) -> Session:
        return Session(self.engine, expire_on_commit=False)

    def _upsert(self, scope: str, account_id: str, **values: Any) -> None:
        try:
            with self._session() as session:
                state = session.get(SyncState, (scope, account_id))
                if state is None:
                    state = SyncState(scope=scope, account_id=account_id)
                for column, value in values.items():
                    setattr(state, column, value)
                session.add(state)
                session.commit()
        except SQLAlchemyError as e:
            raise StorageError(f"{self.name}: update failed for {scope}:{account_id}: {e}") from e

    def mark_success(self, scope: str, account_id: str, at: datetime) -> None:
        self._upsert(
            scope,
            account_id,
            status=SUCCESS,
            last_success_at=at,
            last_attempt_at=at,
            failure_kind=None,
            last_error=None,
        )

    def mark_failed(
        self, scope: str, account_id: str, kind: str, message: str, at: datetime
    ) -> None:
        # last_success_at is kept so the gap since the last good run stays visible
        self._upsert(
            scope,
            account_id,
            status=FAILED,
            last_attempt_at=at,
            failure_kind=kind,
            last_error=message,
        )

    def get(self, scope: str, account_id: str) -> Optional[SyncState]:
        try:
            with self._session() as session:
                return session.get(SyncState, (scope, account_id))
        except SQLAlchemyError as e:
            raise StorageError(f"{self.name}: lookup failed for {scope}:{account_id}: {e}") from e

    def stats(self) -> SyncStats:
        try:
            with self._session() as session:
                states = session.exec(select(SyncState)).all()
        except SQLAlchemyError as e:
            raise StorageError(f"{self.name}: stats query failed: {e}") from e
        failed = [s for s in states if s.status == FAILED]
        return SyncStats(
            total_syncs=len(states),
            successful_syncs=len(states) - len(failed),
            failed_syncs=len(failed),
            last_activity=max((s.last_attempt_at for s in states), default=None),
            failures=[
                FailedSync(
                    scope=s.scope,
                    account_id=s.account_id,
                    failure_kind=s.failure_kind,
                    last_error=s.last_error,
                    last_attempt_at=s.last_attempt_at,
                )
                for s in sorted(failed, key=lambda s: (s.scope, s.account_id))
            ],
        )


@dataclass(frozen=True)
class StorageSet:
    """The repositories the orchestrator writes to, one per entity type, plus the sync ledger."""

    accounts: Repository[Account]
    campaigns: Repository[Campaign]
    ad_sets: Repository[AdSet]
    ads: Repository[Advertisement]
    insights: Repository[InsightRecord]
    sync_state: SyncStateStore

    @classmethod
    def from_engine(cls, engine: Engine) -> "StorageSet":
        return cls(
            accounts=SqlRepository(engine, Account),
            campaigns=SqlRepository(engine, Campaign),
            ad_sets=SqlRepository(engine, AdSet),
            ads=SqlRepository(engine, Advertisement),
            insights=InsightRepository(engine),
            sync_state=SyncStateRepository(engine),
        )
