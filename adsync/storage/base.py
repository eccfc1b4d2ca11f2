"""ADSYNC — Storage Contract.

One repository per entity type, plus the sync-state ledger. The orchestrator
only ever talks to these protocols, so tests can swap in in-memory fakes.
"""

from datetime import datetime
from typing import Any, List, Optional, Protocol, TypeVar

from pydantic import BaseModel

T = TypeVar("T")

SUCCESS = "SUCCESS"
FAILED = "FAILED"


class Repository(Protocol[T]):
    def exists_by_id(self, entity_id: Any) -> bool: ...

    def insert(self, entity: T) -> None: ...

    def update(self, entity: T) -> None: ...

    def batch_insert(self, entities: List[T]) -> int: ...

    def count(self) -> int: ...


class FailedSync(BaseModel):
    scope: str
    account_id: str
    failure_kind: Optional[str] = None
    last_error: Optional[str] = None
    last_attempt_at: datetime


class SyncStats(BaseModel):
    """Roll-up of the sync-state ledger for monitoring."""

    total_syncs: int = 0
    successful_syncs: int = 0
    failed_syncs: int = 0
    last_activity: Optional[datetime] = None
    failures: List[FailedSync] = []


class SyncStateStore(Protocol):
    def mark_success(self, scope: str, account_id: str, at: datetime) -> None: ...

    def mark_failed(
        self, scope: str, account_id: str, kind: str, message: str, at: datetime
    ) -> None: ...

    def stats(self) -> SyncStats: ...
