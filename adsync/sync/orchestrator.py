"""ADSYNC — Sync Orchestrator.

Walks Account → Campaign → AdSet → Advertisement and syncs daily insights.
Each account is its own failure boundary: an error anywhere in one account's
subtree is recorded as a SyncFailure and the other accounts carry on.
Runs are serialized; a second trigger waits for the first to finish.
The outcome at every account boundary is written to the sync-state ledger.
"""

import asyncio
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Protocol, Sequence

from pydantic import BaseModel

from adsync.connectors.meta import transformer
from adsync.core.errors import SyncFailure
from adsync.core.logging import get_logger
from adsync.models.dto import (
    MetaAccountDTO,
    MetaAdDTO,
    MetaAdSetDTO,
    MetaCampaignDTO,
    MetaInsightDTO,
)
from adsync.storage.base import Repository, SyncStats
from adsync.storage.sql import StorageSet

logger = get_logger("sync.orchestrator")

# sync-state scopes
ACCOUNTS_SCOPE = "accounts"
HIERARCHY_SCOPE = "hierarchy"
PERFORMANCE_SCOPE = "performance"


class Connector(Protocol):
    async def fetch_business_accounts(self) -> List[MetaAccountDTO]: ...

    async def fetch_account(self, account_id: str) -> MetaAccountDTO: ...

    async def fetch_campaigns(self, account_id: str) -> List[MetaCampaignDTO]: ...

    async def fetch_ad_sets(self, account_id: str) -> List[MetaAdSetDTO]: ...

    async def fetch_ads(self, account_id: str) -> List[MetaAdDTO]: ...

    async def fetch_insights(
        self, account_id: str, start_date: date, end_date: date
    ) -> List[MetaInsightDTO]: ...

    async def fetch_yesterday_insights(self, account_id: str) -> List[MetaInsightDTO]: ...

    def today(self) -> date: ...

    def yesterday(self) -> date: ...

    async def test_connectivity(self) -> bool: ...


@dataclass
class EntityCounts:
    inserted: int = 0
    updated: int = 0
    skipped: int = 0

    def to_dict(self) -> Dict[str, int]:
        return {"inserted": self.inserted, "updated": self.updated, "skipped": self.skipped}


@dataclass
class SyncReport:
    """Outcome of one orchestrator run. Returned, never raised."""

    operation: str
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    finished_at: Optional[datetime] = None
    accounts_total: int = 0
    accounts_synced: int = 0
    counts: Dict[str, EntityCounts] = field(
        default_factory=lambda: defaultdict(EntityCounts)
    )
    failures: List[SyncFailure] = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return not self.failures

    def record_failure(self, failure: SyncFailure) -> None:
        self.failures.append(failure)
        logger.error(
            f"{self.operation}: {failure.scope} failed ({failure.kind.value}): {failure.message}",
            extra={"account_id": failure.account_id, "failure_kind": failure.kind.value},
        )

    def merge(self, other: "SyncReport") -> None:
        for name, counts in other.counts.items():
            mine = self.counts[name]
            mine.inserted += counts.inserted
            mine.updated += counts.updated
            mine.skipped += counts.skipped
        self.failures.extend(other.failures)
        self.accounts_total = max(self.accounts_total, other.accounts_total)

    def finish(self) -> "SyncReport":
        self.finished_at = datetime.now(timezone.utc)
        return self

    def to_dict(self) -> Dict[str, Any]:
        return {
            "operation": self.operation,
            "succeeded": self.succeeded,
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "accounts_total": self.accounts_total,
            "accounts_synced": self.accounts_synced,
            "counts": {name: c.to_dict() for name, c in self.counts.items()},
            "failures": [f.to_dict() for f in self.failures],
        }


class SyncStatus(BaseModel):
    is_connected: bool
    account_count: Optional[int] = None
    campaign_count: Optional[int] = None
    ad_set_count: Optional[int] = None
    ad_count: Optional[int] = None
    reporting_count: Optional[int] = None
    sync_stats: Optional[SyncStats] = None


class SyncOrchestrator:
    """Drive hierarchy and performance syncs against a connector and storage."""

    def __init__(self, connector: Connector, storage: StorageSet):
        self.connector = connector
        self.storage = storage
        self._run_lock = asyncio.Lock()

    @property
    def is_running(self) -> bool:
        return self._run_lock.locked()

    # ── Upsert rule ──

    @staticmethod
    def _upsert(repo: Repository, entity: Any, counts: EntityCounts) -> None:
        if repo.exists_by_id(entity.id):
            repo.update(entity)
            counts.updated += 1
        else:
            repo.insert(entity)
            counts.inserted += 1

    # ── Sync-state ledger ──

    def _mark_success(self, scope: str, account_id: str) -> None:
        try:
            self.storage.sync_state.mark_success(
                scope, account_id, datetime.now(timezone.utc)
            )
        except Exception as e:
            logger.error(f"Could not record sync success for {scope}:{account_id}: {e}")

    def _record_failure(
        self,
        report: SyncReport,
        scope: str,
        account_id: str,
        exc: Exception,
        label: Optional[str] = None,
    ) -> None:
        failure = SyncFailure.from_exception(
            label or f"{scope} {account_id}", exc, account_id or None
        )
        report.record_failure(failure)
        try:
            self.storage.sync_state.mark_failed(
                scope, account_id, failure.kind.value, failure.message, failure.occurred_at
            )
        except Exception as e:
            logger.error(f"Could not record sync failure for {scope}:{account_id}: {e}")

    # ── Accounts ──

    async def _fetch_accounts(self, report: SyncReport) -> Optional[List[MetaAccountDTO]]:
        try:
            accounts = await self.connector.fetch_business_accounts()
        except Exception as e:
            self._record_failure(report, ACCOUNTS_SCOPE, "", e, label=ACCOUNTS_SCOPE)
            return None
        self._mark_success(ACCOUNTS_SCOPE, "")
        report.accounts_total = len(accounts)
        logger.info(f"📋 {len(accounts)} accounts to sync")
        return accounts

    # ── Hierarchy ──

    async def _sync_account_tree(self, dto: MetaAccountDTO, report: SyncReport) -> None:
        account_id = transformer.account_key(dto.id)
        try:
            await self._walk_account(dto, report)
        except Exception as e:
            self._record_failure(report, HIERARCHY_SCOPE, account_id, e, f"account {account_id}")
            return
        self._mark_success(HIERARCHY_SCOPE, account_id)
        report.accounts_synced += 1

    async def _walk_account(self, dto: MetaAccountDTO, report: SyncReport) -> None:
        counts = report.counts
        # MalformedRecord here fails the whole account: nothing below it can be written
        account = transformer.transform_account(dto)
        self._upsert(self.storage.accounts, account, counts["account"])

        # Campaigns
        campaign_dtos = await self.connector.fetch_campaigns(account.id)
        if not campaign_dtos:
            logger.info("No campaigns", extra={"account_id": account.id})
            return
        campaigns = transformer.transform_campaigns(campaign_dtos)
        counts["campaign"].skipped += len(campaign_dtos) - len(campaigns)
        synced_campaigns: List[str] = []
        for campaign in campaigns:
            if campaign.account_id != account.id:
                counts["campaign"].skipped += 1
                continue
            self._upsert(self.storage.campaigns, campaign, counts["campaign"])
            synced_campaigns.append(campaign.id)
        if not synced_campaigns:
            return

        # Ad sets, campaign by campaign
        ad_set_dtos = await self.connector.fetch_ad_sets(account.id)
        ad_sets = transformer.transform_ad_sets(ad_set_dtos)
        counts["adset"].skipped += len(ad_set_dtos) - len(ad_sets)
        synced_ad_sets = self._upsert_children(
            ad_sets, "campaign_id", synced_campaigns, self.storage.ad_sets, counts["adset"]
        )
        if not synced_ad_sets:
            return

        # Ads, ad set by ad set
        ad_dtos = await self.connector.fetch_ads(account.id)
        ads = transformer.transform_ads(ad_dtos)
        counts["ad"].skipped += len(ad_dtos) - len(ads)
        self._upsert_children(
            ads, "adset_id", synced_ad_sets, self.storage.ads, counts["ad"]
        )

        logger.info(
            f"✅ Account synced: {len(synced_campaigns)} campaigns, "
            f"{len(synced_ad_sets)} ad sets",
            extra={"account_id": account.id},
        )

    def _upsert_children(
        self,
        children: Sequence[Any],
        parent_field: str,
        parent_ids: List[str],
        repo: Repository,
        counts: EntityCounts,
    ) -> List[str]:
        """Upsert children grouped under already-synced parents, in parent order.

        Children whose parent was not synced in this walk are skipped.
        """
        by_parent: Dict[str, List[Any]] = defaultdict(list)
        for child in children:
            by_parent[getattr(child, parent_field)].append(child)

        synced: List[str] = []
        for parent_id in parent_ids:
            for child in by_parent.pop(parent_id, []):
                self._upsert(repo, child, counts)
                synced.append(child.id)

        orphans = sum(len(rest) for rest in by_parent.values())
        if orphans:
            counts.skipped += orphans
            logger.warning(f"Skipped {orphans} records whose parent was not synced")
        return synced

    async def _sync_hierarchy(
        self, report: SyncReport, accounts: List[MetaAccountDTO]
    ) -> None:
        # outbound concurrency is bounded by the client's permit pool
        await asyncio.gather(*(self._sync_account_tree(a, report) for a in accounts))

    async def sync_account_hierarchy(self) -> SyncReport:
        """Sync every account's campaigns, ad sets and ads."""
        async with self._run_lock:
            report = SyncReport("account_hierarchy")
            logger.info("🏗️ Starting account hierarchy sync")
            accounts = await self._fetch_accounts(report)
            if accounts is not None:
                await self._sync_hierarchy(report, accounts)
            self._log_finished(report)
            return report.finish()

    async def sync_account(self, account_id: str) -> SyncReport:
        """Full hierarchy sync for one account, active or not."""
        key = transformer.account_key(account_id) or account_id
        async with self._run_lock:
            report = SyncReport(f"account {key}", accounts_total=1)
            logger.info(f"🔄 Forcing full sync for account {key}")
            try:
                dto = await self.connector.fetch_account(key)
            except Exception as e:
                self._record_failure(report, HIERARCHY_SCOPE, key, e, f"account {key}")
            else:
                await self._sync_account_tree(dto, report)
            self._log_finished(report)
            return report.finish()

    # ── Performance ──

    async def _sync_account_insights(
        self, dto: MetaAccountDTO, day: date, report: SyncReport
    ) -> None:
        account_id = transformer.account_key(dto.id)
        try:
            insight_dtos = await self.connector.fetch_insights(account_id, day, day)
            if insight_dtos:
                records = transformer.transform_insights_list(insight_dtos)
                report.counts["insight"].skipped += len(insight_dtos) - len(records)
                if records:
                    written = self.storage.insights.batch_insert(records)
                    report.counts["insight"].inserted += written
            logger.info(
                f"📊 {len(insight_dtos)} insight rows for {day}",
                extra={"account_id": account_id},
            )
        except Exception as e:
            self._record_failure(
                report, PERFORMANCE_SCOPE, account_id, e, f"insights {account_id} {day}"
            )
            return
        self._mark_success(PERFORMANCE_SCOPE, account_id)
        report.accounts_synced += 1

    async def _sync_performance(
        self, report: SyncReport, accounts: List[MetaAccountDTO], day: date
    ) -> None:
        await asyncio.gather(
            *(self._sync_account_insights(a, day, report) for a in accounts)
        )

    async def _performance_run(self, resolve_day: Callable[[], date]) -> SyncReport:
        async with self._run_lock:
            # resolved under the lock so a run queued past midnight picks the right day
            day = resolve_day()
            report = SyncReport(f"performance {day.isoformat()}")
            accounts = await self._fetch_accounts(report)
            if accounts is not None:
                await self._sync_performance(report, accounts, day)
            self._log_finished(report)
            return report.finish()

    async def sync_performance_data_for_date(self, day: date) -> SyncReport:
        return await self._performance_run(lambda: day)

    async def sync_yesterday_performance_data(self) -> SyncReport:
        """Fetch and upsert yesterday's insights for every account."""
        return await self._performance_run(self.connector.yesterday)

    async def sync_today_performance_data(self) -> SyncReport:
        """Today's insights so far; Meta keeps revising them until the day closes."""
        return await self._performance_run(self.connector.today)

    # ── Full ──

    async def perform_full_sync(self) -> SyncReport:
        """Hierarchy, then yesterday's performance, for one account list."""
        async with self._run_lock:
            report = SyncReport("full")
            logger.info("🚀 Starting full sync")
            accounts = await self._fetch_accounts(report)
            if accounts is not None:
                hierarchy = SyncReport("account_hierarchy", accounts_total=len(accounts))
                await self._sync_hierarchy(hierarchy, accounts)
                performance = SyncReport("performance", accounts_total=len(accounts))
                await self._sync_performance(
                    performance, accounts, self.connector.yesterday()
                )
                report.merge(hierarchy)
                report.merge(performance)
                report.accounts_synced = min(
                    hierarchy.accounts_synced, performance.accounts_synced
                )
            self._log_finished(report)
            return report.finish()

    # ── Status ──

    def _safe_count(self, repo: Repository, name: str) -> Optional[int]:
        try:
            return repo.count()
        except Exception as e:
            logger.error(f"Count failed for {name}: {e}")
            return None

    def _safe_stats(self) -> Optional[SyncStats]:
        try:
            return self.storage.sync_state.stats()
        except Exception as e:
            logger.error(f"Sync-state stats failed: {e}")
            return None

    async def sync_status(self) -> SyncStatus:
        """Row counts, sync-state roll-up and a connectivity check. Never raises."""
        try:
            connected = await self.connector.test_connectivity()
        except Exception as e:
            logger.error(f"Connectivity check failed: {e}")
            connected = False
        return SyncStatus(
            is_connected=connected,
            account_count=self._safe_count(self.storage.accounts, "accounts"),
            campaign_count=self._safe_count(self.storage.campaigns, "campaigns"),
            ad_set_count=self._safe_count(self.storage.ad_sets, "ad_sets"),
            ad_count=self._safe_count(self.storage.ads, "ads"),
            reporting_count=self._safe_count(self.storage.insights, "insights"),
            sync_stats=self._safe_stats(),
        )

    @staticmethod
    def _log_finished(report: SyncReport) -> None:
        if report.succeeded:
            logger.info(
                f"✅ {report.operation} completed: "
                f"{report.accounts_synced}/{report.accounts_total} accounts"
            )
        else:
            logger.warning(
                f"⚠️ {report.operation} completed with {len(report.failures)} failures: "
                f"{report.accounts_synced}/{report.accounts_total} accounts"
            )
