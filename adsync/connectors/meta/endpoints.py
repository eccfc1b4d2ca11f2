"""ADSYNC — Meta API Endpoints.

One fetch per entity type. Every fetch follows paging cursors to the end and
returns a (possibly empty) list of DTOs; nothing here coerces values.
"""

import json
from datetime import date, datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional, Type, TypeVar

from pydantic import BaseModel, ValidationError

from adsync.config import Settings
from adsync.connectors.meta.client import ApiRequest, RateLimitedClient
from adsync.core.errors import PermanentRemoteError
from adsync.core.logging import get_logger
from adsync.models.dto import (
    MetaAccountDTO,
    MetaAdDTO,
    MetaAdSetDTO,
    MetaCampaignDTO,
    MetaInsightDTO,
)

logger = get_logger("meta.endpoints")

D = TypeVar("D", bound=BaseModel)

# Default fields requested from Meta
ACCOUNT_FIELDS = (
    "id,account_id,name,currency,account_status,timezone_name,business,"
    "amount_spent,balance,spend_cap,is_personal,is_prepay_account,"
    "is_tax_id_required,is_direct_deals_enabled,is_notifications_enabled,"
    "has_page_authorized_adaccount"
)
CAMPAIGN_FIELDS = (
    "id,account_id,name,status,effective_status,objective,buying_type,"
    "daily_budget,lifetime_budget,start_time,stop_time,created_time,updated_time"
)
ADSET_FIELDS = (
    "id,campaign_id,account_id,name,status,effective_status,optimization_goal,"
    "billing_event,daily_budget,lifetime_budget,start_time,end_time"
)
AD_FIELDS = "id,adset_id,campaign_id,account_id,name,status,effective_status,creative"
INSIGHT_FIELDS = (
    "account_id,campaign_id,adset_id,ad_id,account_currency,"
    "spend,impressions,clicks,unique_clicks,reach,frequency,"
    "ctr,cpc,cpm,cpp,actions,action_values"
)

ACTIVE_ACCOUNT_STATUSES = {"1", "ACTIVE"}


def account_node(account_id: str) -> str:
    """Graph node id for an ad account: ``123`` and ``act_123`` both → ``act_123``."""
    return account_id if account_id.startswith("act_") else f"act_{account_id}"


def _utc_today() -> date:
    return datetime.now(timezone.utc).date()


class MetaConnector:
    """Fetch Meta objects for the sync orchestrator."""

    def __init__(
        self,
        client: RateLimitedClient,
        settings: Settings,
        today: Callable[[], date] = _utc_today,
    ):
        self.client = client
        self.business_id = settings.meta_business_id
        self.page_limit = settings.page_limit
        self.max_pages = settings.max_pages
        self.insights_level = settings.insights_level
        self.active_accounts_only = settings.active_accounts_only
        self._today = today

    # ── Pagination ──

    async def _paginated_get(
        self, path: str, params: Optional[Dict[str, Any]] = None
    ) -> List[Dict[str, Any]]:
        """Fetch all pages of a paginated endpoint."""
        all_data: List[Dict[str, Any]] = []
        request = ApiRequest(path, params or {})

        for page in range(self.max_pages):
            result = await self.client.execute(request)
            data = result.get("data", [])
            if not isinstance(data, list):
                raise PermanentRemoteError(f"Unexpected 'data' payload from {path}")
            all_data.extend(data)

            next_url = (result.get("paging") or {}).get("next")
            if not next_url:
                break
            # the cursor URL already carries fields/limit/after
            request = ApiRequest(next_url)
        else:
            logger.warning(f"Stopped paging {path} after {self.max_pages} pages")

        logger.info(f"Fetched {len(all_data)} records from {path}")
        return all_data

    @staticmethod
    def _to_dtos(rows: List[Dict[str, Any]], dto: Type[D], path: str) -> List[D]:
        try:
            return [dto.model_validate(row) for row in rows]
        except ValidationError as e:
            raise PermanentRemoteError(f"Unexpected record shape from {path}: {e}") from e

    # ── Structure Endpoints ──

    async def fetch_business_accounts(self) -> List[MetaAccountDTO]:
        """Ad accounts owned by the configured business."""
        path = f"{self.business_id}/owned_ad_accounts"
        rows = await self._paginated_get(
            path, {"fields": ACCOUNT_FIELDS, "limit": self.page_limit}
        )
        accounts = self._to_dtos(rows, MetaAccountDTO, path)
        if self.active_accounts_only:
            active = [
                a for a in accounts if str(a.account_status) in ACTIVE_ACCOUNT_STATUSES
            ]
            logger.info(f"Fetched {len(active)} active accounts from {len(accounts)} total")
            return active
        return accounts

    async def fetch_account(self, account_id: str) -> MetaAccountDTO:
        """One ad account by id, whatever its status."""
        path = account_node(account_id)
        row = await self.client.execute(ApiRequest(path, {"fields": ACCOUNT_FIELDS}))
        return self._to_dtos([row], MetaAccountDTO, path)[0]

    async def fetch_campaigns(self, account_id: str) -> List[MetaCampaignDTO]:
        path = f"{account_node(account_id)}/campaigns"
        rows = await self._paginated_get(
            path, {"fields": CAMPAIGN_FIELDS, "limit": self.page_limit}
        )
        return self._to_dtos(rows, MetaCampaignDTO, path)

    async def fetch_ad_sets(self, account_id: str) -> List[MetaAdSetDTO]:
        path = f"{account_node(account_id)}/adsets"
        rows = await self._paginated_get(
            path, {"fields": ADSET_FIELDS, "limit": self.page_limit}
        )
        return self._to_dtos(rows, MetaAdSetDTO, path)

    async def fetch_ads(self, account_id: str) -> List[MetaAdDTO]:
        path = f"{account_node(account_id)}/ads"
        rows = await self._paginated_get(
            path, {"fields": AD_FIELDS, "limit": self.page_limit}
        )
        return self._to_dtos(rows, MetaAdDTO, path)

    # ── Insights ──

    async def fetch_insights(
        self, account_id: str, start_date: date, end_date: date
    ) -> List[MetaInsightDTO]:
        """Daily insights at the configured level for an inclusive date range."""
        path = f"{account_node(account_id)}/insights"
        params = {
            "fields": INSIGHT_FIELDS,
            "level": self.insights_level,
            "time_increment": "1",
            "time_range": json.dumps(
                {"since": start_date.isoformat(), "until": end_date.isoformat()}
            ),
            "limit": self.page_limit,
        }
        rows = await self._paginated_get(path, params)
        logger.info(
            f"Fetched {len(rows)} insight rows for {start_date}..{end_date}",
            extra={"account_id": account_id, "entity_type": "insight"},
        )
        return self._to_dtos(rows, MetaInsightDTO, path)

    def today(self) -> date:
        return self._today()

    def yesterday(self) -> date:
        return self._today() - timedelta(days=1)

    async def fetch_yesterday_insights(self, account_id: str) -> List[MetaInsightDTO]:
        day = self.yesterday()
        return await self.fetch_insights(account_id, day, day)

    # ── Health ──

    async def test_connectivity(self) -> bool:
        """Cheap one-row accounts call. Never raises."""
        try:
            await self.client.execute(
                ApiRequest(
                    f"{self.business_id}/owned_ad_accounts",
                    {"fields": "id", "limit": 1},
                )
            )
            return True
        except Exception as e:
            logger.error(f"Connectivity test failed: {e}")
            return False
