"""ADSYNC — Persistent Entities.

Account → Campaign → AdSet → Advertisement, plus per-day InsightRecord rows.
Ids are the Meta object ids and never change once written.
"""

from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

from sqlmodel import SQLModel, Field, UniqueConstraint


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Account(SQLModel, table=True):
    __tablename__ = "accounts"

    id: str = Field(primary_key=True, description="act_<numeric id>")
    account_id: str = Field(default="", description="Numeric id without prefix")
    name: str = Field(default="")
    currency: str = Field(default="USD")
    account_status: str = Field(default="unknown")
    timezone_name: Optional[str] = None
    business_id: Optional[str] = Field(default=None, index=True)
    amount_spent: Decimal = Field(default=Decimal("0"), max_digits=18, decimal_places=4)
    balance: Decimal = Field(default=Decimal("0"), max_digits=18, decimal_places=4)
    spend_cap: Optional[Decimal] = Field(default=None, max_digits=18, decimal_places=4)
    is_personal: bool = False
    is_prepay_account: bool = False
    is_tax_id_required: bool = False
    is_direct_deals_enabled: bool = False
    is_notifications_enabled: bool = False
    has_page_authorized_adaccount: bool = False
    last_synced_at: datetime = Field(default_factory=_utcnow)


class Campaign(SQLModel, table=True):
    __tablename__ = "campaigns"

    id: str = Field(primary_key=True)
    account_id: str = Field(foreign_key="accounts.id", index=True)
    name: str = Field(default="")
    status: str = Field(default="unknown")
    effective_status: Optional[str] = None
    objective: Optional[str] = None
    buying_type: Optional[str] = None
    daily_budget: Optional[Decimal] = Field(default=None, max_digits=18, decimal_places=4)
    lifetime_budget: Optional[Decimal] = Field(default=None, max_digits=18, decimal_places=4)
    start_time: Optional[str] = None
    stop_time: Optional[str] = None
    created_time: Optional[str] = None
    updated_time: Optional[str] = None
    last_synced_at: datetime = Field(default_factory=_utcnow)


class AdSet(SQLModel, table=True):
    __tablename__ = "ad_sets"

    id: str = Field(primary_key=True)
    campaign_id: str = Field(foreign_key="campaigns.id", index=True)
    account_id: Optional[str] = Field(default=None, index=True)
    name: str = Field(default="")
    status: str = Field(default="unknown")
    effective_status: Optional[str] = None
    optimization_goal: Optional[str] = None
    billing_event: Optional[str] = None
    daily_budget: Optional[Decimal] = Field(default=None, max_digits=18, decimal_places=4)
    lifetime_budget: Optional[Decimal] = Field(default=None, max_digits=18, decimal_places=4)
    start_time: Optional[str] = None
    end_time: Optional[str] = None
    last_synced_at: datetime = Field(default_factory=_utcnow)


class Advertisement(SQLModel, table=True):
    __tablename__ = "advertisements"

    id: str = Field(primary_key=True)
    adset_id: str = Field(foreign_key="ad_sets.id", index=True)
    campaign_id: Optional[str] = Field(default=None, index=True)
    account_id: Optional[str] = Field(default=None, index=True)
    name: str = Field(default="")
    status: str = Field(default="unknown")
    effective_status: Optional[str] = None
    creative_id: str = Field(default="unknown")
    last_synced_at: datetime = Field(default_factory=_utcnow)


class InsightRecord(SQLModel, table=True):
    """Daily performance for one entity.

    Unique on (entity_id, date): re-syncing a day updates the row in place.
    """

    __tablename__ = "insight_records"
    __table_args__ = (
        UniqueConstraint("entity_id", "date", name="uq_insight_entity_date"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    entity_id: str = Field(index=True, description="Id at the reporting level")
    date: str = Field(index=True, description="YYYY-MM-DD")
    level: str = Field(default="ad", description="account | campaign | adset | ad")
    account_id: str = Field(index=True)
    campaign_id: Optional[str] = None
    adset_id: Optional[str] = None
    ad_id: Optional[str] = None
    date_stop: Optional[str] = None
    currency: Optional[str] = None
    spend: Decimal = Field(default=Decimal("0"), max_digits=18, decimal_places=4)
    impressions: int = 0
    clicks: int = 0
    unique_clicks: int = 0
    reach: int = 0
    purchases: int = 0
    frequency: Decimal = Field(default=Decimal("0"), max_digits=18, decimal_places=6)
    ctr: Decimal = Field(default=Decimal("0"), max_digits=18, decimal_places=6)
    cpc: Decimal = Field(default=Decimal("0"), max_digits=18, decimal_places=6)
    cpm: Decimal = Field(default=Decimal("0"), max_digits=18, decimal_places=6)
    cpp: Decimal = Field(default=Decimal("0"), max_digits=18, decimal_places=6)
    purchase_value: Decimal = Field(default=Decimal("0"), max_digits=18, decimal_places=4)
    updated_at: datetime = Field(default_factory=_utcnow)

    @property
    def key(self) -> tuple[str, str]:
        return (self.entity_id, self.date)


class SyncState(SQLModel, table=True):
    """Outcome of the most recent sync per (scope, account).

    ``scope`` is ``hierarchy``, ``performance`` or ``accounts`` (the listing
    itself, stored with an empty account_id).
    """

    __tablename__ = "sync_state"

    scope: str = Field(primary_key=True)
    account_id: str = Field(primary_key=True, default="")
    status: str = Field(default="SUCCESS", description="SUCCESS | FAILED")
    last_success_at: Optional[datetime] = None
    last_attempt_at: datetime = Field(default_factory=_utcnow)
    failure_kind: Optional[str] = None
    last_error: Optional[str] = None
