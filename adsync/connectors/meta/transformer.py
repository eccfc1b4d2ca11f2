"""ADSYNC — Meta DTO → Entity Transformer.

Pure functions: no network, no database. Textual numbers from the Graph API
are coerced here; a record that cannot be coerced raises MalformedRecord and
is dropped from its batch without failing the rest.
"""

from decimal import Decimal, InvalidOperation
from typing import Any, Callable, Dict, Iterable, List, Optional, TypeVar

from adsync.core.errors import MalformedRecord
from adsync.core.logging import get_logger
from adsync.models.dto import (
    MetaAccountDTO,
    MetaAdDTO,
    MetaAdSetDTO,
    MetaCampaignDTO,
    MetaInsightDTO,
)
from adsync.models.entities import (
    Account,
    AdSet,
    Advertisement,
    Campaign,
    InsightRecord,
)

logger = get_logger("meta.transformer")

S = TypeVar("S")
T = TypeVar("T")

# Meta repeats the same purchases under several action types; first match wins.
PURCHASE_ACTIONS = ("omni_purchase", "purchase", "offsite_conversion.fb_pixel_purchase")


# ── Coercion helpers ──


def _is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def to_decimal(
    value: Any, field_name: str, record_id: str = "", default: Optional[Decimal] = Decimal("0")
) -> Optional[Decimal]:
    """Coerce a Graph number (usually a string) into a Decimal."""
    if _is_blank(value):
        return default
    if isinstance(value, bool):
        raise MalformedRecord(f"{field_name}: boolean is not a number", record_id, field_name)
    try:
        result = Decimal(str(value).strip())
    except InvalidOperation:
        raise MalformedRecord(
            f"{field_name}: cannot parse {value!r} as a number", record_id, field_name
        ) from None
    if not result.is_finite():
        raise MalformedRecord(f"{field_name}: {value!r} is not finite", record_id, field_name)
    return result


def to_int(value: Any, field_name: str, record_id: str = "", default: int = 0) -> int:
    """Coerce a Graph count into an int. ``"12"`` and ``"12.0"`` are fine, ``"1.5"`` is not."""
    number = to_decimal(value, field_name, record_id, default=None)
    if number is None:
        return default
    if number != number.to_integral_value():
        raise MalformedRecord(
            f"{field_name}: {value!r} is not a whole number", record_id, field_name
        )
    return int(number)


def to_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes")
    return bool(value)


def account_key(value: Optional[str]) -> Optional[str]:
    """Account ids are stored in ``act_<n>`` form, whatever the API returned."""
    if _is_blank(value):
        return None
    return value if value.startswith("act_") else f"act_{value}"


def _action_total(items: Optional[List[Dict[str, Any]]], record_id: str, field_name: str) -> Decimal:
    by_type: Dict[str, Decimal] = {}
    for item in items or []:
        action_type = item.get("action_type")
        if action_type in PURCHASE_ACTIONS:
            value = to_decimal(item.get("value"), field_name, record_id)
            by_type[action_type] = by_type.get(action_type, Decimal("0")) + value
    for action_type in PURCHASE_ACTIONS:
        if action_type in by_type:
            return by_type[action_type]
    return Decimal("0")


# ── Single-record transforms ──


def transform_account(dto: MetaAccountDTO) -> Account:
    rid = dto.id
    return Account(
        id=account_key(dto.id),
        account_id=dto.account_id or dto.id.removeprefix("act_"),
        name=dto.name or "",
        currency=dto.currency or "USD",
        account_status="unknown" if dto.account_status is None else str(dto.account_status),
        timezone_name=dto.timezone_name,
        business_id=(dto.business or {}).get("id"),
        amount_spent=to_decimal(dto.amount_spent, "amount_spent", rid),
        balance=to_decimal(dto.balance, "balance", rid),
        spend_cap=to_decimal(dto.spend_cap, "spend_cap", rid, default=None),
        is_personal=to_bool(dto.is_personal),
        is_prepay_account=to_bool(dto.is_prepay_account),
        is_tax_id_required=to_bool(dto.is_tax_id_required),
        is_direct_deals_enabled=to_bool(dto.is_direct_deals_enabled),
        is_notifications_enabled=to_bool(dto.is_notifications_enabled),
        has_page_authorized_adaccount=to_bool(dto.has_page_authorized_adaccount),
    )


def transform_campaign(dto: MetaCampaignDTO) -> Campaign:
    rid = dto.id
    account_id = account_key(dto.account_id)
    if account_id is None:
        raise MalformedRecord("campaign has no account_id", rid, "account_id")
    return Campaign(
        id=dto.id,
        account_id=account_id,
        name=dto.name or "",
        status=dto.status or "unknown",
        effective_status=dto.effective_status,
        objective=dto.objective,
        buying_type=dto.buying_type,
        daily_budget=to_decimal(dto.daily_budget, "daily_budget", rid, default=None),
        lifetime_budget=to_decimal(dto.lifetime_budget, "lifetime_budget", rid, default=None),
        start_time=dto.start_time,
        stop_time=dto.stop_time,
        created_time=dto.created_time,
        updated_time=dto.updated_time,
    )


def transform_ad_set(dto: MetaAdSetDTO) -> AdSet:
    rid = dto.id
    if _is_blank(dto.campaign_id):
        raise MalformedRecord("ad set has no campaign_id", rid, "campaign_id")
    return AdSet(
        id=dto.id,
        campaign_id=dto.campaign_id,
        account_id=account_key(dto.account_id),
        name=dto.name or "",
        status=dto.status or "unknown",
        effective_status=dto.effective_status,
        optimization_goal=dto.optimization_goal,
        billing_event=dto.billing_event,
        daily_budget=to_decimal(dto.daily_budget, "daily_budget", rid, default=None),
        lifetime_budget=to_decimal(dto.lifetime_budget, "lifetime_budget", rid, default=None),
        start_time=dto.start_time,
        end_time=dto.end_time,
    )


def transform_ad(dto: MetaAdDTO) -> Advertisement:
    if _is_blank(dto.adset_id):
        raise MalformedRecord("ad has no adset_id", dto.id, "adset_id")
    creative_id = (dto.creative or {}).get("id")
    return Advertisement(
        id=dto.id,
        adset_id=dto.adset_id,
        campaign_id=dto.campaign_id,
        account_id=account_key(dto.account_id),
        name=dto.name or "",
        status=dto.status or "unknown",
        effective_status=dto.effective_status,
        creative_id=str(creative_id) if creative_id else "unknown",
    )


_LEVEL_ID_FIELD = {
    "ad": "ad_id",
    "adset": "adset_id",
    "campaign": "campaign_id",
    "account": "account_id",
}


def _insight_level(dto: MetaInsightDTO) -> str:
    """Most specific level the row carries an id for."""
    for level in ("ad", "adset", "campaign", "account"):
        if not _is_blank(getattr(dto, _LEVEL_ID_FIELD[level])):
            return level
    raise MalformedRecord("insight row carries no entity id", "", "entity_id")


def transform_insight(dto: MetaInsightDTO) -> InsightRecord:
    level = _insight_level(dto)
    entity_id = getattr(dto, _LEVEL_ID_FIELD[level])
    if level == "account":
        entity_id = account_key(entity_id)
    if _is_blank(dto.date_start):
        raise MalformedRecord("insight row has no date_start", entity_id, "date_start")
    account_id = account_key(dto.account_id)
    if account_id is None:
        raise MalformedRecord("insight row has no account_id", entity_id, "account_id")

    rid = f"{entity_id}@{dto.date_start}"
    return InsightRecord(
        entity_id=entity_id,
        date=dto.date_start,
        level=level,
        account_id=account_id,
        campaign_id=dto.campaign_id,
        adset_id=dto.adset_id,
        ad_id=dto.ad_id,
        date_stop=dto.date_stop,
        currency=dto.account_currency,
        spend=to_decimal(dto.spend, "spend", rid),
        impressions=to_int(dto.impressions, "impressions", rid),
        clicks=to_int(dto.clicks, "clicks", rid),
        unique_clicks=to_int(dto.unique_clicks, "unique_clicks", rid),
        reach=to_int(dto.reach, "reach", rid),
        frequency=to_decimal(dto.frequency, "frequency", rid),
        ctr=to_decimal(dto.ctr, "ctr", rid),
        cpc=to_decimal(dto.cpc, "cpc", rid),
        cpm=to_decimal(dto.cpm, "cpm", rid),
        cpp=to_decimal(dto.cpp, "cpp", rid),
        purchases=to_int(_action_total(dto.actions, rid, "actions"), "purchases", rid),
        purchase_value=_action_total(dto.action_values, rid, "action_values"),
    )


# ── Batch transforms ──


def _transform_each(
    dtos: Iterable[S], transform: Callable[[S], T], entity_type: str
) -> List[T]:
    """Apply ``transform`` per record, dropping (and logging) malformed ones."""
    results: List[T] = []
    for dto in dtos:
        try:
            results.append(transform(dto))
        except MalformedRecord as e:
            logger.warning(
                f"Skipping malformed {entity_type} record {e.record_id or '?'}: {e}",
                extra={"entity_type": entity_type, "failure_kind": "malformed"},
            )
    return results


def transform_accounts(dtos: Iterable[MetaAccountDTO]) -> List[Account]:
    return _transform_each(dtos, transform_account, "account")


def transform_campaigns(dtos: Iterable[MetaCampaignDTO]) -> List[Campaign]:
    return _transform_each(dtos, transform_campaign, "campaign")


def transform_ad_sets(dtos: Iterable[MetaAdSetDTO]) -> List[AdSet]:
    return _transform_each(dtos, transform_ad_set, "adset")


def transform_ads(dtos: Iterable[MetaAdDTO]) -> List[Advertisement]:
    return _transform_each(dtos, transform_ad, "ad")


def transform_insights_list(dtos: Iterable[MetaInsightDTO]) -> List[InsightRecord]:
    return _transform_each(dtos, transform_insight, "insight")
