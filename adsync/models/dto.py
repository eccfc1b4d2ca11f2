"""ADSYNC — Graph API Response DTOs.

Raw fields are carried 1:1 from the API; all coercion happens in the
transformer. Unknown fields are ignored.
"""

from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel

# Graph returns numbers as strings for money / metrics, as ints for some enums.
RawNumber = Optional[Union[str, int, float]]


class _GraphDTO(BaseModel):
    model_config = {"extra": "ignore", "frozen": True}


class MetaAccountDTO(_GraphDTO):
    id: str
    account_id: Optional[str] = None
    name: Optional[str] = None
    currency: Optional[str] = None
    account_status: Optional[Union[int, str]] = None
    timezone_name: Optional[str] = None
    business: Optional[Dict[str, Any]] = None
    amount_spent: RawNumber = None
    balance: RawNumber = None
    spend_cap: RawNumber = None
    is_personal: Optional[Union[int, bool]] = None
    is_prepay_account: Optional[bool] = None
    is_tax_id_required: Optional[bool] = None
    is_direct_deals_enabled: Optional[bool] = None
    is_notifications_enabled: Optional[bool] = None
    has_page_authorized_adaccount: Optional[bool] = None


class MetaCampaignDTO(_GraphDTO):
    id: str
    account_id: Optional[str] = None
    name: Optional[str] = None
    status: Optional[str] = None
    effective_status: Optional[str] = None
    objective: Optional[str] = None
    buying_type: Optional[str] = None
    daily_budget: RawNumber = None
    lifetime_budget: RawNumber = None
    start_time: Optional[str] = None
    stop_time: Optional[str] = None
    created_time: Optional[str] = None
    updated_time: Optional[str] = None


class MetaAdSetDTO(_GraphDTO):
    id: str
    campaign_id: Optional[str] = None
    account_id: Optional[str] = None
    name: Optional[str] = None
    status: Optional[str] = None
    effective_status: Optional[str] = None
    optimization_goal: Optional[str] = None
    billing_event: Optional[str] = None
    daily_budget: RawNumber = None
    lifetime_budget: RawNumber = None
    start_time: Optional[str] = None
    end_time: Optional[str] = None


class MetaAdDTO(_GraphDTO):
    id: str
    adset_id: Optional[str] = None
    campaign_id: Optional[str] = None
    account_id: Optional[str] = None
    name: Optional[str] = None
    status: Optional[str] = None
    effective_status: Optional[str] = None
    creative: Optional[Dict[str, Any]] = None


class MetaInsightDTO(_GraphDTO):
    account_id: Optional[str] = None
    campaign_id: Optional[str] = None
    adset_id: Optional[str] = None
    ad_id: Optional[str] = None
    date_start: Optional[str] = None
    date_stop: Optional[str] = None
    account_currency: Optional[str] = None
    spend: RawNumber = None
    impressions: RawNumber = None
    clicks: RawNumber = None
    unique_clicks: RawNumber = None
    reach: RawNumber = None
    frequency: RawNumber = None
    ctr: RawNumber = None
    cpc: RawNumber = None
    cpm: RawNumber = None
    cpp: RawNumber = None
    actions: Optional[List[Dict[str, Any]]] = None
    action_values: Optional[List[Dict[str, Any]]] = None
