"""ADSYNC — Sync Control Routes."""

from datetime import date

from fastapi import APIRouter, Depends, HTTPException, Request

from adsync.core.logging import get_logger
from adsync.services import SyncServices
from adsync.sync.orchestrator import SyncStatus

logger = get_logger("api.sync")

router = APIRouter(prefix="/sync", tags=["Sync"])


def get_services(request: Request) -> SyncServices:
    """Dependency: the services wired at startup."""
    services = getattr(request.app.state, "services", None)
    if services is None:
        raise HTTPException(status_code=503, detail="Sync services not initialised")
    return services


@router.post("/manual")
async def trigger_manual_sync(services: SyncServices = Depends(get_services)):
    """Hierarchy sync followed by yesterday's performance."""
    logger.info("Manual full sync triggered")
    report = await services.orchestrator.perform_full_sync()
    return {"status": "success" if report.succeeded else "partial", "report": report.to_dict()}


@router.post("/hierarchy")
async def trigger_hierarchy_sync(services: SyncServices = Depends(get_services)):
    report = await services.orchestrator.sync_account_hierarchy()
    return {"status": "success" if report.succeeded else "partial", "report": report.to_dict()}


@router.post("/performance/yesterday")
async def trigger_yesterday_performance_sync(
    services: SyncServices = Depends(get_services),
):
    report = await services.orchestrator.sync_yesterday_performance_data()
    return {"status": "success" if report.succeeded else "partial", "report": report.to_dict()}


@router.post("/performance")
async def trigger_today_performance_sync(
    services: SyncServices = Depends(get_services),
):
    """Sync today's insights so far."""
    report = await services.orchestrator.sync_today_performance_data()
    return {"status": "success" if report.succeeded else "partial", "report": report.to_dict()}


@router.post("/force/{account_id}")
async def force_account_sync(
    account_id: str, services: SyncServices = Depends(get_services)
):
    """Full hierarchy sync for one account, active or not."""
    logger.info(f"Forced sync triggered for account {account_id}")
    report = await services.orchestrator.sync_account(account_id)
    return {"status": "success" if report.succeeded else "partial", "report": report.to_dict()}


@router.post("/performance/date/{day}")
async def trigger_performance_sync_for_date(
    day: str, services: SyncServices = Depends(get_services)
):
    """Sync insights for one YYYY-MM-DD date."""
    try:
        parsed = date.fromisoformat(day)
    except ValueError:
        raise HTTPException(status_code=400, detail=f"Invalid date '{day}', expected YYYY-MM-DD")
    report = await services.orchestrator.sync_performance_data_for_date(parsed)
    return {"status": "success" if report.succeeded else "partial", "report": report.to_dict()}


@router.get("/status", response_model=SyncStatus)
async def get_sync_status(services: SyncServices = Depends(get_services)):
    return await services.orchestrator.sync_status()


@router.get("/connectivity")
async def get_connectivity(services: SyncServices = Depends(get_services)):
    connected = await services.connector.test_connectivity()
    return {"connected": connected}


@router.get("/client")
async def get_client_status(services: SyncServices = Depends(get_services)):
    """Auth status, free permits and request counters of the API client."""
    return services.client.status().to_dict()


@router.get("/token")
async def validate_token(services: SyncServices = Depends(get_services)):
    """Check the access token with Meta (counts against the hourly budget)."""
    status = await services.authenticator.validate(services.client)
    return {
        "status": status.to_dict(),
        "expires_at": services.authenticator.expires_at,
        "scopes": services.authenticator.scopes,
    }
