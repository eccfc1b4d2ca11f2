"""ADSYNC — Explicit Service Wiring.

Authenticator → client → connector → repositories → orchestrator → scheduler,
built once from an immutable Settings value.
"""

from dataclasses import dataclass
from typing import Optional

import httpx
from sqlalchemy.engine import Engine

from adsync.config import Settings
from adsync.connectors.meta.auth import MetaAuthenticator
from adsync.connectors.meta.client import RateLimitedClient
from adsync.connectors.meta.endpoints import MetaConnector
from adsync.core.logging import get_logger
from adsync.database import build_engine
from adsync.scheduler.jobs import SyncScheduler
from adsync.storage.sql import StorageSet
from adsync.sync.orchestrator import SyncOrchestrator

logger = get_logger("services")


@dataclass
class SyncServices:
    settings: Settings
    engine: Engine
    authenticator: MetaAuthenticator
    client: RateLimitedClient
    connector: MetaConnector
    storage: StorageSet
    orchestrator: SyncOrchestrator
    scheduler: SyncScheduler

    async def close(self) -> None:
        self.scheduler.stop()
        await self.client.close()
        self.engine.dispose()


def build_services(
    settings: Settings,
    engine: Optional[Engine] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> SyncServices:
    """Wire every component. Raises ConfigurationError on missing credentials."""
    settings.require_credentials()

    engine = engine or build_engine(settings.effective_database_url)
    authenticator = MetaAuthenticator.from_settings(settings)
    client = RateLimitedClient(authenticator, settings, transport=transport)
    connector = MetaConnector(client, settings)
    storage = StorageSet.from_engine(engine)
    orchestrator = SyncOrchestrator(connector, storage)
    scheduler = SyncScheduler(orchestrator, settings)

    logger.info(
        f"Services ready for business {settings.meta_business_id} "
        f"(API {settings.meta_api_version}, "
        f"{settings.rate_limit.requests_per_hour} req/h, "
        f"{settings.max_concurrent_requests} permits)"
    )
    return SyncServices(
        settings=settings,
        engine=engine,
        authenticator=authenticator,
        client=client,
        connector=connector,
        storage=storage,
        orchestrator=orchestrator,
        scheduler=scheduler,
    )
