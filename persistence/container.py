"""
Composition root.

Builds exactly one engine, event bus and orchestrator and hands them to
each other by reference. Callers that change records go through the table
services on the container, which publish the domain events the
orchestrator cascades. Django keeps the instance on the app config; views
and commands reach it through :func:`get_container`.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Optional

from django.apps import apps

from .conf import StoreSettings, store_settings
from .realtime.consumers import broadcast_sync_complete
from .services.engine import StorageEngine
from .services.events import EventBus
from .services.keys import KeyMap
from .services.kvstore import CacheKeyValueStore
from .services.records import EstimateService, InpatientService, PatientService
from .services.scheduling import AsyncioScheduler
from .services.sync import SyncOrchestrator

logger = logging.getLogger(__name__)


@dataclass
class StoreContainer:
    engine: StorageEngine
    bus: EventBus
    orchestrator: SyncOrchestrator
    scheduler: AsyncioScheduler
    patients: PatientService
    estimates: EstimateService
    inpatients: InpatientService

    async def start(self) -> None:
        """Bind timers to the running loop and start the periodic backup."""
        self.scheduler.bind(asyncio.get_running_loop())
        self.engine.start_auto_backup()
        logger.info("local store started (available=%s)", self.engine.available)

    def close(self) -> None:
        self.orchestrator.close()
        self.engine.close()
        self.scheduler.cancel_all()


def build_container(settings: Optional[StoreSettings] = None, *, broadcast: bool = True) -> StoreContainer:
    settings = settings or store_settings()
    keys = KeyMap(settings.key_prefix)
    store = CacheKeyValueStore.from_alias(settings.cache_alias, namespace=keys.namespace(), quota_bytes=settings.quota_bytes)
    scheduler = AsyncioScheduler()
    engine = StorageEngine(store, keys=keys, settings=settings, scheduler=scheduler, auto_backup=False)
    bus = EventBus()
    orchestrator = SyncOrchestrator(
        engine,
        bus,
        scheduler=scheduler,
        broadcaster=broadcast_sync_complete if broadcast else None,
        debounce_seconds=settings.sync_debounce_seconds,
    )
    orchestrator.attach()
    return StoreContainer(
        engine=engine,
        bus=bus,
        orchestrator=orchestrator,
        scheduler=scheduler,
        patients=PatientService(engine, bus),
        estimates=EstimateService(engine, bus),
        inpatients=InpatientService(engine, bus),
    )


def get_container() -> StoreContainer:
    return apps.get_app_config("persistence").container
