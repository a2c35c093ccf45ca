"""
cronpatch · Shared Test-Fixtures.

In-Memory-Fakes für Speicher und Event-Recorder, eine stellbare Uhr
und eine Job-Registry, deren Scheduler nie gestartet wird (Jobs bleiben
pending, feuern also nicht von selbst).
"""

from __future__ import annotations

from datetime import datetime, timedelta

import pytest
from apscheduler.schedulers.background import BackgroundScheduler

from cronpatch.config import CronPatchConfig
from cronpatch.controller import Controller
from cronpatch.cron.registry import JobRegistry
from cronpatch.errors import ResourceNotFoundError, StoreError
from cronpatch.models import (
    CronResource,
    EventReason,
    ResourceKey,
    ScheduledPatch,
    Target,
    TargetMetadata,
    TargetTemplate,
)

TOKYO_ANCHOR = datetime.fromisoformat("2021-09-04T00:00:00+09:00")


class FakeClock:
    """Stellbare Uhr für deterministische Tests."""

    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now = self.now + timedelta(**kwargs)


class InMemoryStore:
    """ResourceStore-Fake; speichert Kopien wie ein echter Server."""

    def __init__(self) -> None:
        self.resources: dict[ResourceKey, CronResource] = {}
        self.targets: dict[ResourceKey, Target] = {}
        self.resource_updates = 0
        self.fail_writes: StoreError | None = None

    def put_resource(self, resource: CronResource) -> None:
        self.resources[resource.key] = resource.model_copy(deep=True)

    def get_resource(self, key: ResourceKey) -> CronResource:
        if key not in self.resources:
            raise ResourceNotFoundError(f"resource {key} not found")
        return self.resources[key].model_copy(deep=True)

    def update_resource(self, resource: CronResource) -> None:
        self.resource_updates += 1
        self.resources[resource.key] = resource.model_copy(deep=True)

    def get_target(self, key: ResourceKey) -> Target:
        if key not in self.targets:
            raise ResourceNotFoundError(f"target {key} not found")
        return self.targets[key].model_copy(deep=True)

    def create_target(self, target: Target) -> None:
        if self.fail_writes is not None:
            raise self.fail_writes
        self.targets[target.key] = target.model_copy(deep=True)

    def update_target(self, target: Target) -> None:
        if self.fail_writes is not None:
            raise self.fail_writes
        self.targets[target.key] = target.model_copy(deep=True)


class RecordingRecorder:
    """EventRecorder-Fake, merkt sich alle Events."""

    def __init__(self) -> None:
        self.events: list[tuple[ResourceKey, EventReason, str]] = []

    def record(self, key: ResourceKey, reason: EventReason, message: str) -> None:
        self.events.append((key, reason, message))

    def reasons(self) -> list[EventReason]:
        return [reason for _, reason, _ in self.events]


@pytest.fixture
def key() -> ResourceKey:
    return ResourceKey(namespace="default", name="web")


@pytest.fixture
def resource(key: ResourceKey) -> CronResource:
    """Objekt mit Werktags- und Wochenend-Patch (Asia/Tokyo, nur Oktober)."""
    return CronResource(
        namespace=key.namespace,
        name=key.name,
        template=TargetTemplate(
            metadata=TargetMetadata(labels={"app": "web"}),
            spec={
                "scaleTargetRef": {"kind": "Deployment", "name": "web"},
                "minReplicas": 1,
                "maxReplicas": 10,
            },
        ),
        scheduled_patches=[
            ScheduledPatch(
                name="weekday",
                schedule="0 0 * 10 mon-fri",
                timezone="Asia/Tokyo",
                patch={"minReplicas": 3, "maxReplicas": 15},
            ),
            ScheduledPatch(
                name="weekend",
                schedule="0 0 * 10 sat,sun",
                timezone="Asia/Tokyo",
                patch={"maxReplicas": 5},
            ),
        ],
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(TOKYO_ANCHOR)


@pytest.fixture
def scheduler() -> BackgroundScheduler:
    """Nie gestarteter Scheduler: Jobs bleiben pending."""
    return BackgroundScheduler(timezone="UTC")


@pytest.fixture
def registry(scheduler: BackgroundScheduler) -> JobRegistry:
    return JobRegistry(scheduler=scheduler)


@pytest.fixture
def store() -> InMemoryStore:
    return InMemoryStore()


@pytest.fixture
def recorder() -> RecordingRecorder:
    return RecordingRecorder()


@pytest.fixture
def config() -> CronPatchConfig:
    return CronPatchConfig()


@pytest.fixture
def controller(
    store: InMemoryStore,
    recorder: RecordingRecorder,
    registry: JobRegistry,
    config: CronPatchConfig,
    clock: FakeClock,
) -> Controller:
    return Controller(store, recorder, registry=registry, config=config, clock=clock)
