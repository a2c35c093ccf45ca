"""Job-Registry: Zeitgesteuerte Patch-Jobs pro verwaltetem Objekt.

Hält pro ResourceKey eine Zuordnung Patch-Name → Job-Handle und besitzt
den APScheduler (BackgroundScheduler), der die Callbacks zu Cron-Zeiten
auslöst. Alle Operationen laufen unter einem gemeinsamen Lock; die
Callbacks selbst laufen im Thread-Pool des Schedulers, also außerhalb
dieses Locks. Ein Callback bekommt nur ``(resource_key, patch_name)``
und muss den aktuellen Zustand selbst neu laden.
"""

from __future__ import annotations

import contextlib
import threading
from collections.abc import Callable
from typing import Any

from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.background import BackgroundScheduler

from cronpatch.config import SchedulerConfig
from cronpatch.cron.expression import parse_schedule, resolve_timezone
from cronpatch.models import ResourceKey, validate_patch_name
from cronpatch.utils.logging import get_logger

log = get_logger(__name__)

# Opaque ID des Jobs im Scheduler
JobHandle = str

# Signatur eines ausgelösten Jobs
JobCallback = Callable[[ResourceKey, str], Any]


class JobRegistry:
    """Thread-sichere Registry der Cron-Jobs aller verwalteten Objekte.

    Usage:
        registry = JobRegistry()
        registry.start()
        registry.add(key, "weekday", "0 0 * * mon-fri", controller.run_scheduled,
                     timezone="Asia/Tokyo")
        registry.list(key)   # {"weekday": "<handle>"}
        registry.clear(key)
        registry.stop()
    """

    def __init__(
        self,
        config: SchedulerConfig | None = None,
        scheduler: BackgroundScheduler | None = None,
    ) -> None:
        self._config = config or SchedulerConfig()
        if scheduler is None:
            scheduler = BackgroundScheduler(
                timezone=resolve_timezone(self._config.timezone),
                job_defaults={
                    "coalesce": self._config.coalesce,
                    "misfire_grace_time": self._config.misfire_grace_seconds,
                },
            )
        self._scheduler = scheduler
        self._entries: dict[ResourceKey, dict[str, JobHandle]] = {}
        self._lock = threading.Lock()

    # ========================================================================
    # Lifecycle
    # ========================================================================

    @property
    def running(self) -> bool:
        return bool(self._scheduler.running)

    def start(self) -> None:
        """Startet die Scheduler-Uhr. Mehrfacher Aufruf ist harmlos."""
        with self._lock:
            if self._scheduler.running:
                return
            self._scheduler.start()
            # Jobs, die während eines Stopps entfernt wurden, sind im Jobstore geblieben
            known = {handle for entry in self._entries.values() for handle in entry.values()}
            for job in self._scheduler.get_jobs():
                if job.id not in known:
                    self._unschedule(job.id)
            log.info("job_registry_started", resources=len(self._entries))

    def stop(self) -> None:
        """Stoppt die Scheduler-Uhr.

        Laufende Callbacks dürfen zu Ende laufen, neue werden nicht mehr
        ausgelöst. Auch vor ``start()`` sicher aufrufbar.
        """
        with self._lock:
            if not self._scheduler.running:
                return
            self._scheduler.shutdown(wait=False)
            log.info("job_registry_stopped")

    # ========================================================================
    # Jobs
    # ========================================================================

    def add(
        self,
        key: ResourceKey,
        patch_name: str,
        schedule: str,
        callback: JobCallback,
        timezone: str = "",
    ) -> JobHandle:
        """Registriert einen Cron-Job für ``(key, patch_name)``.

        Ein vorhandener Job für denselben Slot wird zuerst entfernt.

        Raises:
            ValueError: Bei ungültigem Patch-Namen.
            InvalidScheduleError: Bei ungültigem Ausdruck oder Zeitzone.
                Die Einträge des Objekts bleiben in beiden Fällen unverändert.
        """
        # Patch-Namen enthalten kein ":", die Job-ID bleibt damit eindeutig
        validate_patch_name(patch_name)
        trigger = parse_schedule(schedule, timezone)

        with self._lock:
            entry = self._entries.get(key, {})
            old_handle = entry.get(patch_name)
            if old_handle is not None:
                self._unschedule(old_handle)

            job = self._scheduler.add_job(
                callback,
                trigger=trigger,
                args=[key, patch_name],
                id=f"{key}:{patch_name}",
                name=f"{key}:{patch_name}",
                replace_existing=True,
            )
            entry[patch_name] = job.id
            self._entries[key] = entry

        log.info("job_added", resource=str(key), patch=patch_name, schedule=schedule, timezone=timezone)
        return job.id

    def remove(self, key: ResourceKey, patch_name: str) -> None:
        """Entfernt den Job für ``(key, patch_name)``. No-op wenn nicht vorhanden."""
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return
            handle = entry.pop(patch_name, None)
            if not entry:
                del self._entries[key]
            if handle is not None:
                self._unschedule(handle)
                log.info("job_removed", resource=str(key), patch=patch_name)

    def clear(self, key: ResourceKey) -> None:
        """Entfernt alle Jobs eines Objekts und den Eintrag selbst."""
        with self._lock:
            entry = self._entries.pop(key, None)
            if entry is None:
                return
            for handle in entry.values():
                self._unschedule(handle)
        log.info("jobs_cleared", resource=str(key), count=len(entry))

    def list(self, key: ResourceKey) -> dict[str, JobHandle]:
        """Snapshot Patch-Name → Handle. Leeres Dict für unbekannte Objekte."""
        with self._lock:
            return dict(self._entries.get(key, {}))

    def resources(self) -> list[ResourceKey]:
        """Alle Objekte mit mindestens einem Eintrag."""
        with self._lock:
            return list(self._entries)

    def _unschedule(self, handle: JobHandle) -> None:
        # Nach stop() kann der Scheduler den Job bereits verworfen haben
        with contextlib.suppress(JobLookupError):
            self._scheduler.remove_job(handle)
