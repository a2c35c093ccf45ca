"""cronpatch cron module -- Job-Registry und Patch-Resolver."""

from cronpatch.cron.registry import JobHandle, JobRegistry
from cronpatch.cron.resolver import resolve

__all__ = ["JobHandle", "JobRegistry", "resolve"]
