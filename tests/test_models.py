"""Tests für die Datenmodelle."""

from __future__ import annotations

from datetime import UTC, datetime

import pytest
from pydantic import ValidationError

from cronpatch.models import (
    CronResource,
    ResolvedPatch,
    ResourceKey,
    ScheduledPatch,
    ensure_aware,
)


class TestResourceKey:
    def test_str(self) -> None:
        assert str(ResourceKey(namespace="ns", name="foo")) == "ns/foo"

    def test_parse(self) -> None:
        assert ResourceKey.parse("ns/foo") == ResourceKey(namespace="ns", name="foo")

    @pytest.mark.parametrize("value", ["foo", "/foo", "ns/", ""])
    def test_parse_invalid(self, value: str) -> None:
        with pytest.raises(ValueError, match="namespace/name"):
            ResourceKey.parse(value)

    def test_hashable(self) -> None:
        a = ResourceKey(namespace="ns", name="foo")
        b = ResourceKey(namespace="ns", name="foo")
        assert {a: 1}[b] == 1


class TestScheduledPatch:
    @pytest.mark.parametrize("name", ["weekday", "p1", "night-shift", "A", "a" * 16])
    def test_valid_names(self, name: str) -> None:
        assert ScheduledPatch(name=name, schedule="* * * * *").name == name

    @pytest.mark.parametrize("name", ["", "-lead", "trail-", "with space", "dots.x", "with:colon", "a" * 17])
    def test_invalid_names(self, name: str) -> None:
        with pytest.raises(ValidationError):
            ScheduledPatch(name=name, schedule="* * * * *")

    def test_frozen(self) -> None:
        patch = ScheduledPatch(name="p1", schedule="* * * * *")
        with pytest.raises(ValidationError):
            patch.name = "p2"  # type: ignore[misc]


class TestCronResource:
    def test_duplicate_patch_names_rejected(self) -> None:
        with pytest.raises(ValidationError, match="Duplicate"):
            CronResource(
                namespace="ns",
                name="foo",
                scheduled_patches=[
                    ScheduledPatch(name="p1", schedule="* * * * *"),
                    ScheduledPatch(name="p1", schedule="0 0 * * *"),
                ],
            )

    def test_get_patch(self) -> None:
        resource = CronResource(
            namespace="ns",
            name="foo",
            scheduled_patches=[ScheduledPatch(name="p1", schedule="* * * * *")],
        )
        assert resource.get_patch("p1") is not None
        assert resource.get_patch("p2") is None
        assert resource.key == ResourceKey(namespace="ns", name="foo")
        assert resource.is_deleting is False


class TestHelpers:
    def test_ensure_aware_naive(self) -> None:
        assert ensure_aware(datetime(2021, 10, 1)).tzinfo is UTC

    def test_ensure_aware_keeps_tz(self) -> None:
        value = datetime.fromisoformat("2021-10-01T00:00:00+09:00")
        assert ensure_aware(value) is value

    def test_resolved_patch_inactive_by_default(self) -> None:
        assert ResolvedPatch().is_active is False
        assert ResolvedPatch(name="p1").is_active is True
