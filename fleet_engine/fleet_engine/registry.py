"""Lookup of configured instances by name, id or profile."""

from __future__ import annotations

from pathlib import Path

from fleet_engine.config import FleetSettings, InstanceConfig
from fleet_engine.errors import UnknownInstanceError, UnknownProfileError


class InstanceRegistry:
    """Immutable view over the instances declared in :class:`FleetSettings`."""

    def __init__(self, settings: FleetSettings) -> None:
        self._settings = settings
        self._by_name = {inst.name: inst for inst in settings.instances}
        self._by_id = {inst.id: inst for inst in settings.instances}

    def __iter__(self):  # type: ignore[no-untyped-def]
        return iter(self._settings.instances)

    def __len__(self) -> int:
        return len(self._by_name)

    @property
    def names(self) -> list[str]:
        return list(self._by_name)

    def get(self, key: str | int) -> InstanceConfig:
        """Resolve an instance by name, numeric id, or digit string."""
        if isinstance(key, int):
            inst = self._by_id.get(key)
        else:
            inst = self._by_name.get(key)
            if inst is None and key.isdigit():
                inst = self._by_id.get(int(key))
        if inst is None:
            raise UnknownInstanceError(key)
        return inst

    def data_path(self, inst: InstanceConfig) -> Path:
        return self._settings.instance_data_path(inst)

    @property
    def profiles(self) -> list[str]:
        seen: list[str] = []
        for inst in self._settings.instances:
            if inst.profile not in seen:
                seen.append(inst.profile)
        return seen

    def for_profile(self, profile: str) -> list[InstanceConfig]:
        """Instances serving *profile*, lowest id first."""
        members = sorted(
            (inst for inst in self._settings.instances if inst.profile == profile),
            key=lambda inst: inst.id,
        )
        if not members:
            raise UnknownProfileError(profile)
        return members
