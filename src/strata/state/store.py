"""
State store.

Persists one StateRecord per created resource as a JSON document. Every
mutation is written through to disk atomically, so a crash mid-run never
loses the records of resources that were already created.
"""

from __future__ import annotations

import asyncio
import json
import os
from pathlib import Path
from typing import Mapping

import structlog

from strata.core.errors import ConfigError, ConfigErrorReason
from strata.state.diff import diff as diff_states
from strata.state.models import DesiredResource, PlanDiff, StateRecord

logger = structlog.get_logger()

DEFAULT_STATE_PATH = Path("strata.state.json")

STATE_VERSION = 1


class StateStore:
    """Owner of all StateRecords; the engine only goes through this interface."""

    def __init__(self, path: Path | None = None, records: Mapping[str, StateRecord] | None = None):
        self._path = path
        self._records: dict[str, StateRecord] = dict(records or {})
        self._locks: dict[str, asyncio.Lock] = {}

    @classmethod
    def open(cls, path: str | Path | None = None) -> "StateStore":
        """Load the store at ``path``; a missing file is an empty store."""
        state_path = Path(path) if path else DEFAULT_STATE_PATH
        if not state_path.exists():
            return cls(state_path)
        try:
            data = json.loads(state_path.read_text())
        except json.JSONDecodeError as exc:
            raise ConfigError(
                ConfigErrorReason.INVALID_FILE, f"State file {state_path} is not valid JSON: {exc}"
            ) from exc
        resources = data.get("resources", {})
        records = {
            resource_id: StateRecord.from_dict(resource_id, raw)
            for resource_id, raw in resources.items()
        }
        logger.debug("state_loaded", path=str(state_path), resources=len(records))
        return cls(state_path, records)

    @property
    def path(self) -> Path | None:
        return self._path

    def lock_for(self, resource_id: str) -> asyncio.Lock:
        return self._locks.setdefault(resource_id, asyncio.Lock())

    def get(self, resource_id: str) -> StateRecord | None:
        return self._records.get(resource_id)

    def records(self) -> dict[str, StateRecord]:
        return dict(self._records)

    def __contains__(self, resource_id: object) -> bool:
        return resource_id in self._records

    def __len__(self) -> int:
        return len(self._records)

    async def put(self, resource_id: str, record: StateRecord) -> None:
        async with self.lock_for(resource_id):
            self._records[resource_id] = record
            self._save()
        logger.debug("state_record_written", resource=resource_id, tainted=record.tainted)

    async def remove(self, resource_id: str) -> None:
        async with self.lock_for(resource_id):
            if self._records.pop(resource_id, None) is not None:
                self._save()
        logger.debug("state_record_removed", resource=resource_id)

    def diff(
        self,
        desired: Mapping[str, DesiredResource],
        current: Mapping[str, StateRecord] | None = None,
    ) -> PlanDiff:
        return diff_states(desired, self._records if current is None else current)

    def _save(self) -> None:
        if self._path is None:
            return
        payload = {
            "version": STATE_VERSION,
            "resources": {rid: rec.to_dict() for rid, rec in sorted(self._records.items())},
        }
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self._path.with_name(self._path.name + ".tmp")
        tmp_path.write_text(json.dumps(payload, indent=2, sort_keys=True, default=str) + "\n")
        os.replace(tmp_path, self._path)
