"""Policy record storage.

The renewal workflow depends only on the ``PolicyRecordStore`` protocol.
Two implementations ship with the service:

  - ``JsonPolicyStore``: one JSON document per policy in a single state file
    (data/state/policies.json), written atomically through a temp file.
  - ``InMemoryPolicyStore``: same semantics, no disk, for tests and demos.

``save`` performs an optimistic version check so two writers that loaded the
same revision of a policy cannot silently overwrite each other.
"""
from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Collection, Sequence
from datetime import date
from pathlib import Path
from threading import Lock
from typing import Any, Protocol

from app.config import settings
from app.models.policy import Policy, PolicyStatus

logger = logging.getLogger(__name__)


class ConcurrentUpdateError(Exception):
    """Raised when a policy was modified by someone else since it was loaded."""


class PolicyStoreError(Exception):
    """Raised when the backing state file exists but cannot be read."""


class PolicyRecordStore(Protocol):
    async def find_by_date_range(
        self,
        field_candidates: Sequence[str],
        start: date,
        end: date,
        statuses: Collection[PolicyStatus] | None = None,
        *,
        end_inclusive: bool = True,
    ) -> list[Policy]: ...

    async def find_by_id(self, policy_id: str) -> Policy | None: ...

    async def save(self, policy: Policy) -> Policy: ...

    async def list_all(self) -> list[Policy]: ...


def _field_value(doc: dict[str, Any], field_name: str) -> date | None:
    raw = (doc.get("policy_details") or {}).get(field_name)
    if not raw:
        return None
    try:
        return date.fromisoformat(str(raw)[:10])
    except ValueError:
        logger.warning("Ignoring malformed %s on policy %s: %r", field_name, doc.get("id"), raw)
        return None


class _DocumentPolicyStore:
    """Shared query logic over a ``{policy_id: document}`` mapping."""

    def __init__(self) -> None:
        self._lock = Lock()

    def _read(self) -> dict[str, dict[str, Any]]:
        raise NotImplementedError

    def _write(self, data: dict[str, dict[str, Any]]) -> None:
        raise NotImplementedError

    def _query(
        self,
        field_candidates: Sequence[str],
        start: date,
        end: date,
        statuses: Collection[PolicyStatus] | None,
        end_inclusive: bool,
    ) -> list[Policy]:
        allowed = {PolicyStatus(s).value for s in statuses} if statuses is not None else None
        with self._lock:
            docs = list(self._read().values())

        matches: list[tuple[tuple[date, ...], Policy]] = []
        for doc in docs:
            if allowed is not None and doc.get("status") not in allowed:
                continue
            values = [_field_value(doc, name) for name in field_candidates]
            in_range = any(
                v is not None and start <= v and (v <= end if end_inclusive else v < end)
                for v in values
            )
            if in_range:
                sort_key = tuple(v or date.max for v in values)
                matches.append((sort_key, Policy.model_validate(doc)))

        matches.sort(key=lambda m: m[0])
        return [policy for _, policy in matches]

    def _get(self, policy_id: str) -> Policy | None:
        with self._lock:
            doc = self._read().get(policy_id)
        return Policy.model_validate(doc) if doc is not None else None

    def _put(self, policy: Policy) -> Policy:
        with self._lock:
            data = self._read()
            existing = data.get(policy.id)
            if existing is not None and existing.get("version", 0) != policy.version:
                raise ConcurrentUpdateError(
                    f"Policy {policy.id} changed since it was loaded "
                    f"(stored version {existing.get('version', 0)}, got {policy.version})"
                )
            policy.version += 1
            data[policy.id] = policy.model_dump(mode="json")
            self._write(data)
        return policy

    def _all(self) -> list[Policy]:
        with self._lock:
            docs = list(self._read().values())
        return [Policy.model_validate(doc) for doc in docs]

    async def find_by_date_range(
        self,
        field_candidates: Sequence[str],
        start: date,
        end: date,
        statuses: Collection[PolicyStatus] | None = None,
        *,
        end_inclusive: bool = True,
    ) -> list[Policy]:
        return await asyncio.to_thread(
            self._query, field_candidates, start, end, statuses, end_inclusive
        )

    async def find_by_id(self, policy_id: str) -> Policy | None:
        return await asyncio.to_thread(self._get, policy_id)

    async def save(self, policy: Policy) -> Policy:
        return await asyncio.to_thread(self._put, policy)

    async def list_all(self) -> list[Policy]:
        return await asyncio.to_thread(self._all)


class JsonPolicyStore(_DocumentPolicyStore):
    def __init__(self, path: Path) -> None:
        super().__init__()
        self.path = path

    def _read(self) -> dict[str, dict[str, Any]]:
        if not self.path.exists():
            return {}
        try:
            with open(self.path, encoding="utf-8") as f:
                return json.load(f)
        except (json.JSONDecodeError, OSError) as e:
            # File stays untouched for manual repair
            logger.error("Cannot read policy store %s: %s", self.path, e)
            raise PolicyStoreError(f"Cannot read policy store {self.path}: {e}") from e

    def _write(self, data: dict[str, dict[str, Any]]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_suffix(".tmp")
        with open(tmp, "w", encoding="utf-8") as f:
            json.dump(data, f, ensure_ascii=False, indent=2, default=str)
        tmp.replace(self.path)


class InMemoryPolicyStore(_DocumentPolicyStore):
    def __init__(self, policies: Sequence[Policy] = ()) -> None:
        super().__init__()
        self._data: dict[str, dict[str, Any]] = {
            p.id: p.model_dump(mode="json") for p in policies
        }

    def _read(self) -> dict[str, dict[str, Any]]:
        return self._data

    def _write(self, data: dict[str, dict[str, Any]]) -> None:
        self._data = data


_store: PolicyRecordStore | None = None


def get_policy_store() -> PolicyRecordStore:
    """Return the process-wide store (lazy-init from settings)."""
    global _store
    if _store is None:
        _store = JsonPolicyStore(settings.POLICY_STORE_FILE)
        logger.info("Policy store initialized at %s", settings.POLICY_STORE_FILE)
    return _store
