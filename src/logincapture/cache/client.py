"""Community cache client.

The capture engine only reports to the cache; storage and accounting live
on the server. Every call degrades to a no-op (``None`` / empty result) on
network or protocol errors, and consecutive failures push further calls
into an exponential backoff window (1s, 2s, 4s, ... capped at 30s).
"""

from __future__ import annotations

import logging
import time
from typing import Any

import httpx
from pydantic import BaseModel, ConfigDict, Field, ValidationError

logger = logging.getLogger(__name__)

_MAX_BACKOFF_SECONDS = 30.0


class CacheStats(BaseModel):
    """Local counters for this client's cache traffic."""

    contributions: int = 0
    lookups: int = 0
    hits: int = 0
    misses: int = 0
    errors: int = 0
    last_contribution: float | None = None


class ServerStats(BaseModel):
    """Totals reported by the cache server."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    total_entries: int = Field(default=0, alias="totalEntries")
    total_contributions: int = Field(default=0, alias="totalContributions")


class CommunityCache:
    """Thin httpx wrapper around the community cache API.

    Args:
        api_url: Base URL of the cache service.
        enabled: When False, ``contribute`` is a no-op.
        timeout: Per-request timeout in seconds.
        client: Optional pre-built ``httpx.Client`` (tests inject a mock transport).
    """

    def __init__(
        self,
        api_url: str,
        *,
        enabled: bool = True,
        timeout: float = 5.0,
        client: httpx.Client | None = None,
    ) -> None:
        self.api_url = api_url.rstrip("/")
        self.enabled = enabled
        self._client = client or httpx.Client(timeout=timeout, headers={"Accept": "application/json"})
        self._stats = CacheStats()
        self._consecutive_failures = 0
        self._backoff_until = 0.0

    @classmethod
    def from_settings(cls) -> CommunityCache:
        from logincapture.settings import get_settings

        s = get_settings().cache
        return cls(s.api_url, enabled=s.enabled, timeout=s.timeout_sec)

    # ------------------------------------------------------------------
    # Backoff
    # ------------------------------------------------------------------

    @property
    def backing_off(self) -> bool:
        return time.monotonic() < self._backoff_until

    def _record_success(self) -> None:
        self._consecutive_failures = 0
        self._backoff_until = 0.0

    def _record_failure(self) -> None:
        self._stats.errors += 1
        delay = min(1.0 * (2 ** self._consecutive_failures), _MAX_BACKOFF_SECONDS)
        self._consecutive_failures += 1
        self._backoff_until = time.monotonic() + delay
        logger.debug("Cache request failed; backing off for %.0fs", delay)

    # ------------------------------------------------------------------
    # API
    # ------------------------------------------------------------------

    def contribute(self, identity: str, observation: dict[str, Any]) -> bool:
        """Report one observation about *identity*. Returns True if accepted."""
        if not self.enabled or self.backing_off:
            return False
        username = identity.strip().lstrip("@").lower()
        if not username:
            return False
        try:
            response = self._client.post(
                f"{self.api_url}/contribute",
                json={"entries": [{"username": username, **observation}]},
            )
            response.raise_for_status()
        except httpx.HTTPError as exc:
            logger.warning("Cache contribution failed: %s", exc)
            self._record_failure()
            return False
        self._record_success()
        self._stats.contributions += 1
        self._stats.last_contribution = time.time()
        return True

    def lookup_user(self, username: str) -> dict[str, Any] | None:
        """Fetch the cached entry for one handle, or ``None``."""
        if self.backing_off:
            return None
        key = username.strip().lstrip("@").lower()
        self._stats.lookups += 1
        try:
            response = self._client.get(f"{self.api_url}/lookup", params={"users": key})
            if response.status_code == 429:
                self._record_failure()
                return None
            response.raise_for_status()
            data = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            logger.debug("Cache lookup failed for %s: %s", key, exc)
            self._record_failure()
            return None
        self._record_success()
        entry = (data.get("results") or {}).get(key) if isinstance(data, dict) else None
        if entry:
            self._stats.hits += 1
        else:
            self._stats.misses += 1
        return entry or None

    def get_stats(self) -> CacheStats:
        """Return a copy of the local counters."""
        return self._stats.model_copy()

    def fetch_server_stats(self) -> ServerStats | None:
        """Fetch server-wide totals, or ``None`` if unavailable."""
        if self.backing_off:
            return None
        try:
            response = self._client.get(f"{self.api_url}/stats")
            response.raise_for_status()
            stats = ServerStats.model_validate(response.json())
        except (httpx.HTTPError, ValidationError, ValueError) as exc:
            logger.debug("Cache stats unavailable: %s", exc)
            self._record_failure()
            return None
        self._record_success()
        return stats

    def close(self) -> None:
        self._client.close()
