"""Read-through accessors for every dataset fetched from the OpenClaw CLIs.

Each dataset binds a :class:`CacheKey` to a command, a timeout, a TTL and a
parser. All of them live in one :class:`Datasets` container so handlers and
tests share a single explicitly constructed cache registry.
"""

from __future__ import annotations

import logging
import re
import time
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from typing import Any, Generic, Optional, TypeVar

from pydantic import TypeAdapter, ValidationError

from mission_control import config
from mission_control.cache import CacheRegistry, Clock
from mission_control.errors import CommandError, MalformedOutput, ParseFailed
from mission_control.models import (
    CacheKey,
    CostProvider,
    CronList,
    OpenClawStatus,
    ProviderTextSummary,
    SessionList,
)
from mission_control.runner import CommandResult, describe_command, extract_json, run_command

logger = logging.getLogger("mission_control.datasets")

T = TypeVar("T")
Runner = Callable[..., Awaitable[CommandResult]]

_COST_PROVIDERS_ADAPTER = TypeAdapter(list[CostProvider])

_PROVIDER_BLOCK_SPLIT = re.compile(r"\n(?=\w+ Cost )")
_PROVIDER_HEADER = re.compile(r"^(\w+)\s+Cost")
_TODAY_LINE = re.compile(r"Today:\s*\$([0-9.]+)\s*·\s*(.+)")
_TODAY_DASH_LINE = re.compile(r"Today:\s*—\s*·\s*(.+)")
_MONTH_LINE = re.compile(r"Last 30 days:\s*\$([0-9.]+)\s*·\s*(.+)")


def _to_float(raw: str) -> float:
    try:
        return float(raw)
    except ValueError:
        return 0.0


def parse_multi_provider_text(text: str) -> list[ProviderTextSummary]:
    """Parse the human-readable output of ``codexbar cost --provider all``.

    The output is a sequence of blocks headed ``<Provider> Cost``; within a
    block the ``Today: $<amount> · <tokens>`` and
    ``Last 30 days: $<amount> · <tokens>`` lines carry the figures. A
    ``Today: — · <tokens>`` line means no spend yet today.
    """
    providers: list[ProviderTextSummary] = []
    for block in _PROVIDER_BLOCK_SPLIT.split(text.strip()):
        header = _PROVIDER_HEADER.match(block.strip())
        if not header:
            continue

        summary = ProviderTextSummary(provider=header.group(1).lower())
        today = _TODAY_LINE.search(block)
        if today:
            summary.today = _to_float(today.group(1))
            summary.today_tokens = today.group(2).strip()
        else:
            today_dash = _TODAY_DASH_LINE.search(block)
            if today_dash:
                summary.today_tokens = today_dash.group(1).strip()

        month = _MONTH_LINE.search(block)
        if month:
            summary.month = _to_float(month.group(1))
            summary.month_tokens = month.group(2).strip()

        providers.append(summary)
    return providers


def _validate(command: str, adapter_or_model: Any, payload: Any) -> Any:
    try:
        if isinstance(adapter_or_model, TypeAdapter):
            return adapter_or_model.validate_python(payload)
        return adapter_or_model.model_validate(payload)
    except ValidationError as exc:
        raise ParseFailed(command, f"unexpected payload shape ({exc.error_count()} errors)") from exc


@dataclass(frozen=True)
class DatasetResult(Generic[T]):
    data: T
    error: Optional[str] = None
    stale: bool = False

    @property
    def ok(self) -> bool:
        return self.error is None


class Dataset(Generic[T]):
    """Accessor for one cache key with last-good-value degradation."""

    def __init__(self, registry: CacheRegistry, key: CacheKey, default: Callable[[], T]) -> None:
        self.key = key
        self._registry = registry
        self._default = default

    async def get(self) -> T:
        """Fresh-enough data, or the error from a failed refresh."""
        return await self._registry.read(self.key.value)

    async def get_or_default(self) -> DatasetResult[T]:
        """Never raises: falls back to the last good value, then to a default."""
        try:
            return DatasetResult(await self.get())
        except CommandError as exc:
            logger.warning("Refresh of %s failed: %s", self.key.value, exc)
            stale = self._registry.peek(self.key.value)
            if stale is None:
                return DatasetResult(self._default(), error=str(exc))
            return DatasetResult(stale, error=str(exc), stale=True)

    def invalidate(self) -> None:
        self._registry.invalidate(self.key.value)

    def read_stale_while_revalidate(self) -> Optional[T]:
        return self._registry.read_stale_while_revalidate(self.key.value)


class Datasets:
    """Every cached dataset the dashboard serves, sharing one registry."""

    def __init__(self, run: Runner = run_command, *, clock: Clock = time.monotonic) -> None:
        self._run = run
        self.registry = CacheRegistry(clock=clock)

        self.status: Dataset[OpenClawStatus] = self._register(
            CacheKey.RUNTIME_STATUS,
            self._fetch_status,
            config.STATUS_CACHE_TTL_SECONDS,
            OpenClawStatus,
        )
        self.cost_text: Dataset[list[ProviderTextSummary]] = self._register(
            CacheKey.COST_SUMMARY_TEXT,
            self._fetch_cost_text,
            config.COST_TEXT_TTL_SECONDS,
            list,
        )
        self.cost_json: Dataset[list[CostProvider]] = self._register(
            CacheKey.COST_SUMMARY_JSON,
            self._fetch_cost_json,
            config.COST_JSON_TTL_SECONDS,
            list,
        )
        self.cron: Dataset[CronList] = self._register(
            CacheKey.CRON_LIST,
            self._fetch_cron,
            config.CRON_CACHE_TTL_SECONDS,
            CronList,
        )
        self.sessions: Dataset[SessionList] = self._register(
            CacheKey.SESSIONS,
            self._fetch_sessions,
            config.SESSIONS_CACHE_TTL_SECONDS,
            SessionList,
        )

    def _register(
        self,
        key: CacheKey,
        fetch: Callable[[], Awaitable[T]],
        ttl_seconds: float,
        default: Callable[[], T],
    ) -> Dataset[T]:
        self.registry.register(key.value, fetch, ttl_seconds)
        return Dataset(self.registry, key, default)

    def all(self) -> list[Dataset[Any]]:
        return [self.status, self.cost_text, self.cost_json, self.cron, self.sessions]

    def warm(self) -> None:
        """Kick off background refreshes for every dataset (first paint)."""
        for dataset in self.all():
            dataset.read_stale_while_revalidate()

    async def _stdout(self, argv: Sequence[str], timeout_seconds: float, *, accept_partial_output: bool) -> str:
        result = await self._run(
            list(argv),
            timeout_seconds=timeout_seconds,
            accept_partial_output=accept_partial_output,
        )
        return result.stdout

    async def _fetch_object(self, argv: Sequence[str], timeout_seconds: float, model: Any) -> Any:
        """Run an openclaw JSON command whose payload must be an object."""
        label = describe_command(argv)
        stdout = await self._stdout(argv, timeout_seconds, accept_partial_output=False)
        payload = extract_json(stdout, label)
        if not isinstance(payload, dict):
            raise ParseFailed(label, f"expected an object, got {type(payload).__name__}")
        return _validate(label, model, payload)

    async def _fetch_status(self) -> OpenClawStatus:
        argv = [config.OPENCLAW_BIN, "status", "--json"]
        return await self._fetch_object(argv, config.STATUS_TIMEOUT_SECONDS, OpenClawStatus)

    async def _fetch_cost_text(self) -> list[ProviderTextSummary]:
        argv = [config.CODEXBAR_BIN, "cost", "--provider", "all"]
        label = describe_command(argv)
        # Some providers can fail while others still print a block.
        stdout = await self._stdout(argv, config.COST_TEXT_TIMEOUT_SECONDS, accept_partial_output=True)
        if not stdout.strip():
            raise MalformedOutput(label, "empty output")
        providers = parse_multi_provider_text(stdout)
        if not providers:
            raise ParseFailed(label, "no provider cost blocks found")
        return providers

    async def _fetch_cost_json(self) -> list[CostProvider]:
        argv = [config.CODEXBAR_BIN, "cost", "--format", "json", "--provider", "all"]
        label = describe_command(argv)
        stdout = await self._stdout(argv, config.COST_JSON_TIMEOUT_SECONDS, accept_partial_output=True)
        payload = extract_json(stdout, label)
        if not isinstance(payload, list):
            raise ParseFailed(label, f"expected a list, got {type(payload).__name__}")
        providers = _validate(label, _COST_PROVIDERS_ADAPTER, payload)
        if not providers:
            raise ParseFailed(label, "no providers reported")
        return providers

    async def _fetch_cron(self) -> CronList:
        argv = [config.OPENCLAW_BIN, "cron", "list", "--all", "--json"]
        return await self._fetch_object(argv, config.CRON_TIMEOUT_SECONDS, CronList)

    async def _fetch_sessions(self) -> SessionList:
        argv = [config.OPENCLAW_BIN, "sessions", "list", "--json"]
        return await self._fetch_object(argv, config.SESSIONS_TIMEOUT_SECONDS, SessionList)


datasets = Datasets()
