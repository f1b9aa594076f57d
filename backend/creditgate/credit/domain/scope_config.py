"""Per-scope credit policy: validation, loading, and cached resolution."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Mapping, Protocol

import yaml

from creditgate.credit.domain.errors import MalformedScopeConfig
from creditgate.credit.domain.scoring import SCORED_EVENT_KINDS, EventKind, QualityLevel
from creditgate.obs import metrics

logger = logging.getLogger(__name__)

DeltaTable = Mapping[EventKind, Mapping[QualityLevel, int]]


def _default_deltas() -> dict[EventKind, dict[QualityLevel, int]]:
    return {
        EventKind.PR_OPENED: {
            QualityLevel.SPAM: -25,
            QualityLevel.LOW: -5,
            QualityLevel.ACCEPTABLE: 5,
            QualityLevel.HIGH: 15,
        },
        EventKind.COMMENT: {
            QualityLevel.SPAM: -10,
            QualityLevel.LOW: -2,
            QualityLevel.ACCEPTABLE: 1,
            QualityLevel.HIGH: 3,
        },
        EventKind.PR_MERGED: {
            QualityLevel.SPAM: 0,
            QualityLevel.LOW: 0,
            QualityLevel.ACCEPTABLE: 20,
            QualityLevel.HIGH: 20,
        },
        EventKind.REVIEW_SUBMITTED: {
            QualityLevel.SPAM: 0,
            QualityLevel.LOW: 0,
            QualityLevel.ACCEPTABLE: 5,
            QualityLevel.HIGH: 5,
        },
    }


@dataclass(frozen=True)
class ScopeConfig:
    """Resolved policy for one resource scope (an ``owner/repo`` pair)."""

    starting_credit: int = 100
    pr_threshold: int = 50
    blacklist_threshold: int = 0
    deltas: DeltaTable = field(default_factory=_default_deltas)
    gated_event_kinds: frozenset[EventKind] = frozenset({EventKind.PR_OPENED})

    @staticmethod
    def default() -> "ScopeConfig":
        return ScopeConfig()

    def is_gated(self, event_kind: EventKind) -> bool:
        return event_kind in self.gated_event_kinds


_TOP_LEVEL_KEYS = frozenset({"starting_credit", "pr_threshold", "blacklist_threshold", "scoring", "gated_events"})


def _int_field(raw: Mapping[str, Any], key: str, default: int, problems: list[str]) -> int:
    if key not in raw:
        return default
    value = raw[key]
    # bool is an int subclass; reject it explicitly
    if isinstance(value, bool) or not isinstance(value, int):
        problems.append(f"{key} must be an integer")
        return default
    if value < 0:
        problems.append(f"{key} must not be negative")
    return value


def validate_scope_config(raw: Mapping[str, Any] | None) -> ScopeConfig:
    """Turn a raw mapping into a ScopeConfig or raise MalformedScopeConfig.

    Pure and stateless: every problem found is reported at once, and missing
    keys take the default values. Entries absent from a scoring table section
    stay absent and therefore score 0.
    """

    if raw is None:
        return ScopeConfig.default()
    if not isinstance(raw, Mapping):
        raise MalformedScopeConfig(["scope config must be a mapping"])

    defaults = ScopeConfig.default()
    problems: list[str] = []
    for key in raw:
        if key not in _TOP_LEVEL_KEYS:
            problems.append(f"unknown key: {key}")

    starting_credit = _int_field(raw, "starting_credit", defaults.starting_credit, problems)
    pr_threshold = _int_field(raw, "pr_threshold", defaults.pr_threshold, problems)
    blacklist_threshold = _int_field(raw, "blacklist_threshold", defaults.blacklist_threshold, problems)
    if blacklist_threshold >= pr_threshold:
        problems.append("blacklist_threshold must be below pr_threshold")

    deltas: dict[EventKind, dict[QualityLevel, int]] = _default_deltas()
    scoring = raw.get("scoring")
    if scoring is not None:
        if not isinstance(scoring, Mapping):
            problems.append("scoring must be a mapping of event kind to quality deltas")
        else:
            for kind_name, table in scoring.items():
                try:
                    kind = EventKind(str(kind_name))
                except ValueError:
                    problems.append(f"unknown event kind: {kind_name}")
                    continue
                if kind not in SCORED_EVENT_KINDS:
                    problems.append(f"event kind is not scored: {kind_name}")
                    continue
                if not isinstance(table, Mapping):
                    problems.append(f"scoring.{kind_name} must be a mapping")
                    continue
                section: dict[QualityLevel, int] = {}
                for level_name, value in table.items():
                    try:
                        level = QualityLevel(str(level_name))
                    except ValueError:
                        problems.append(f"unknown quality level: scoring.{kind_name}.{level_name}")
                        continue
                    if isinstance(value, bool) or not isinstance(value, int):
                        problems.append(f"scoring.{kind_name}.{level_name} must be an integer")
                        continue
                    section[level] = value
                deltas[kind] = section

    gated = defaults.gated_event_kinds
    gated_raw = raw.get("gated_events")
    if gated_raw is not None:
        if not isinstance(gated_raw, (list, tuple)):
            problems.append("gated_events must be a list")
        else:
            parsed: set[EventKind] = set()
            for item in gated_raw:
                try:
                    parsed.add(EventKind(str(item)))
                except ValueError:
                    problems.append(f"unknown gated event kind: {item}")
            gated = frozenset(parsed)

    if problems:
        raise MalformedScopeConfig(problems)
    return ScopeConfig(
        starting_credit=starting_credit,
        pr_threshold=pr_threshold,
        blacklist_threshold=blacklist_threshold,
        deltas=deltas,
        gated_event_kinds=gated,
    )


def parse_scope_config_yaml(text: str) -> ScopeConfig:
    try:
        loaded = yaml.safe_load(text)
    except yaml.YAMLError as exc:
        raise MalformedScopeConfig([f"invalid yaml: {exc}"]) from exc
    return validate_scope_config(loaded or {})


class ScopeConfigSource(Protocol):
    """Fetches the raw YAML text of a scope's config, or None when absent."""

    async def fetch(self, scope: str) -> str | None:
        ...


class FileScopeConfigSource(ScopeConfigSource):
    """Reads a local YAML file holding a ``default`` section and per-scope sections.

    ::

        default:
          pr_threshold: 40
        scopes:
          octo/widgets:
            starting_credit: 60
    """

    def __init__(self, path: str | Path) -> None:
        self._path = Path(path)

    async def fetch(self, scope: str) -> str | None:
        text = await asyncio.to_thread(self._path.read_text, encoding="utf-8")
        loaded = yaml.safe_load(text) or {}
        if not isinstance(loaded, dict):
            raise MalformedScopeConfig(["scope config file must be a mapping"])
        merged: dict[str, Any] = dict(loaded.get("default") or {})
        scopes = loaded.get("scopes") or {}
        if isinstance(scopes, dict) and isinstance(scopes.get(scope), dict):
            merged.update(scopes[scope])
        return yaml.safe_dump(merged)


@dataclass
class _CachedConfig:
    config: ScopeConfig
    fetched_at: float


class ScopeConfigProvider:
    """Resolves ScopeConfig values with a TTL cache and last-known-good fallback."""

    def __init__(
        self,
        source: ScopeConfigSource | None = None,
        *,
        ttl_seconds: float = 300.0,
        default: ScopeConfig | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._source = source
        self._ttl = ttl_seconds
        self._default = default or ScopeConfig.default()
        self._clock = clock
        self._cache: dict[str, _CachedConfig] = {}
        self._last_good: dict[str, ScopeConfig] = {}

    async def resolve(self, scope: str) -> ScopeConfig:
        cached = self._cache.get(scope)
        now = self._clock()
        if cached is not None and now - cached.fetched_at < self._ttl:
            return cached.config
        config = await self._load(scope)
        self._cache[scope] = _CachedConfig(config=config, fetched_at=now)
        return config

    async def _load(self, scope: str) -> ScopeConfig:
        if self._source is None:
            return self._default
        try:
            text = await self._source.fetch(scope)
        except MalformedScopeConfig as exc:
            return self._fallback(scope, "malformed", exc)
        except Exception as exc:  # noqa: BLE001 - any source failure falls back
            return self._fallback(scope, "unavailable", exc)
        if text is None:
            return self._default
        try:
            config = parse_scope_config_yaml(text)
        except MalformedScopeConfig as exc:
            return self._fallback(scope, "malformed", exc)
        self._last_good[scope] = config
        return config

    def _fallback(self, scope: str, reason: str, exc: Exception) -> ScopeConfig:
        metrics.SCOPE_CONFIG_FALLBACKS_TOTAL.labels(reason=reason).inc()
        previous = self._last_good.get(scope)
        logger.warning(
            "scope_config_fallback",
            extra={"scope_name": scope, "reason": reason, "error": str(exc), "has_last_good": previous is not None},
        )
        return previous or self._default

    def invalidate(self, scope: str) -> None:
        self._cache.pop(scope, None)

    def clear(self) -> None:
        self._cache.clear()
