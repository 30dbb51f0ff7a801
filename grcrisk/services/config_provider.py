"""
Config Provider: aggregation tunables from the key-value configuration store.

Backing stores implement one small protocol and are chosen once at start:
- DatabaseConfigStore: the ``grc_system_config`` table (one bulk read)
- StaticConfigStore:   an in-process dict (dev, tests, embedded use)

Every getter is cached independently for ``config_cache_ttl_seconds``.
Missing or invalid values fall back to the documented defaults in
``grcrisk.config.Settings``; the provider never raises on bad configuration.
"""

import time
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional, Protocol, Sequence, Tuple

import structlog
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from grcrisk.config import Settings, settings as default_settings
from grcrisk.db import queries
from grcrisk.engine.types import AggregationConfig, AggregationMethod, LevelThresholds, RiskLevel
from grcrisk.exceptions import ConfigurationError

logger = structlog.get_logger(__name__)

# ── Store keys ───────────────────────────────────────────────────────────

KEY_METHOD = "risk_aggregation_method"
KEY_LOW_MAX = "risk_low_max"
KEY_MEDIUM_MAX = "risk_medium_max"
KEY_HIGH_MAX = "risk_high_max"
KEY_MAX_EFFECTIVENESS = "max_effectiveness_limit"
WEIGHT_KEYS: Dict[RiskLevel, str] = {
    RiskLevel.LOW: "risk_weight_low",
    RiskLevel.MEDIUM: "risk_weight_medium",
    RiskLevel.HIGH: "risk_weight_high",
    RiskLevel.CRITICAL: "risk_weight_critical",
}

METHOD_ALIASES: Dict[str, AggregationMethod] = {
    "highest": AggregationMethod.WORST_CASE,
    "max": AggregationMethod.WORST_CASE,
}


class ConfigStore(Protocol):
    """Read side of the key-value configuration store."""

    async def get_values(
        self, keys: Sequence[str], session: Optional[AsyncSession] = None
    ) -> Dict[str, str]:
        ...


class DatabaseConfigStore:
    """
    Reads active rows of ``grc_system_config``.

    Uses a short-lived session of its own unless the caller passes theirs, in
    which case uncommitted edits in that unit of work are visible and database
    errors propagate to the caller.
    """

    def __init__(
        self,
        session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
        settings: Settings = default_settings,
    ):
        self._session_factory = session_factory
        self._settings = settings

    def _factory(self) -> async_sessionmaker[AsyncSession]:
        if self._session_factory is None:
            from grcrisk.db.engine import get_session_factory

            self._session_factory = get_session_factory(self._settings)
        return self._session_factory

    async def get_values(
        self, keys: Sequence[str], session: Optional[AsyncSession] = None
    ) -> Dict[str, str]:
        if session is not None:
            return await queries.load_config_values(session, keys)
        try:
            async with self._factory()() as own_session:
                return await queries.load_config_values(own_session, keys)
        except SQLAlchemyError as e:
            logger.warning("config_store_unavailable", error=str(e))
            return {}


class StaticConfigStore:
    """In-process key-value store."""

    def __init__(self, values: Optional[Mapping[str, Any]] = None):
        self._values: Dict[str, str] = {k: str(v) for k, v in (values or {}).items()}

    def set(self, key: str, value: Any) -> None:
        self._values[key] = str(value)

    async def get_values(
        self, keys: Sequence[str], session: Optional[AsyncSession] = None
    ) -> Dict[str, str]:
        return {k: self._values[k] for k in keys if k in self._values}


def build_config_store(
    settings: Settings = default_settings,
    session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
) -> ConfigStore:
    """Pick the configured backing store (called once at start)."""
    backend = settings.config_store_backend
    if backend == "database":
        return DatabaseConfigStore(session_factory, settings)
    if backend == "static":
        return StaticConfigStore()
    raise ConfigurationError(f"Unknown config store backend: {backend}", backend=backend)


# ── Parsing helpers ──────────────────────────────────────────────────────


def _parse_float(raw: Optional[str], key: str) -> Optional[float]:
    if raw is None:
        return None
    try:
        return float(raw)
    except (TypeError, ValueError):
        logger.warning("config_value_invalid", key=key, value=raw)
        return None


def parse_method(raw: Optional[str], default: AggregationMethod) -> AggregationMethod:
    if raw is None:
        return default
    value = raw.strip().lower()
    if value in METHOD_ALIASES:
        return METHOD_ALIASES[value]
    try:
        return AggregationMethod(value)
    except ValueError:
        logger.warning("config_method_unknown", value=raw, fallback=default.value)
        return default


class ConfigProvider:
    """
    Typed, cached access to the aggregation configuration.

    Each getter keeps its own (expires_at, value) entry so a hot method lookup
    does not force a thresholds reload and vice versa.
    """

    def __init__(
        self,
        store: ConfigStore,
        settings: Settings = default_settings,
        ttl_seconds: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.store = store
        self.settings = settings
        self.ttl_seconds = settings.config_cache_ttl_seconds if ttl_seconds is None else ttl_seconds
        self._clock = clock
        self._cache: Dict[str, Tuple[float, Any]] = {}

    # ── Defaults ──────────────────────────────────────────────────────

    def default_method(self) -> AggregationMethod:
        return parse_method(self.settings.default_aggregation_method, AggregationMethod.WEIGHTED)

    def default_weights(self) -> Dict[RiskLevel, float]:
        return {
            RiskLevel.LOW: float(self.settings.default_weight_low),
            RiskLevel.MEDIUM: float(self.settings.default_weight_medium),
            RiskLevel.HIGH: float(self.settings.default_weight_high),
            RiskLevel.CRITICAL: float(self.settings.default_weight_critical),
        }

    def default_thresholds(self) -> LevelThresholds:
        return LevelThresholds(
            low_max=self.settings.default_low_max,
            medium_max=self.settings.default_medium_max,
            high_max=self.settings.default_high_max,
        )

    # ── Cache ─────────────────────────────────────────────────────────

    async def _cached(self, name: str, loader: Callable[[], Awaitable[Any]]) -> Any:
        now = self._clock()
        entry = self._cache.get(name)
        if entry is not None and entry[0] > now:
            return entry[1]
        value = await loader()
        self._cache[name] = (now + self.ttl_seconds, value)
        return value

    def invalidate(self) -> None:
        """Drop every cached value (call after a configuration change)."""
        self._cache.clear()
        logger.info("config_cache_invalidated")

    async def reload(self, session: Optional[AsyncSession] = None) -> AggregationConfig:
        """
        Drop the cache and load every value again.

        With ``session`` the values are read inside the caller's unit of work,
        so a configuration edit that is not committed yet is already in effect.
        """
        self.invalidate()
        loaded = {
            "method": await self._load_method(session),
            "weights": await self._load_weights(session),
            "thresholds": await self._load_thresholds(session),
            "max_effectiveness": await self._load_max_effectiveness(session),
        }
        expires_at = self._clock() + self.ttl_seconds
        for name, value in loaded.items():
            self._cache[name] = (expires_at, value)
        return AggregationConfig(
            method=loaded["method"],
            weights=dict(loaded["weights"]),
            thresholds=loaded["thresholds"],
            max_effectiveness=loaded["max_effectiveness"],
        )

    # ── Loaders ───────────────────────────────────────────────────────

    async def _load_method(self, session: Optional[AsyncSession] = None) -> AggregationMethod:
        values = await self.store.get_values([KEY_METHOD], session=session)
        return parse_method(values.get(KEY_METHOD), self.default_method())

    async def _load_weights(self, session: Optional[AsyncSession] = None) -> Dict[RiskLevel, float]:
        values = await self.store.get_values(list(WEIGHT_KEYS.values()), session=session)
        defaults = self.default_weights()
        weights: Dict[RiskLevel, float] = {}
        for level, key in WEIGHT_KEYS.items():
            weight = _parse_float(values.get(key), key)
            if weight is None or weight < 0:
                if key in values:
                    logger.warning("config_weight_fallback", key=key, value=values[key])
                weight = defaults[level]
            weights[level] = weight
        return weights

    async def _load_thresholds(self, session: Optional[AsyncSession] = None) -> LevelThresholds:
        keys = [KEY_LOW_MAX, KEY_MEDIUM_MAX, KEY_HIGH_MAX]
        values = await self.store.get_values(keys, session=session)
        defaults = self.default_thresholds()
        parsed = [_parse_float(values.get(key), key) for key in keys]
        thresholds = LevelThresholds(
            low_max=parsed[0] if parsed[0] is not None else defaults.low_max,
            medium_max=parsed[1] if parsed[1] is not None else defaults.medium_max,
            high_max=parsed[2] if parsed[2] is not None else defaults.high_max,
        )
        if not thresholds.is_valid():
            logger.warning(
                "config_thresholds_not_increasing",
                low_max=thresholds.low_max,
                medium_max=thresholds.medium_max,
                high_max=thresholds.high_max,
            )
            return defaults
        return thresholds

    async def _load_max_effectiveness(self, session: Optional[AsyncSession] = None) -> int:
        values = await self.store.get_values([KEY_MAX_EFFECTIVENESS], session=session)
        default = self.settings.default_max_effectiveness
        parsed = _parse_float(values.get(KEY_MAX_EFFECTIVENESS), KEY_MAX_EFFECTIVENESS)
        if parsed is None:
            return default
        if parsed < 0 or parsed > 100:
            logger.warning("config_max_effectiveness_out_of_range", value=parsed)
            return int(max(0, min(100, parsed)))
        return int(parsed)

    # ── Public getters ────────────────────────────────────────────────

    async def get_aggregation_method(self) -> AggregationMethod:
        return await self._cached("method", self._load_method)

    async def get_aggregation_weights(self) -> Dict[RiskLevel, float]:
        return dict(await self._cached("weights", self._load_weights))

    async def get_level_thresholds(self) -> LevelThresholds:
        return await self._cached("thresholds", self._load_thresholds)

    async def get_max_effectiveness(self) -> int:
        return await self._cached("max_effectiveness", self._load_max_effectiveness)

    async def get_aggregation_config(self) -> AggregationConfig:
        return AggregationConfig(
            method=await self.get_aggregation_method(),
            weights=await self.get_aggregation_weights(),
            thresholds=await self.get_level_thresholds(),
            max_effectiveness=await self.get_max_effectiveness(),
        )
