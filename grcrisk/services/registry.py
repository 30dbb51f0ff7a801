"""
Service Registry: process-wide service instances.

Backing stores are selected once, from settings, the first time a service
is requested.

Usage:
    from grcrisk.services.registry import get_services
    services = get_services()
    levels = await services.aggregation_service.get_aggregated_risk_levels(session)
"""

from __future__ import annotations

import structlog
from dataclasses import dataclass, field
from typing import Optional

from grcrisk.config import Settings, settings as default_settings

logger = structlog.get_logger(__name__)


@dataclass
class ServiceRegistry:
    """
    Lazy singletons of the aggregation services.

    Imports happen on first access to avoid import cycles.
    """

    settings: Settings = field(default_factory=lambda: default_settings, repr=False)
    _config_provider: Optional[object] = field(default=None, repr=False)
    _aggregation_cache: Optional[object] = field(default=None, repr=False)
    _aggregation_service: Optional[object] = field(default=None, repr=False)

    @property
    def config_provider(self):
        """Cached aggregation configuration."""
        if self._config_provider is None:
            from grcrisk.services.config_provider import ConfigProvider, build_config_store
            self._config_provider = ConfigProvider(build_config_store(self.settings), self.settings)
            logger.debug(
                "service_initialized",
                service="ConfigProvider",
                backend=self.settings.config_store_backend,
            )
        return self._config_provider

    @property
    def aggregation_cache(self):
        """Aggregation result cache."""
        if self._aggregation_cache is None:
            from grcrisk.services.result_cache import AggregationCache, build_result_store
            self._aggregation_cache = AggregationCache(
                build_result_store(self.settings),
                ttl_seconds=self.settings.result_cache_ttl_seconds,
            )
            logger.debug(
                "service_initialized",
                service="AggregationCache",
                backend=self.settings.result_cache_backend,
            )
        return self._aggregation_cache

    @property
    def aggregation_service(self):
        """Residual computation and hierarchical rollup."""
        if self._aggregation_service is None:
            from grcrisk.services.aggregation_service import RiskAggregationService
            self._aggregation_service = RiskAggregationService(
                self.config_provider,
                self.aggregation_cache,
                self.settings,
            )
            logger.debug("service_initialized", service="RiskAggregationService")
        return self._aggregation_service

    async def close(self) -> None:
        if self._aggregation_cache is not None:
            await self._aggregation_cache.close()


# ── Singleton ─────────────────────────────────────────────────────────

_registry: Optional[ServiceRegistry] = None


def get_services() -> ServiceRegistry:
    """Get the global service registry (singleton)."""
    global _registry
    if _registry is None:
        _registry = ServiceRegistry()
        logger.info("service_registry_created")
    return _registry


def reset_services() -> None:
    """Reset the registry (for testing)."""
    global _registry
    _registry = None
