"""
Source Registry Module
======================

Manages source descriptors loaded from YAML files. Sources define
which federation, show-management, pedigree and studbook sites can be
harvested, their endpoint fallback chains and their request budgets.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field, replace
from pathlib import Path
from types import MappingProxyType
from typing import Any, Mapping

import yaml

from equine_agent.core.enums import RecordKind, SourceType
from equine_agent.ingestion.crawler import template_placeholders


@dataclass(frozen=True)
class RateLimitConfig:
    """Rate limiting configuration for a source."""

    requests_per_minute: int = 30

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> RateLimitConfig:
        """Create from dictionary, using defaults for missing values."""
        if data is None:
            return cls()
        return cls(requests_per_minute=int(data.get("requests_per_minute", 30)))


@dataclass(frozen=True)
class SourceDescriptor:
    """Static configuration for a single source integration."""

    name: str
    adapter: str
    source_type: SourceType = SourceType.FEDERATION
    country: str = ""
    enabled: bool = True
    description: str = ""
    requires_auth: bool = False
    rate_limit: RateLimitConfig = field(default_factory=RateLimitConfig)
    request_timeout: float = 30.0
    headers: Mapping[str, str] = field(default_factory=dict)
    endpoints: Mapping[RecordKind, tuple[str, ...]] = field(default_factory=dict)
    default_params: Mapping[str, str] = field(default_factory=dict)

    @classmethod
    def from_dict(
        cls,
        data: dict[str, Any],
        default_rate_limit: RateLimitConfig | None = None,
        default_timeout: float = 30.0,
    ) -> SourceDescriptor:
        """Create from dictionary."""
        rate_limit_data = data.get("rate_limit")
        if rate_limit_data:
            rate_limit = RateLimitConfig.from_dict(rate_limit_data)
        elif default_rate_limit:
            rate_limit = default_rate_limit
        else:
            rate_limit = RateLimitConfig()

        endpoints: dict[RecordKind, tuple[str, ...]] = {}
        for kind_name, urls in (data.get("endpoints") or {}).items():
            kind = RecordKind.parse(kind_name)
            if isinstance(urls, str):
                urls = [urls]
            # Aliases may point at the same kind; keep priority order, no duplicates
            merged = list(endpoints.get(kind, ()))
            merged.extend(u for u in urls if u not in merged)
            endpoints[kind] = tuple(merged)

        return cls(
            name=data["name"],
            adapter=data["adapter"],
            source_type=SourceType(data.get("type", SourceType.FEDERATION.value)),
            country=data.get("country", ""),
            enabled=data.get("enabled", True),
            description=data.get("description", ""),
            requires_auth=bool(data.get("requires_auth", False)),
            rate_limit=rate_limit,
            request_timeout=float(data.get("request_timeout", default_timeout)),
            headers=MappingProxyType({str(k): str(v) for k, v in (data.get("headers") or {}).items()}),
            endpoints=MappingProxyType(endpoints),
            default_params=MappingProxyType(
                {str(k): str(v) for k, v in (data.get("defaults") or {}).items()}
            ),
        )

    @property
    def kinds(self) -> list[RecordKind]:
        """Record kinds this source supplies."""
        return list(self.endpoints.keys())

    def supports(self, kind: RecordKind) -> bool:
        """Check whether the source has endpoints for a record kind."""
        return bool(self.endpoints.get(kind))

    def endpoints_for(self, kind: RecordKind) -> list[str]:
        """Endpoint URL templates for a kind, in priority order."""
        return list(self.endpoints.get(kind, ()))

    def missing_params(self, kind: RecordKind, params: Mapping[str, str] | None = None) -> list[str]:
        """
        Parameters a kind needs before any of its endpoints can be rendered.

        Descriptor defaults count as supplied. Returns an empty list when at
        least one endpoint is renderable (or the kind has no endpoints).
        """
        available = {**self.default_params, **(params or {})}
        missing: set[str] = set()
        for template in self.endpoints.get(kind, ()):
            needed = template_placeholders(template) - available.keys()
            if not needed:
                return []
            missing |= needed
        return sorted(missing)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "name": self.name,
            "adapter": self.adapter,
            "type": self.source_type.value,
            "country": self.country,
            "enabled": self.enabled,
            "description": self.description,
            "requires_auth": self.requires_auth,
            "requests_per_minute": self.rate_limit.requests_per_minute,
            "request_timeout": self.request_timeout,
            "kinds": [k.value for k in self.kinds],
            "endpoints": {k.value: list(v) for k, v in self.endpoints.items()},
        }


@dataclass
class IdentityResolutionConfig:
    """Weights and threshold for cross-source identity resolution."""

    merge_threshold: float = 0.6
    registry_id_weight: float = 0.4
    name_country_breed_weight: float = 0.2
    name_dob_weight: float = 0.2

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> IdentityResolutionConfig:
        """Create from dictionary."""
        if data is None:
            return cls()
        weights = data.get("weights", {})
        return cls(
            merge_threshold=float(data.get("merge_threshold", 0.6)),
            registry_id_weight=float(weights.get("registry_id", 0.4)),
            name_country_breed_weight=float(weights.get("name_country_breed", 0.2)),
            name_dob_weight=float(weights.get("name_dob", 0.2)),
        )


@dataclass
class GlobalConfig:
    """Global configuration settings."""

    default_rate_limit: RateLimitConfig = field(default_factory=RateLimitConfig)
    user_agent: str = "EquineAgent/0.1"
    request_timeout: float = 30.0
    max_retries: int = 3
    backoff_base_seconds: float = 1.0
    max_concurrency: int = 4
    cache_ttl_seconds: float = 1800.0
    cache_max_entries: int = 512
    respect_robots: bool = True
    currency_rates: dict[str, float] = field(default_factory=lambda: {"USD": 1.0})

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> GlobalConfig:
        """Create from dictionary."""
        if data is None:
            return cls()
        rates = {str(k).upper(): float(v) for k, v in (data.get("currency_rates") or {}).items()}
        rates.setdefault("USD", 1.0)
        return cls(
            default_rate_limit=RateLimitConfig.from_dict(data.get("default_rate_limit")),
            user_agent=data.get("user_agent", "EquineAgent/0.1"),
            request_timeout=float(data.get("request_timeout", 30.0)),
            max_retries=int(data.get("max_retries", 3)),
            backoff_base_seconds=float(data.get("backoff_base_seconds", 1.0)),
            max_concurrency=int(data.get("max_concurrency", 4)),
            cache_ttl_seconds=float(data.get("cache_ttl_seconds", 1800.0)),
            cache_max_entries=int(data.get("cache_max_entries", 512)),
            respect_robots=bool(data.get("respect_robots", True)),
            currency_rates=rates,
        )


class SourceRegistry:
    """
    Registry for source descriptors.

    Loads source definitions from a YAML file and provides methods
    to query them. Descriptors are immutable; enabling or disabling
    a source swaps in an updated copy.
    """

    def __init__(self) -> None:
        self._sources: dict[str, SourceDescriptor] = {}
        self._global_config: GlobalConfig = GlobalConfig()
        self._identity_resolution: IdentityResolutionConfig = IdentityResolutionConfig()
        self._config_path: Path | None = None

    @property
    def global_config(self) -> GlobalConfig:
        """Get global configuration."""
        return self._global_config

    @property
    def identity_resolution(self) -> IdentityResolutionConfig:
        """Get identity resolution configuration."""
        return self._identity_resolution

    def load_config(self, config_path: Path | str) -> None:
        """
        Load configuration from a YAML file.

        Args:
            config_path: Path to the sources.yaml file
        """
        config_path = Path(config_path).expanduser().resolve()
        if not config_path.exists():
            raise FileNotFoundError(f"Configuration file not found: {config_path}")

        with open(config_path) as f:
            data = yaml.safe_load(f) or {}

        self._config_path = config_path
        self.load_dict(data)

    def load_dict(self, data: dict[str, Any]) -> None:
        """Load configuration from an already parsed mapping."""
        self._global_config = GlobalConfig.from_dict(data.get("global"))
        self._identity_resolution = IdentityResolutionConfig.from_dict(
            data.get("identity_resolution")
        )

        self._sources.clear()
        for source_data in data.get("sources", []):
            source = SourceDescriptor.from_dict(
                source_data,
                self._global_config.default_rate_limit,
                self._global_config.request_timeout,
            )
            self._sources[source.name] = source

    def add_source(self, source: SourceDescriptor) -> None:
        """Register a descriptor directly (replaces any source with the same name)."""
        self._sources[source.name] = source

    def get_source(self, name: str) -> SourceDescriptor | None:
        """
        Get a source descriptor by name.

        Lookup is exact first, then case-insensitive.
        """
        source = self._sources.get(name)
        if source is not None:
            return source
        lowered = name.lower()
        for candidate in self._sources.values():
            if candidate.name.lower() == lowered:
                return candidate
        return None

    def list_sources(self) -> list[SourceDescriptor]:
        """All registered sources, in configuration order."""
        return list(self._sources.values())

    def list_enabled_sources(self) -> list[SourceDescriptor]:
        """Enabled sources, in configuration order."""
        return [s for s in self._sources.values() if s.enabled]

    def enable_source(self, name: str) -> bool:
        """Enable a source. Returns False if the source is unknown."""
        return self._set_enabled(name, True)

    def disable_source(self, name: str) -> bool:
        """Disable a source. Returns False if the source is unknown."""
        return self._set_enabled(name, False)

    def _set_enabled(self, name: str, enabled: bool) -> bool:
        source = self.get_source(name)
        if source is None:
            return False
        self._sources[source.name] = replace(source, enabled=enabled)
        return True


# Global registry instance
_default_registry: SourceRegistry | None = None


def get_default_registry() -> SourceRegistry:
    """
    Get the default source registry instance.

    Loads configuration from the path specified in SOURCES_CONFIG_PATH
    environment variable, or falls back to config/sources.yaml.

    Returns:
        The global SourceRegistry instance
    """
    global _default_registry

    if _default_registry is None:
        _default_registry = SourceRegistry()

        config_path = os.environ.get("SOURCES_CONFIG_PATH")
        if config_path:
            path = Path(config_path)
        else:
            module_dir = Path(__file__).parent
            project_root = module_dir.parent.parent
            path = project_root / "config" / "sources.yaml"

        if path.exists():
            _default_registry.load_config(path)

    return _default_registry


def reset_default_registry() -> None:
    """Reset the default registry (useful for testing)."""
    global _default_registry
    _default_registry = None
