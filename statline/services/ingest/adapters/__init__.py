"""
Adapter registry.

The ingest runner discovers and builds adapters by name. Adapters are
sport-specific ("nfl-espn", "nfl-pfr", ...); create_nfl_adapter resolves
the NFL variant once, at construction, so callers get the season, weekly
and game operations statically instead of probing at runtime.

Usage:
    limiters = RateLimiterService.from_settings()
    cache = ResponseCache(db)
    adapter = create_nfl_adapter("nfl-composite", rate_limiter=limiters, cache=cache)
"""
from typing import Callable, Dict, List, Optional

import httpx

from statline.models.schemas import Sport
from statline.services.ingest.adapters.base import HttpNflAdapter, NflSourceAdapter, SourceAdapter
from statline.services.ingest.adapters.composite_adapter import CompositeAdapter
from statline.services.ingest.adapters.espn_adapter import EspnAdapter
from statline.services.ingest.adapters.mock_adapter import NflMockAdapter
from statline.services.ingest.adapters.pfr_adapter import KNOWN_PFR_SLUGS, PfrAdapter
from statline.services.ingest.cache import ResponseCache
from statline.services.ingest.cancellation import CancellationToken
from statline.services.ingest.errors import UnknownAdapterError
from statline.services.ingest.rate_limiter import RateLimiterService

ADAPTER_NAMES = ("nfl-espn", "nfl-pfr", "nfl-mock", "nfl-composite")

ADAPTER_SPORTS: Dict[str, Sport] = {name: Sport.NFL for name in ADAPTER_NAMES}


def get_adapter_names(sport: Optional[Sport] = None) -> List[str]:
    """Registered adapter names, optionally filtered by sport."""
    return [name for name in ADAPTER_NAMES if sport is None or ADAPTER_SPORTS[name] == sport]


def has_adapter(name: str) -> bool:
    return name in ADAPTER_NAMES


def create_adapter(
    name: str,
    rate_limiter: Optional[RateLimiterService] = None,
    cache: Optional[ResponseCache] = None,
    client: Optional[httpx.AsyncClient] = None,
    cancel_token: Optional[CancellationToken] = None,
    pfr_slugs: Optional[Dict[str, str]] = None,
    settings=None,
    **kwargs,
) -> SourceAdapter:
    """
    Build an adapter by registry name.

    HTTP adapters share the given limiter service, cache and client; a
    limiter service is built from settings when none is given. The PFR
    adapter (standalone or inside the composite) is seeded with
    KNOWN_PFR_SLUGS unless pfr_slugs is given.

    Args:
        name: Registry name
        rate_limiter: Shared limiter service
        cache: Shared response cache
        client: Shared HTTP client
        cancel_token: Run cancellation signal
        pfr_slugs: Player name -> PFR slug registry
        settings: Settings instance (defaults to the global settings)
        **kwargs: Extra adapter options (e.g. enable_merge for the composite)

    Raises:
        UnknownAdapterError: If no adapter is registered under name
    """
    if settings is None:
        from statline.core.config import settings

    if name not in ADAPTER_NAMES:
        raise UnknownAdapterError(
            f"Unknown adapter '{name}'. Available: {', '.join(ADAPTER_NAMES)}"
        )

    if name == "nfl-mock":
        return NflMockAdapter(cancel_token=cancel_token, settings=settings, **kwargs)

    if rate_limiter is None:
        rate_limiter = RateLimiterService.from_settings(settings)

    http_options = {
        "cache": cache,
        "client": client,
        "cancel_token": cancel_token,
        "settings": settings,
    }
    builders: Dict[str, Callable[[], HttpNflAdapter]] = {
        "nfl-espn": lambda: EspnAdapter(rate_limiter, **http_options),
        "nfl-pfr": lambda: PfrAdapter(
            rate_limiter,
            player_slugs=KNOWN_PFR_SLUGS if pfr_slugs is None else pfr_slugs,
            **http_options,
        ),
    }

    if name == "nfl-composite":
        return CompositeAdapter(
            espn=builders["nfl-espn"](),
            pfr=builders["nfl-pfr"](),
            settings=settings,
            **kwargs,
        )
    return builders[name]()


def create_nfl_adapter(name: str, **kwargs) -> NflSourceAdapter:
    """
    Build an adapter and guarantee the NFL variant.

    Raises:
        UnknownAdapterError: If the name is unknown or not an NFL adapter
    """
    if ADAPTER_SPORTS.get(name) != Sport.NFL:
        raise UnknownAdapterError(f"'{name}' is not a registered NFL adapter")
    adapter = create_adapter(name, **kwargs)
    if not isinstance(adapter, NflSourceAdapter):
        raise UnknownAdapterError(f"'{name}' is not a registered NFL adapter")
    return adapter


__all__ = [
    "ADAPTER_NAMES",
    "CompositeAdapter",
    "EspnAdapter",
    "HttpNflAdapter",
    "KNOWN_PFR_SLUGS",
    "NflMockAdapter",
    "NflSourceAdapter",
    "PfrAdapter",
    "SourceAdapter",
    "UnknownAdapterError",
    "create_adapter",
    "create_nfl_adapter",
    "get_adapter_names",
    "has_adapter",
]
