"""
Advisory proximity check between a volunteer and a position's check-in point.

The gate never blocks a check-in: when either location is unknown it admits,
and its answer is only surfaced to the operator as a near/away hint.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import StrEnum

from volunteer_ops.errors import LocationUnavailable
from volunteer_ops.geo import GeoPoint, distance_between

logger = logging.getLogger(__name__)

DEFAULT_THRESHOLD_M = 200.0
DEFAULT_LOCATION_TIMEOUT_S = 10.0

LocationProvider = Callable[[], Awaitable[GeoPoint]]


class ProximityHint(StrEnum):
    NEAR = "near"
    AWAY = "away"
    UNKNOWN = "unknown"


def is_admissible(
    user_location: GeoPoint | None,
    position_location: GeoPoint | None,
    threshold_m: float = DEFAULT_THRESHOLD_M,
) -> bool:
    if user_location is None or position_location is None:
        return True
    return distance_between(user_location, position_location) <= threshold_m


def proximity_hint(
    user_location: GeoPoint | None,
    position_location: GeoPoint | None,
    threshold_m: float = DEFAULT_THRESHOLD_M,
) -> ProximityHint:
    if user_location is None or position_location is None:
        return ProximityHint.UNKNOWN
    if is_admissible(user_location, position_location, threshold_m):
        return ProximityHint.NEAR
    return ProximityHint.AWAY


@dataclass(frozen=True)
class LocationFix:
    point: GeoPoint | None
    error: str | None = None


async def acquire_location(
    provider: LocationProvider,
    *,
    timeout: float = DEFAULT_LOCATION_TIMEOUT_S,
) -> LocationFix:
    """
    Ask the provider for the current location. Denied, unsupported and
    timed-out requests come back as a fix without a point, never as errors.
    """
    try:
        point = await asyncio.wait_for(provider(), timeout=timeout)
    except TimeoutError:
        logger.info("geolocation timed out after %.1fs", timeout)
        return LocationFix(
            None, "Unable to get your location: request timed out"
        )
    except LocationUnavailable as exc:
        logger.info("geolocation unavailable: %s", exc)
        return LocationFix(None, f"Unable to get your location: {exc}")
    return LocationFix(point)
