import hashlib
import json
import logging
from typing import List

import googlemaps
import redis

from ride_planner.config import settings

logger = logging.getLogger(__name__)

# Google allows at most 100 elements per Distance Matrix request.
_BLOCK_SIZE = 10

# Cost assigned to pairs Google could not route between.
UNREACHABLE = 999_999


def _get_redis() -> "redis.Redis | None":
    """Return a connected Redis client, or None if Redis is unavailable."""
    try:
        r = redis.Redis(
            host=settings.REDIS_HOST,
            port=settings.REDIS_PORT,
            db=settings.REDIS_DB,
            decode_responses=True,
        )
        r.ping()
        return r
    except Exception as exc:
        logger.warning("Redis unavailable, proceeding without cache: %s", exc)
        return None


def _build_cache_key(addresses: List[str]) -> str:
    """Build a deterministic MD5 cache key from the ordered, normalised addresses."""
    normalised = [" ".join(a.lower().split()) for a in addresses]
    payload = json.dumps({"addrs": normalised}, sort_keys=True)
    digest = hashlib.md5(payload.encode()).hexdigest()
    return f"dm:{digest}"


def _unresolved_indices(status_matrix: List[List[str]]) -> List[int]:
    """Return indices whose address Google could not route to or from at all."""
    n = len(status_matrix)
    if n < 2:
        return []
    unresolved = []
    for k in range(n):
        reachable = any(
            status_matrix[k][j] == "OK" or status_matrix[j][k] == "OK"
            for j in range(n)
            if j != k
        )
        if not reachable:
            unresolved.append(k)
    return unresolved


def build_distance_matrix(addresses: List[str]) -> dict:
    """Return a driving distance matrix for the given addresses.

    Checks Redis first; on cache miss calls the Google Distance Matrix API in
    blocks of at most 10×10 elements.  Redis errors are non-fatal: the
    service degrades gracefully to a direct API call.

    Args:
        addresses: Ordered address strings.  Index 0 = depot, 1..n = stops.

    Returns:
        {
            "time_matrix":     [[int, ...], ...]  # travel time in seconds
            "distance_matrix": [[int, ...], ...]  # distance in metres
            "unresolved":      [int, ...]         # indices Google could not route
        }

    Raises:
        googlemaps.exceptions.ApiError / TransportError / Timeout on API failure.
    """
    cache_key = _build_cache_key(addresses)

    # --- cache read ---
    r = _get_redis()
    if r is not None:
        try:
            cached = r.get(cache_key)
            if cached:
                logger.info("Distance matrix cache hit key=%s", cache_key)
                return json.loads(cached)
        except Exception as exc:
            logger.warning("Redis read error, falling through to API: %s", exc)

    # --- Google Distance Matrix API ---
    logger.info("Distance matrix cache miss, calling Google API (n=%d)", len(addresses))
    client = googlemaps.Client(
        key=settings.GOOGLE_MAPS_API_KEY,
        timeout=settings.OPTIMIZATION_TIMEOUT_SECONDS,
    )

    n = len(addresses)
    time_matrix = [[0] * n for _ in range(n)]
    distance_matrix = [[0] * n for _ in range(n)]
    status_matrix = [["OK"] * n for _ in range(n)]

    for row_start in range(0, n, _BLOCK_SIZE):
        origins = addresses[row_start:row_start + _BLOCK_SIZE]
        for col_start in range(0, n, _BLOCK_SIZE):
            destinations = addresses[col_start:col_start + _BLOCK_SIZE]
            response = client.distance_matrix(
                origins=origins,
                destinations=destinations,
                mode="driving",
                units="metric",
            )
            for di, row in enumerate(response["rows"]):
                for dj, element in enumerate(row["elements"]):
                    i, j = row_start + di, col_start + dj
                    status = element.get("status")
                    status_matrix[i][j] = status
                    if i == j:
                        continue
                    if status != "OK":
                        # Very high cost so the solver avoids the pair
                        time_matrix[i][j] = UNREACHABLE
                        distance_matrix[i][j] = UNREACHABLE
                    else:
                        time_matrix[i][j] = element["duration"]["value"]
                        distance_matrix[i][j] = element["distance"]["value"]

    result = {
        "time_matrix": time_matrix,
        "distance_matrix": distance_matrix,
        "unresolved": _unresolved_indices(status_matrix),
    }

    # --- cache write ---
    if r is not None:
        try:
            r.setex(cache_key, settings.REDIS_TTL_SECONDS, json.dumps(result))
            logger.info("Distance matrix cached key=%s ttl=%ds", cache_key, settings.REDIS_TTL_SECONDS)
        except Exception as exc:
            logger.warning("Redis write error, result not cached: %s", exc)

    return result
