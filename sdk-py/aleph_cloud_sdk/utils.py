"""
Unit conversion, version parsing and small caching helpers
"""

import logging
import re
import threading
import time
from datetime import datetime, timezone
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Callable, Dict, List, Optional, Union

import cachetools

from .constants import EXPLORER_URL, PAYG_COMPATIBLE_CHAINS

logger = logging.getLogger(__name__)

Number = Union[int, float, Decimal]

BYTE_UNITS = ["B", "KiB", "MiB", "GiB", "TiB"]
BYTE_MULTIPLIERS: Dict[str, int] = {
    "B": 1,
    "KiB": 1024,
    "MiB": 1024 ** 2,
    "GiB": 1024 ** 3,
    "TiB": 1024 ** 4,
}

HOURS_PER_UNIT: Dict[str, int] = {
    "h": 1,
    "d": 24,
    "w": 24 * 7,
    "m": 24 * 30,
    "y": 24 * 365,
}

ETH_ADDRESS_RE = re.compile(r"0x[a-fA-F0-9]{40}")


def to_decimal(value: Optional[Union[Number, str]]) -> Decimal:
    """Decimal from ints, strings or floats (floats go through str to keep 0.1 exact)."""
    if value is None:
        return Decimal(0)
    if isinstance(value, Decimal):
        return value
    if isinstance(value, float):
        return Decimal(repr(value))
    return Decimal(value)


def convert_byte_units(value: Number, from_unit: str, to_unit: str) -> Decimal:
    """Convert a size between binary byte units."""
    value_bytes = to_decimal(value) * BYTE_MULTIPLIERS[from_unit]
    return value_bytes / BYTE_MULTIPLIERS[to_unit]


def format_number(value: Number) -> str:
    """Render a number without a trailing zero fraction (4.0 -> "4")."""
    d = to_decimal(value)
    if d == d.to_integral_value():
        return str(int(d))
    return format(d.normalize(), "f")


def human_readable_size(value: Optional[Number], from_unit: str = "B") -> str:
    """
    Format a size into a human readable string.

    Two decimals below 10, one below 100, none above.
    """
    if not value:
        return "0 B"

    adjusted = to_decimal(value) * BYTE_MULTIPLIERS[from_unit]
    unit_index = 0
    while adjusted >= 1024 and unit_index < len(BYTE_UNITS) - 1:
        adjusted /= 1024
        unit_index += 1

    places = 2 if adjusted < 10 else 1 if adjusted < 100 else 0
    quantum = Decimal(1).scaleb(-places)
    return f"{adjusted.quantize(quantum, rounding=ROUND_HALF_UP)} {BYTE_UNITS[unit_index]}"


def round_to(value: Number, places: int = 2) -> Decimal:
    """Round half up to a fixed number of decimal places."""
    quantum = Decimal(1).scaleb(-places)
    return to_decimal(value).quantize(quantum, rounding=ROUND_HALF_UP)


def get_hours(duration: int, unit: str) -> int:
    """Number of hours in a stream duration like (2, "d")."""
    return duration * HOURS_PER_UNIT.get(unit, 1)


def get_version_number(version: Optional[str]) -> int:
    """Fold a version string like "v1.2.3" into a comparable integer."""
    if not version:
        return 0

    cleaned = re.sub(r"[a-zA-Z-]", "", version)
    result = 0
    for part in cleaned.split("."):
        if part and not part.isdigit():
            return 0
        result = result * 1000 + int(part or 0)
    return result


def extract_valid_eth_address(address: Optional[str]) -> str:
    """Return the first EVM address found in the string, or ""."""
    if not address:
        return ""
    match = ETH_ADDRESS_RE.search(address)
    return match.group(0) if match else ""


def normalize_url(url: Optional[str]) -> str:
    """Lowercase and strip one trailing slash."""
    if not url:
        return ""
    url = url.lower()
    return url[:-1] if url.endswith("/") else url


def is_blockchain_payg_compatible(chain: Optional[str]) -> bool:
    return chain in PAYG_COMPATIBLE_CHAINS


def get_date(timestamp: Union[int, float, str]) -> str:
    """Format a unix timestamp or ISO string as "YYYY-MM-DD HH:MM:SS" (UTC)."""
    if isinstance(timestamp, str):
        parsed = datetime.fromisoformat(timestamp.replace("Z", "+00:00"))
    else:
        parsed = datetime.fromtimestamp(timestamp, tz=timezone.utc)
    return parsed.strftime("%Y-%m-%d %H:%M:%S")


def get_explorer_url(item_hash: str, chain: str = "ETH", sender: str = "", message_type: str = "") -> str:
    if not sender:
        return f"{EXPLORER_URL}/message/{item_hash}"
    return f"{EXPLORER_URL}/address/{chain}/{sender}/message/{message_type}/{item_hash}"


def get_latest_releases(
    payload: Optional[List[Dict[str, Any]]],
    outdated_after: float = 60 * 60 * 24 * 14,
    now: Optional[float] = None,
) -> Dict[str, Optional[str]]:
    """
    Pick the latest, prerelease and outdated tags from a GitHub releases feed.

    The feed is ordered newest first. A prerelease older than the latest
    stable tag is dropped.
    """
    versions: Dict[str, Optional[str]] = {
        "latest": None,
        "prerelease": None,
        "outdated": None,
    }
    if not payload:
        return versions

    now = time.time() if now is None else now
    latest_release_date = 0.0

    for item in payload:
        if item.get("prerelease") and not versions["prerelease"]:
            versions["prerelease"] = item["tag_name"]
        if not item.get("prerelease") and not versions["latest"]:
            versions["latest"] = item["tag_name"]
            published = item.get("published_at")
            if published:
                latest_release_date = datetime.fromisoformat(
                    published.replace("Z", "+00:00")
                ).timestamp()
        if (
            versions["latest"]
            and versions["prerelease"]
            and not versions["outdated"]
            and not item.get("prerelease")
            and now - latest_release_date < outdated_after
        ):
            versions["outdated"] = item["tag_name"]

    if (
        versions["latest"]
        and versions["prerelease"]
        and versions["latest"] > versions["prerelease"].split("-")[0]
    ):
        versions["prerelease"] = None

    return versions


class TTLCache:
    """
    In-process cache with per-entry lifetime.

    Entries sharing a lifetime live in one ``cachetools.TTLCache``. Values are
    replaced whole on refresh; readers never observe a partially built entry.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic, maxsize: int = 1024):
        self._clock = clock
        self._maxsize = maxsize
        self._buckets: Dict[float, cachetools.TTLCache] = {}
        self._lock = threading.Lock()

    def _bucket(self, ttl: float) -> cachetools.TTLCache:
        bucket = self._buckets.get(ttl)
        if bucket is None:
            bucket = cachetools.TTLCache(maxsize=self._maxsize, ttl=ttl, timer=self._clock)
            self._buckets[ttl] = bucket
        return bucket

    def get(self, key: str, ttl: float) -> Optional[Any]:
        with self._lock:
            return self._bucket(ttl).get(key)

    def set(self, key: str, value: Any, ttl: float) -> None:
        with self._lock:
            self._bucket(ttl)[key] = value

    def get_or_load(self, key: str, ttl: float, loader: Callable[[], Any]) -> Any:
        """Return the cached value or load, store and return a fresh one."""
        value = self.get(key, ttl)
        if value is not None:
            logger.debug("cache hit %s", key)
            return value
        value = loader()
        self.set(key, value, ttl)
        logger.debug("cache refreshed %s", key)
        return value

    def clear(self) -> None:
        with self._lock:
            self._buckets = {}
