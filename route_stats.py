"""
Route geometry and listing helpers for Ride United.

Pure functions only; nothing here touches storage.

Public API:
  compute_route_stats(waypoints) → {"distance": miles, "duration": minutes}
  build_map_url(waypoints)       → Google Maps directions URL, or None
  normalize_waypoints(raw)       → validated, re-sequenced waypoint list
  order_rides(routes, now)       → public listing order
  tag_badges(tags)               → [{"label", "color"}] for ride cards
"""

import math
import uuid
from datetime import datetime, timezone
from enum import Enum

EARTH_RADIUS_MILES = 3959
AVERAGE_SPEED_MPH = 10

MAPS_DIRECTIONS_URL = "https://www.google.com/maps/dir/?api=1"


# ---------------------------------------------------------------------------
# Distance / duration
# ---------------------------------------------------------------------------

def haversine_miles(a: dict, b: dict) -> float:
    """Great-circle distance in statute miles between two {lat, lng} positions."""
    d_lat = math.radians(b["lat"] - a["lat"])
    d_lng = math.radians(b["lng"] - a["lng"])
    h = (math.sin(d_lat / 2) ** 2
         + math.cos(math.radians(a["lat"])) * math.cos(math.radians(b["lat"]))
         * math.sin(d_lng / 2) ** 2)
    c = 2 * math.atan2(math.sqrt(h), math.sqrt(1 - h))
    return EARTH_RADIUS_MILES * c


def _round_half_up(value: float, places: int = 0) -> float:
    # round() is half-to-even; ride stats round half up.
    factor = 10 ** places
    return math.floor(value * factor + 0.5) / factor


def compute_route_stats(waypoints: list[dict]) -> dict:
    """
    Return {"distance": miles (1 dp), "duration": whole minutes} for a path.

    Order matters: the path runs through the waypoints as given.
    Duration assumes a flat 10 mph riding pace.
    """
    if len(waypoints) < 2:
        return {"distance": 0, "duration": 0}

    total = 0.0
    for frm, to in zip(waypoints, waypoints[1:]):
        total += haversine_miles(frm["position"], to["position"])

    minutes = total / AVERAGE_SPEED_MPH * 60
    return {
        "distance": _round_half_up(total, 1),
        "duration": int(_round_half_up(minutes)),
    }


def build_map_url(waypoints: list[dict]) -> str | None:
    """Turn-by-turn directions link; None means the route is incomplete."""
    if len(waypoints) < 2:
        return None

    def _coord(wp):
        return f"{wp['position']['lat']},{wp['position']['lng']}"

    url = (f"{MAPS_DIRECTIONS_URL}&origin={_coord(waypoints[0])}"
           f"&destination={_coord(waypoints[-1])}&travelmode=bicycling")
    if len(waypoints) > 2:
        url += "&waypoints=" + "|".join(_coord(wp) for wp in waypoints[1:-1])
    return url


# ---------------------------------------------------------------------------
# Waypoint validation
# ---------------------------------------------------------------------------

def _coerce_coord(value, low: float, high: float, label: str) -> float:
    if isinstance(value, bool):
        raise ValueError(f"{label} must be a number")
    try:
        num = float(value)
    except (TypeError, ValueError):
        raise ValueError(f"{label} must be a number")
    if math.isnan(num) or not low <= num <= high:
        raise ValueError(f"{label} out of range: {value}")
    return num


def normalize_waypoints(raw) -> list[dict]:
    """
    Validate a decoded waypoint list and re-sequence it.

    Each entry needs position.lat / position.lng in WGS84 degrees.
    `order` is rewritten to 1..n in list order; missing ids are generated.
    Raises ValueError on malformed input.
    """
    if not isinstance(raw, list):
        raise ValueError("waypoints must be a list")

    cleaned = []
    for idx, wp in enumerate(raw, start=1):
        if not isinstance(wp, dict) or not isinstance(wp.get("position"), dict):
            raise ValueError(f"waypoint {idx} has no position")
        pos = wp["position"]
        item = {
            "id":       str(wp.get("id") or uuid.uuid4().hex),
            "position": {
                "lat": _coerce_coord(pos.get("lat"), -90, 90, "lat"),
                "lng": _coerce_coord(pos.get("lng"), -180, 180, "lng"),
            },
            "order":    idx,
        }
        if wp.get("name"):
            item["name"] = str(wp["name"])
        cleaned.append(item)
    return cleaned


def resequence(waypoints: list[dict]) -> list[dict]:
    """Rewrite `order` so it is contiguous from 1 and matches list position."""
    return [{**wp, "order": idx} for idx, wp in enumerate(waypoints, start=1)]


# ---------------------------------------------------------------------------
# Listing order
# ---------------------------------------------------------------------------

def parse_start_time(value) -> datetime | None:
    """Parse an ISO-8601 start time. Naive values are taken as UTC."""
    if not value or not isinstance(value, str):
        return None
    try:
        dt = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    except ValueError:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def order_rides(routes: list[dict], now: datetime | None = None) -> list[dict]:
    """
    Upcoming rides first (soonest first, undated rides last), then past rides
    oldest first. A ride with no start time counts as upcoming.
    """
    now = now or datetime.now(timezone.utc)
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)

    upcoming, past = [], []
    for route in routes:
        start = parse_start_time(route.get("startTime"))
        if start is None or start >= now:
            upcoming.append((start, route))
        else:
            past.append((start, route))

    def _key(pair):
        start = pair[0]
        return (start is None, start or now)

    upcoming.sort(key=_key)
    past.sort(key=_key)
    return [r for _, r in upcoming] + [r for _, r in past]


# ---------------------------------------------------------------------------
# Tag colours
# ---------------------------------------------------------------------------

class TagColor(str, Enum):
    GREEN  = "green"
    BLUE   = "blue"
    PURPLE = "purple"
    INDIGO = "indigo"
    RED    = "red"


TAG_CLASSES = {
    TagColor.GREEN:  "bg-[#ECFDF5] text-[#10B981] border-[#10B981]",
    TagColor.BLUE:   "bg-blue-50 text-blue-600 border-blue-600",
    TagColor.PURPLE: "bg-purple-50 text-purple-600 border-purple-600",
    TagColor.INDIGO: "bg-indigo-50 text-indigo-600 border-indigo-600",
    TagColor.RED:    "bg-red-50 text-red-600 border-red-600",
}

# Labels the organisers use on standing rides; anything else renders green.
KNOWN_TAG_COLORS = {
    "beginner-friendly": TagColor.GREEN,
    "group ride":        TagColor.GREEN,
    "community ride":    TagColor.GREEN,
    "training":          TagColor.BLUE,
    "scenic":            TagColor.BLUE,
    "skatepark":         TagColor.PURPLE,
    "night ride":        TagColor.INDIGO,
    "advanced":          TagColor.RED,
}


def tag_color(label: str) -> TagColor:
    return KNOWN_TAG_COLORS.get(label.strip().lower(), TagColor.GREEN)


def tag_badges(tags: list[str]) -> list[dict]:
    """Ride card badges; an untagged ride shows a single Community Ride badge."""
    if not tags:
        tags = ["Community Ride"]
    badges = []
    for label in tags:
        color = tag_color(label)
        badges.append({"label": label, "color": color.value,
                       "classes": TAG_CLASSES[color]})
    return badges
