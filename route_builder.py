"""
Waypoint list behind the route-creation flow.

The map UI clicks points in; RouteBuilder keeps them ordered, re-sequences
them when one is removed, and produces the form the backend expects.
"""

import json
import uuid

import route_stats


class RouteBuilder:
    """Ordered waypoint list. `order` always runs 1..n in list order."""

    def __init__(self, waypoints: list[dict] | None = None):
        self.waypoints: list[dict] = []
        if waypoints:
            self.load(waypoints)

    def __len__(self):
        return len(self.waypoints)

    def load(self, waypoints: list[dict]):
        """Replace the list, e.g. when editing a submitted route."""
        self.waypoints = route_stats.normalize_waypoints(waypoints)

    def add(self, lat: float, lng: float, name: str | None = None) -> dict:
        wp = {
            "id":       uuid.uuid4().hex,
            "position": {"lat": lat, "lng": lng},
            "order":    len(self.waypoints) + 1,
        }
        if name:
            wp["name"] = name
        self.waypoints.append(wp)
        return wp

    def remove(self, waypoint_id: str) -> bool:
        kept = [wp for wp in self.waypoints if wp["id"] != waypoint_id]
        if len(kept) == len(self.waypoints):
            return False
        self.waypoints = route_stats.resequence(kept)
        return True

    def clear(self):
        self.waypoints = []

    def is_complete(self) -> bool:
        return len(self.waypoints) >= 2

    def stats(self) -> dict:
        return route_stats.compute_route_stats(self.waypoints)

    def map_url(self) -> str | None:
        return route_stats.build_map_url(self.waypoints)

    def to_form(self, fields: dict) -> dict:
        """
        Multipart fields for POST /routes and PUT /routes/<id>.

        `fields` carries routeName, description, leaderName, startingLocation,
        startTime and tags. The server recomputes distance and time itself.
        """
        stats = self.stats()
        form = {
            "routeName":        fields.get("routeName", ""),
            "description":      fields.get("description", ""),
            "leaderName":       fields.get("leaderName", ""),
            "startingLocation": fields.get("startingLocation", ""),
            "startTime":        fields.get("startTime", ""),
            "mapUrl":           self.map_url() or "",
            "waypoints":        json.dumps(self.waypoints),
            "tags":             json.dumps(list(fields.get("tags") or [])),
            "distance":         str(stats["distance"]),
            "time":             str(stats["duration"]),
        }
        if fields.get("userId"):
            form["userId"] = fields["userId"]
        return form
