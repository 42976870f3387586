#!/usr/bin/env python3
"""
Seed script for the Ride United standing rides.

  • Backwards Riding Clinic          (Boston Common)
  • Boston Common to Rivergreen Park (group ride)
  • Wednesday Skatepark Sesh         (Lynch Family Skatepark)
  • Intro 2 Speed                    (Rivergreen Park)

Each ride is submitted and approved through the normal route lifecycle, so
stats and map links are computed exactly as for rider submissions. Rides whose
name is already on the approved board are skipped; re-running is safe.

Usage:  python seed_samples.py
"""

import logging

import models
from app import create_app

log = logging.getLogger("seed_samples")

# ── waypoints ─────────────────────────────────────────────────────────────────

def _wp(lat, lng, name):
    return {"position": {"lat": lat, "lng": lng}, "name": name}


BOSTON_COMMON  = _wp(42.3554, -71.0655, "Boston Common")
FROG_POND      = _wp(42.3560, -71.0659, "Frog Pond")
PARKMAN_STAND  = _wp(42.3547, -71.0642, "Parkman Bandstand")
ESPLANADE      = _wp(42.3601, -71.0731, "Charles River Esplanade")
NASHUA_ST_PARK = _wp(42.3680, -71.0640, "Nashua Street Park")
SKATEPARK      = _wp(42.3712, -71.0676, "Lynch Family Skatepark")
SKATEPARK_LOT  = _wp(42.3706, -71.0690, "Skatepark lot")
RIVERGREEN     = _wp(42.3995, -71.0701, "Rivergreen Park")
RIVERGREEN_LOT = _wp(42.3989, -71.0716, "Rivergreen lot")

# ── rides ─────────────────────────────────────────────────────────────────────

STANDING_RIDES = [
    {
        "routeName":        "Backwards Riding Clinic",
        "description":      "Practice backwards riding on the lawn at Boston Common. "
                            "All skill levels welcome!",
        "leaderName":       "BPEV Admins",
        "startingLocation": "Boston Common",
        "startTime":        "2025-12-02T17:00:00",
        "tags":             ["Beginner-Friendly", "Training"],
        "waypoints":        [BOSTON_COMMON, PARKMAN_STAND],
    },
    {
        "routeName":        "Boston Common to Rivergreen Park",
        "description":      "A scenic group ride from the heart of Boston to Rivergreen "
                            "Park. Enjoy the city views and bike paths!",
        "leaderName":       "BPEV Admins",
        "startingLocation": "Boston Common Frog Pond",
        "startTime":        "2025-12-07T12:00:00",
        "tags":             ["Group Ride", "Scenic"],
        "waypoints":        [FROG_POND, ESPLANADE, NASHUA_ST_PARK, RIVERGREEN],
    },
    {
        "routeName":        "Wednesday Skatepark Sesh",
        "description":      "Join us for tricks and skills practice at the local "
                            "skatepark. All skill levels welcome!",
        "leaderName":       "Zach Abelson",
        "startingLocation": "Lynch Family Skatepark",
        "startTime":        "2024-12-04T18:00:00",
        "tags":             ["Beginner-Friendly", "Skatepark"],
        "waypoints":        [SKATEPARK_LOT, SKATEPARK],
    },
    {
        "routeName":        "Intro 2 Speed",
        "description":      "Learn the basics of high-speed riding with safety tips "
                            "and group support.",
        "leaderName":       "BPEV Admins",
        "startingLocation": "Rivergreen Park",
        "startTime":        "2024-12-06T18:00:00",
        "tags":             ["Advanced", "Training"],
        "waypoints":        [RIVERGREEN_LOT, RIVERGREEN],
    },
]


def seed_rides(rides=STANDING_RIDES) -> int:
    """Submit and approve each ride not already on the board. Returns the count added."""
    existing = {r["routeName"] for r in models.list_approved_routes()}
    added = 0
    for ride in rides:
        if ride["routeName"] in existing:
            log.info("Skipping %s (already on the board)", ride["routeName"])
            continue
        route = models.submit_route(ride)
        models.approve_route(route["id"])
        log.info("Seeded %s: %.1f mi, ~%d min", route["routeName"],
                 route["distance"], route["duration"])
        added += 1
    return added


if __name__ == "__main__":
    app = create_app()
    with app.app_context():
        count = seed_rides()
    print(f"Seeded {count} standing ride(s).")
