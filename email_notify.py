"""
Email notifications for Ride United organisers.
Uses an SMTP relay (default localhost:25, no auth).
Activate by setting EMAIL_ENABLED=true in .env and NOTIFY_EMAIL to the
organisers' inbox.

Notifications are best-effort: a failed send is logged and never breaks
the request that triggered it.
"""

import logging
import smtplib
from email.mime.text import MIMEText

from flask import current_app

log = logging.getLogger(__name__)


def _settings() -> dict:
    cfg = current_app.config
    return {
        "enabled":   cfg.get("EMAIL_ENABLED", False),
        "host":      cfg.get("SMTP_HOST", "localhost"),
        "port":      int(cfg.get("SMTP_PORT", 25)),
        "from":      cfg.get("EMAIL_FROM", "noreply@rideunited.org"),
        "notify_to": cfg.get("NOTIFY_EMAIL", ""),
        "site_url":  cfg.get("SITE_URL", "https://rideunited.org"),
    }


def send_email(to_addr: str, subject: str, body_text: str) -> bool:
    """Send a plain-text email. Returns True on success."""
    ctx = _settings()
    if not ctx["enabled"] or not to_addr:
        return False
    try:
        msg = MIMEText(body_text, "plain")
        msg["Subject"] = subject
        msg["From"]    = ctx["from"]
        msg["To"]      = to_addr
        with smtplib.SMTP(ctx["host"], ctx["port"], timeout=5) as smtp:
            smtp.sendmail(ctx["from"], [to_addr], msg.as_string())
        return True
    except Exception as exc:
        log.error("Email to %s failed: %s", to_addr, exc)
        return False


def notify_route_submitted(route: dict) -> bool:
    ctx = _settings()
    start = route.get("startTime") or "TBD"
    return send_email(
        ctx["notify_to"],
        f"New ride awaiting review: {route['routeName']}",
        f"{route['leaderName']} submitted a new ride.\n\n"
        f"  Ride:     {route['routeName']}\n"
        f"  Start:    {route.get('startingLocation') or 'TBD'} | {start}\n"
        f"  Distance: {route['distance']} mi (~{route['duration']} min)\n"
        f"  Stops:    {len(route['waypoints'])}\n\n"
        f"{route.get('description') or ''}\n\n"
        f"Review it at: {ctx['site_url']}/admin\n",
    )


def notify_contact_submission(submission: dict) -> bool:
    ctx = _settings()
    subject = submission.get("subject") or "(no subject)"
    return send_email(
        ctx["notify_to"],
        f"Contact form: {subject}",
        f"From: {submission['name']} <{submission['email']}>\n\n"
        f"{submission['text']}\n",
    )
