"""
Per-blueprint request throttling (Flask-Limiter).

The shared Limiter lives in payflow/__init__.py without default limits;
each blueprint picks its limit from a config key so operators can tune
the decision endpoints separately from the rest of the API.
"""

import logging

logger = logging.getLogger(__name__)

# blueprint name → config key holding its limit string
BLUEPRINT_LIMITS = {
    "approvals": "RATELIMIT_DECISIONS",
    "payment_requests": "RATELIMIT_DEFAULT",
    "notifications": "RATELIMIT_DEFAULT",
    "reference": "RATELIMIT_DEFAULT",
}


def init_rate_limits(app, limiter):
    """Attach the configured limit to every registered blueprint in BLUEPRINT_LIMITS.

    Must run after blueprint registration. The health route stays unthrottled
    because it is registered on the app itself.
    """
    if app.config.get("TESTING") or not app.config.get("RATELIMIT_ENABLED", True):
        logger.info("Rate limiting disabled")
        return

    applied = {}
    for bp_name, key in BLUEPRINT_LIMITS.items():
        bp = app.blueprints.get(bp_name)
        limit = app.config.get(key)
        if bp is None or not limit:
            continue
        limiter.limit(limit)(bp)
        applied[bp_name] = limit

    logger.info("Rate limits applied: %s", applied)
