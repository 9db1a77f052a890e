"""
Rate limiting configuration.

Applies per-blueprint rate limits using Flask-Limiter.
The Limiter instance is created in app/__init__.py with no default limits;
this module applies granular limits per route category.

Usage:
    from app.middleware.rate_limiter import init_rate_limits
    init_rate_limits(app, limiter)
"""

import logging

logger = logging.getLogger(__name__)

WRITE_HEAVY_BLUEPRINTS = (
    "incidents", "records", "verifier", "proposed_changes", "projects", "edit_suggestions", "admin",
)


def init_rate_limits(app, limiter):
    """
    Apply rate limits to API blueprints.

    Limits (per remote IP):
        - Credits / AI usage:   10/minute  (AI operations are metered)
        - Review & record APIs: 60/minute
        - Login:                20/minute
        - Health, billing:      exempt (orchestrator checks and signed provider callbacks)

    Rate limiting is disabled in testing mode.
    """

    if app.config.get("TESTING"):
        app.logger.info("Rate limiter disabled (TESTING=True)")
        return

    bp = app.blueprints.get("credits")
    if bp:
        limiter.limit("10/minute")(bp)

    for bp_name in WRITE_HEAVY_BLUEPRINTS:
        bp = app.blueprints.get(bp_name)
        if bp:
            limiter.limit("60/minute")(bp)

    bp = app.blueprints.get("auth")
    if bp:
        limiter.limit("20/minute")(bp)

    for bp_name in ("health", "billing"):
        bp = app.blueprints.get(bp_name)
        if bp:
            limiter.exempt(bp)

    app.logger.info("Rate limiter configured — credits: 10/min, review/records: 60/min, auth: 20/min")
