"""
Rate limiting configuration.

The Limiter instance is created in querydesk/__init__.py with no default
limits; this module applies limits to the write-heavy endpoints that a
double-clicking client can hammer.

Usage:
    from querydesk.middleware.rate_limiter import init_rate_limits
    init_rate_limits(app, limiter)
"""

import logging

logger = logging.getLogger(__name__)

# endpoint name -> config key holding the limit string
_ENDPOINT_LIMITS = {
    "chat.post_message": "RATELIMIT_CHAT",
    "approval.create_request": "RATELIMIT_APPROVAL_REQUESTS",
    "approval.decide_request": "RATELIMIT_APPROVAL_REQUESTS",
}


def init_rate_limits(app, limiter):
    """
    Apply per-route limits to chat posting and approval routing.

    Limits are keyed by remote IP and disabled when
    ``RATELIMIT_ENABLED`` is false (the testing config).
    """
    if not app.config.get("RATELIMIT_ENABLED", True):
        app.logger.info("Rate limiter disabled (RATELIMIT_ENABLED=False)")
        return

    for endpoint, key in _ENDPOINT_LIMITS.items():
        view = app.view_functions.get(endpoint)
        if view is None:
            continue
        app.view_functions[endpoint] = limiter.limit(app.config[key])(view)

    bp = app.blueprints.get("health")
    if bp:
        limiter.exempt(bp)

    app.logger.info(
        "Rate limiter configured: chat: %s, approval requests: %s",
        app.config["RATELIMIT_CHAT"], app.config["RATELIMIT_APPROVAL_REQUESTS"],
    )
