"""
Security headers middleware.

Every response is JSON, so the policy is locked down: nothing may be
framed, sniffed or loaded from the response.

Usage:
    from app.middleware.security_headers import init_security_headers
    init_security_headers(app)
"""

_HEADERS = {
    "Content-Security-Policy": "default-src 'none'; frame-ancestors 'none'",
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "Strict-Transport-Security": "max-age=31536000; includeSubDomains",
    "Referrer-Policy": "no-referrer",
    "Cache-Control": "no-store",
}


def init_security_headers(app):
    """Register after_request handler that injects security headers."""

    @app.after_request
    def _add_security_headers(response):
        for name, value in _HEADERS.items():
            response.headers.setdefault(name, value)
        # Remove server identification
        response.headers.pop("Server", None)
        return response
