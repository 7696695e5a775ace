"""
Correlation ids for request tracing.
"""

import secrets


def new_correlation_id() -> str:
    """Return a short opaque id tagging every log record of one request."""
    return secrets.token_hex(4)
