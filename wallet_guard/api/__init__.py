"""
HTTP API for wallet_guard.
"""

from .app import create_app, create_app_from_config

__all__ = ["create_app", "create_app_from_config"]
