"""
HTTP API for the order dispatch core.

This package provides a single FastAPI application that exposes:
- Order status transitions and history
- Rider assignment status, offer responses and manual re-dispatch
- Rider location reports
- Bulk notifications and the notification log
"""

from api.main import app

__all__ = ["app"]
