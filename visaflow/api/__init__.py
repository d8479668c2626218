"""
API package - FastAPI routes and schemas.
"""

from visaflow.api.routes import instances, watchers, websocket, workflows

__all__ = ["instances", "watchers", "websocket", "workflows"]
