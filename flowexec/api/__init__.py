"""
API package - FastAPI routes and schemas.
"""

from flowexec.api.routes import executions, tools, websocket, workflows

__all__ = ["executions", "tools", "websocket", "workflows"]
