"""Fetching, signal extraction and scoring.

Nothing under core imports MCP, starlette or SQLAlchemy. The orchestrator,
the API handlers and the storage modules build on top of it.
"""
