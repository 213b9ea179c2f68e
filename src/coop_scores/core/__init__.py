"""Core business logic — scoring, grading, API clients and data models.

This module has no dependency on the database or the MCP server. The
season runner and the server both import from here.
"""
