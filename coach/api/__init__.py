"""
API module - FastAPI routes and HTTP handling.

This module handles:
- Access tiers and the session cookie (access.py)
- Route definitions (routes/)
- Application assembly, middleware and error handlers (main.py)

The application is built by ``coach.api.main.create_app``; importing this
package does not build it.
"""
