"""
RefDB Test Suite.

This package contains:
- unit/: Unit tests (SQLite in a temp dir, in-memory handle service)
- integration/: Integration tests (in-process WebSocket and HTTP servers)
"""
