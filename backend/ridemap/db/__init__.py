"""Database interface and repository abstractions.

This module consolidates database interfaces/protocols and repository patterns
for ride metadata management. It provides a stable import location for
repository dependency injection throughout the application, supporting
production and testing backends.

Example:
    Use in a service or FastAPI dependency:
        >>> from ridemap.db import database
        >>> repo = database.get_ride_repository(settings)
"""
