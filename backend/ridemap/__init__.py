"""Ride map backend: GPS track tiering and viewport-driven rendering.

This package turns raw RideWithGPS trip recordings into three GeoJSON
geometry tiers (full, medium and coarse), stores the per-ride metadata users
filter by, and keeps a map widget in step with the current viewport, zoom
and attribute filter.

- Fetches raw trips from RideWithGPS with retry and an on-disk cache
- Sanitizes tracks and simplifies them with adaptive Douglas-Peucker tolerances
- Stores ride metadata in PostgreSQL behind a repository protocol
- Serves filtered metadata and tier artifacts through a FastAPI application
- Synchronizes drawn rides with navigation events through a debounced engine

See module sub-docstrings for details on architecture and usage.
"""
