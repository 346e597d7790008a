"""Domain services: geometry, tiering, filtering, sync, ingestion and fetch."""
