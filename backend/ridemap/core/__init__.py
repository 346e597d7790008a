"""Cross-cutting configuration for the ride map backend."""
