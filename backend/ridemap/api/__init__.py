"""API router subpackage for the ride map backend.

Submodules:
    - rides: Endpoints for listing and filtering rides and resolving the
      GeoJSON artifact of a geometry tier.
    - ingest: Endpoints for uploading raw ride payloads and running the
      preprocessing pipeline.

Each module exposes its own APIRouter for composition in the application's
main FastAPI instance.
"""
