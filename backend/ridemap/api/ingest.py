"""Raw ride upload and preprocessing API endpoints.

This module provides REST API endpoints for uploading raw RideWithGPS trip
payloads and running the tier generation pipeline on them. The upload
endpoint accepts a multipart file upload and stores it temporarily; the
ingest endpoint processes one upload, and the batch endpoint processes
every payload in the configured raw rides directory.

Example:
    Upload and ingest one ride:
        >>> # Step 1: Upload file
        >>> response = client.post(
        ...     "/api/rides/upload",
        ...     files={"file": ("331424522.json", open("331424522.json", "rb"))}
        ... )
        >>> upload_id = response.json()["upload_id"]

        >>> # Step 2: Generate the tiers and store the metadata
        >>> response = client.post(f"/api/rides/ingest/{upload_id}")
        >>> response.json()["status"]
        'ok'

    Reprocess every downloaded ride:
        >>> response = client.post("/api/rides/ingest")
        >>> response.json()["summary"]
        {'ok': 41, 'no_geometry': 1, 'failed': 0}
"""

from __future__ import annotations

import dataclasses
import json
import shutil
import tempfile
import uuid
from typing import TYPE_CHECKING, Any

import fastapi
from typing_extensions import TypedDict

from ridemap.api import rides as api_rides
from ridemap.core import config
from ridemap.db import database
from ridemap.services import ingest_rides

if TYPE_CHECKING:
    import pathlib

router = fastapi.APIRouter(prefix="/api/rides", tags=["ingest"])

_upload_cache: dict[str, pathlib.Path] = {}


class UploadResponse(TypedDict):
    upload_id: str
    filename: str | None
    path: str | None


def _save_upload(
    file: fastapi.UploadFile,
    storage_dir: pathlib.Path,
    max_size: int,
) -> pathlib.Path:
    """Persist an uploaded file to disk with size validation.

    Args:
        file: FastAPI UploadFile object containing the file data.
        storage_dir: Directory where the file should be saved.
        max_size: Maximum allowed file size in bytes.

    Returns:
        Path to the saved file.

    Raises:
        HTTPException: If the file exceeds the maximum size limit.
    """
    storage_dir.mkdir(parents=True, exist_ok=True)
    target_path = storage_dir / f"{uuid.uuid4()}.json"
    with tempfile.NamedTemporaryFile(delete=False, dir=storage_dir) as tmp:
        size = 0
        for chunk in iter(lambda: file.file.read(1024 * 1024), b""):
            size += len(chunk)
            if size > max_size:
                raise fastapi.HTTPException(
                    status_code=413,
                    detail="Upload too large",
                )

            tmp.write(chunk)

        tmp.flush()

    shutil.move(tmp.name, target_path)

    return target_path


@router.post("/upload")
async def upload_ride(
    file: fastapi.UploadFile,
    settings: config.Settings = fastapi.Depends(config.get_settings),  # noqa: B008
) -> UploadResponse:
    """Accept a raw ride JSON upload and store it temporarily.

    Args:
        file: Uploaded file from multipart form data.
        settings: Application settings (injected via FastAPI Depends).

    Returns:
        Dictionary containing upload_id, filename, and storage path.

    Raises:
        HTTPException: If the file exceeds the maximum upload size.
    """
    saved_path = _save_upload(
        file,
        settings.storage_dir,
        settings.max_upload_size_bytes,
    )

    upload_id = str(uuid.uuid4())

    _upload_cache[upload_id] = saved_path

    return UploadResponse(
        upload_id=upload_id,
        filename=file.filename,
        path=str(saved_path),
    )


@router.post("/ingest/{upload_id}")
async def ingest_upload(
    upload_id: str,
    settings: config.Settings = fastapi.Depends(config.get_settings),  # noqa: B008
    repo: database.RideRepositoryProtocol = fastapi.Depends(  # noqa: B008
        api_rides._get_repo
    ),
) -> dict[str, Any]:
    """Generate the geometry tiers of an uploaded ride and store it.

    Args:
        upload_id: ID returned from the upload endpoint.
        settings: Application settings (injected via FastAPI Depends).
        repo: Ride repository for storing metadata
            (injected via FastAPI Depends).

    Returns:
        The ingest outcome plus the stored ride.

    Raises:
        HTTPException: If upload_id is not found (404) or the payload is
            not a usable ride (422).
    """
    source_path = _upload_cache.get(upload_id)
    if not source_path:
        raise fastapi.HTTPException(
            status_code=404,
            detail="Upload not found",
        )

    try:
        payload = json.loads(source_path.read_text(encoding="utf-8"))
        outcome = ingest_rides.ingest_payload(
            payload,
            repo,
            settings,
            source=source_path.name,
        )
    except (
        json.JSONDecodeError,
        UnicodeDecodeError,
        ingest_rides.MalformedRideError,
    ) as exc:
        raise fastapi.HTTPException(
            status_code=422,
            detail=f"Malformed ride: {exc}",
        ) from exc

    _upload_cache.pop(upload_id, None)
    ride = repo.get(outcome.ride_id) if outcome.ride_id else None
    result = dataclasses.asdict(outcome)
    result["ride"] = api_rides.ride_to_dict(ride) if ride else None
    return result


@router.post("/ingest")
async def ingest_all(
    settings: config.Settings = fastapi.Depends(config.get_settings),  # noqa: B008
    repo: database.RideRepositoryProtocol = fastapi.Depends(  # noqa: B008
        api_rides._get_repo
    ),
) -> dict[str, Any]:
    """Process every raw ride payload in the configured directory.

    Returns:
        Per-file outcomes and a count per status.
    """
    outcomes = ingest_rides.ingest_directory(
        settings.raw_rides_dir, repo, settings
    )
    return {
        "summary": ingest_rides.summarize(outcomes),
        "outcomes": [dataclasses.asdict(outcome) for outcome in outcomes],
    }
