"""Local storage file serving for development."""

from fastapi import APIRouter, HTTPException, status
from fastapi.responses import FileResponse

from video_renderer.api.deps import Storage
from video_renderer.services.publisher import VIDEO_CONTENT_TYPE
from video_renderer.services.storage_service import LocalStorageService, StorageError

router = APIRouter()


@router.get("/files/{storage_key:path}")
async def get_file(storage_key: str, storage: Storage):
    """Serve rendered videos from local storage."""
    if not isinstance(storage, LocalStorageService):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Local storage not enabled",
        )

    try:
        file_path = storage.get_file_path(storage_key)
    except StorageError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="File not found")
    if not file_path.is_file():
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="File not found",
        )

    media_type = VIDEO_CONTENT_TYPE if file_path.suffix.lower() == ".mp4" else "application/octet-stream"
    return FileResponse(
        path=str(file_path),
        media_type=media_type,
        filename=file_path.name,
    )
