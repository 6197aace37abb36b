"""
API endpoints for attachment uploads and downloads.

Uploading is the first phase of sending a message with attachments:
``POST /files`` stores a batch and returns one reference per file, in
order.  The references' ids are then passed to a reply.
"""

from typing import List

from fastapi import APIRouter, Depends, File, HTTPException, UploadFile, status
from fastapi.responses import FileResponse

from support_desk.app.core.security import get_current_user
from support_desk.app.schemas.ticket import AttachmentRead
from support_desk.app.services.errors import SupportError
from support_desk.app.services.file_service import FileService

router = APIRouter()


@router.post(
    "",
    response_model=List[AttachmentRead],
    status_code=status.HTTP_201_CREATED,
    summary="Upload attachments",
)
async def upload_files(
    files: List[UploadFile] = File(..., description="Files to store, in display order"),
    current_user: dict = Depends(get_current_user),
) -> List[AttachmentRead]:
    """Store every file of the form field ``files``.

    The batch either succeeds as a whole or nothing is stored.
    """
    incoming = [(f.filename or "", f.content_type or "", await f.read()) for f in files]
    try:
        return await FileService.upload_files(incoming, current_user)
    except SupportError as e:
        raise HTTPException(status_code=e.http_status, detail=e.as_detail())


@router.get("/{attachment_id}", summary="Download an attachment")
async def download_file(
    attachment_id: str,
    current_user: dict = Depends(get_current_user),
) -> FileResponse:
    """Return the stored file to its uploader or to anyone who can see its ticket."""
    try:
        path, name, content_type = await FileService.get_for_download(attachment_id, current_user)
    except SupportError as e:
        raise HTTPException(status_code=e.http_status, detail=e.as_detail())
    return FileResponse(path, media_type=content_type, filename=name)
