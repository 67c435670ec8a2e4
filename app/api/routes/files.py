from typing import Any

from fastapi import APIRouter, File, Form, Query, UploadFile
from fastapi.responses import Response

from app.api.deps import BlobStoreDep, CurrentPrincipal
from app.models import ImageKind, UploadedFilePublic
from app.services.blob import build_key, check_upload, content_type_for_key

router = APIRouter(prefix="/files", tags=["files"])


@router.post("/", response_model=UploadedFilePublic)
async def upload_file(
    *,
    principal: CurrentPrincipal,
    blobs: BlobStoreDep,
    file: UploadFile = File(...),
    kind: ImageKind = Form(...),
) -> Any:
    """
    Upload a document photo or selfie into the caller's private area.
    """
    content = await file.read()
    content_type = check_upload(file.content_type, content)

    key = build_key(principal.subject_id, kind, content_type)
    blobs.put(key, content, content_type)
    return UploadedFilePublic(
        key=key, kind=kind, content_type=content_type, size_bytes=len(content)
    )


@router.get("/download")
def download_file(blobs: BlobStoreDep, token: str = Query(...)) -> Response:
    key = blobs.verify_signed_token(token)
    return Response(content=blobs.read(key), media_type=content_type_for_key(key))
