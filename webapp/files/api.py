from datetime import datetime, timedelta, timezone

from fastapi import APIRouter, Depends, Request, Response
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from starlette.datastructures import UploadFile

from webapp.files.models import FileRecord
from webapp.files.schemas import FileOut, SignedUrlOut
from webapp.files.service import upload_file, get_file, delete_file
from webapp.files.storage import ObjectStoreError
from webapp.shared.db import get_db
from webapp.shared.guard import reject_query_params, reject_body, single_file_part, read_image
from webapp.shared.http import ApiError, INTERNAL_ERROR, empty
from webapp.shared.logger import get_logger

router = APIRouter(prefix="/v1/file", tags=["Files"])
logger = get_logger("api")

NOT_FOUND = "File not found"
UNSUPPORTED_METHODS = ["HEAD", "OPTIONS", "PATCH", "PUT"]
STORE_ERRORS = (ObjectStoreError, SQLAlchemyError)


def get_object_store(request: Request):
    return request.app.state.object_store


def _existing(db: Session, file_id: str) -> FileRecord:
    try:
        f = get_file(db, file_id)
    except SQLAlchemyError:
        logger.exception(f"Error getting file {file_id}")
        raise ApiError(500, INTERNAL_ERROR)
    if not f:
        raise ApiError(404, NOT_FOUND)
    return f


@router.post("", response_model=FileOut, status_code=201, dependencies=[Depends(reject_query_params)])
def upload(
    request: Request,
    file: UploadFile | None = Depends(single_file_part),
    db: Session = Depends(get_db),
    store=Depends(get_object_store),
):
    data = read_image(file, request.app.state.settings.MAX_UPLOAD_BYTES)
    try:
        rec = upload_file(db, store, file.filename, file.content_type, data)
    except STORE_ERRORS:
        logger.exception("Error uploading file")
        raise ApiError(500, INTERNAL_ERROR)
    logger.info(
        "File uploaded",
        extra={"action": "file.upload", "metadata": {"id": str(rec.id), "key": rec.url, "bytes": len(data)}},
    )
    return rec


@router.get("/{file_id}", response_model=FileOut, dependencies=[Depends(reject_query_params), Depends(reject_body)])
def file_meta(file_id: str, db: Session = Depends(get_db)):
    # metadata only, never the content
    return _existing(db, file_id)


@router.get(
    "/{file_id}/download",
    response_model=SignedUrlOut,
    dependencies=[Depends(reject_query_params), Depends(reject_body)],
)
def file_download(file_id: str, request: Request, db: Session = Depends(get_db), store=Depends(get_object_store)):
    f = _existing(db, file_id)
    expires_in = request.app.state.settings.PRESIGN_EXPIRE_SECONDS
    try:
        url = store.url_for(f.url, expires_in)
    except ObjectStoreError:
        logger.exception(f"Error signing download for file {file_id}")
        raise ApiError(500, INTERNAL_ERROR)
    return {"url": url, "expires_at": datetime.now(timezone.utc) + timedelta(seconds=expires_in)}


@router.delete("/{file_id}", status_code=204, dependencies=[Depends(reject_query_params), Depends(reject_body)])
def remove_file(file_id: str, db: Session = Depends(get_db), store=Depends(get_object_store)):
    f = _existing(db, file_id)
    try:
        delete_file(db, store, f)
    except STORE_ERRORS:
        logger.exception(f"Error deleting file {file_id}")
        raise ApiError(500, INTERNAL_ERROR)
    logger.info("File deleted", extra={"action": "file.delete", "metadata": {"id": file_id}})
    return Response(status_code=204)


# 405 for everything outside POST/GET/DELETE
@router.api_route("", methods=UNSUPPORTED_METHODS, include_in_schema=False)
@router.api_route("/{file_id}", methods=UNSUPPORTED_METHODS, include_in_schema=False)
def method_not_allowed():
    return empty(405)
