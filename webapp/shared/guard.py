"""
Request-shape gate, used as FastAPI dependencies.

Shape violations (query string, body or form fields a route does not take)
are rejected with an empty 400. Content violations on uploads (missing file,
wrong type, too large) get a JSON error body.
"""

from fastapi import Request
from starlette.datastructures import UploadFile

from webapp.shared.http import ApiError

UPLOAD_FIELD = "file"

# jpg and jpeg are the same type; some clients still send image/jpg
ALLOWED_CONTENT_TYPES = {"image/jpeg", "image/jpg", "image/png"}

NO_FILE = "No file uploaded"
INVALID_TYPE = "Invalid file type. Only JPEG, JPG, and PNG are allowed."


def reject_query_params(request: Request):
    if request.query_params:
        raise ApiError(400)


async def reject_body(request: Request):
    body = await request.body()
    if body.strip():
        raise ApiError(400)


async def single_file_part(request: Request) -> UploadFile | None:
    """Return the ``file`` part of a multipart body, or None when absent."""
    form = await request.form()
    part = form.get(UPLOAD_FIELD)
    if not isinstance(part, UploadFile) or not part.filename:
        return None
    # extra fields only matter once there is a file to reject them with
    if set(form.keys()) - {UPLOAD_FIELD} or len(form.getlist(UPLOAD_FIELD)) > 1:
        part.file.close()
        raise ApiError(400)
    return part


def read_image(upload: UploadFile | None, max_bytes: int) -> bytes:
    if upload is None:
        raise ApiError(400, NO_FILE)
    try:
        if (upload.content_type or "").lower() not in ALLOWED_CONTENT_TYPES:
            raise ApiError(400, INVALID_TYPE)
        data = upload.file.read(max_bytes + 1)
    finally:
        upload.file.close()
    if len(data) > max_bytes:
        raise ApiError(400, f"File too large. Maximum size is {max_bytes // (1024 * 1024)} MB.")
    return data
