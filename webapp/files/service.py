from datetime import datetime, timezone
from urllib.parse import quote
from sqlalchemy.orm import Session
import uuid

from webapp.files.models import FileRecord
from webapp.shared.metrics import observe


def storage_key(file_name: str) -> str:
    # a name without "." keeps an empty suffix: files/<uuid>.
    extension = file_name.rsplit(".", 1)[1] if "." in file_name else ""
    return f"files/{uuid.uuid4()}.{extension}"


def object_metadata(file_name: str, content_type: str, uploaded_at: datetime) -> dict[str, str]:
    # S3 user metadata travels as HTTP headers, so it has to stay ASCII
    return {
        "content-type": content_type,
        "original-name": quote(file_name, safe=""),
        "upload-date": uploaded_at.isoformat(),
    }


@observe("db", "file_create")
def _create_record(db: Session, file_name: str, key: str, uploaded_at: datetime) -> FileRecord:
    rec = FileRecord(file_name=file_name, url=key, upload_date=uploaded_at)
    db.add(rec)
    db.commit()
    db.refresh(rec)
    return rec


@observe("db", "file_find")
def get_file(db: Session, file_id: str) -> FileRecord | None:
    try:
        pk = uuid.UUID(file_id)
    except ValueError:
        return None
    return db.get(FileRecord, pk)


@observe("db", "file_destroy")
def _destroy_record(db: Session, rec: FileRecord) -> None:
    db.delete(rec)
    db.commit()


def upload_file(db: Session, store, file_name: str, content_type: str, data: bytes) -> FileRecord:
    """
    Put the blob first, then write the row. A failure in between leaves an
    orphan blob, never a row without its object.
    """
    key = storage_key(file_name)
    uploaded_at = datetime.now(timezone.utc)
    store.put(data, key, content_type, object_metadata(file_name, content_type, uploaded_at))
    return _create_record(db, file_name, key, uploaded_at)


def delete_file(db: Session, store, rec: FileRecord) -> None:
    store.delete(rec.url)
    _destroy_record(db, rec)
