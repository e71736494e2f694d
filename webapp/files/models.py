from datetime import datetime, timezone
from sqlalchemy import String, DateTime, Uuid
from sqlalchemy.orm import Mapped, mapped_column
from webapp.shared.db import Base
import uuid


def _now() -> datetime:
    return datetime.now(timezone.utc)


class FileRecord(Base):
    __tablename__ = "files"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    file_name: Mapped[str] = mapped_column(String(255))
    url: Mapped[str] = mapped_column(String(512))  # storage key in the bucket
    upload_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_now)
