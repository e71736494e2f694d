from pydantic import BaseModel, ConfigDict
from datetime import datetime
import uuid


class FileOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    id: uuid.UUID
    file_name: str
    url: str
    upload_date: datetime


class SignedUrlOut(BaseModel):
    url: str
    expires_at: datetime
