from datetime import datetime
from sqlalchemy import DateTime, Integer
from sqlalchemy.orm import Mapped, mapped_column
from webapp.shared.db import Base


class HealthCheck(Base):
    __tablename__ = "health_check"

    check_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    # column keeps its historical name "datetime"
    checked_at: Mapped[datetime] = mapped_column("datetime", DateTime(timezone=True), nullable=False)
