from datetime import datetime, timezone

from fastapi import APIRouter, Depends, Response
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from webapp.health.models import HealthCheck
from webapp.shared.db import get_db
from webapp.shared.guard import reject_query_params, reject_body
from webapp.shared.http import empty
from webapp.shared.logger import get_logger
from webapp.shared.metrics import observe

router = APIRouter(tags=["Health"])
logger = get_logger("api")


@observe("db", "health_check_insert")
def record_check(db: Session) -> HealthCheck:
    check = HealthCheck(checked_at=datetime.now(timezone.utc))
    db.add(check)
    db.commit()
    return check


@router.get("/healthz", status_code=200, dependencies=[Depends(reject_query_params), Depends(reject_body)])
def healthz(db: Session = Depends(get_db)):
    try:
        record_check(db)
    except SQLAlchemyError:
        logger.exception("Failed to insert HealthCheck record")
        return empty(503)
    return Response(status_code=200)


@router.api_route(
    "/healthz",
    methods=["POST", "PUT", "PATCH", "DELETE", "HEAD", "OPTIONS"],
    include_in_schema=False,
)
def healthz_method_not_allowed():
    return empty(405)
