# clubhouse/routers/health.py
from __future__ import annotations

import logging

from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from clubhouse.config import APP_VERSION, get_settings
from clubhouse.database import get_db

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])


@router.get("/health")
def health(db: Session = Depends(get_db)):
    try:
        db.execute(text("SELECT 1"))
        db_status = "ok"
    except SQLAlchemyError as e:
        logger.error("HEALTH db check failed: %s", e)
        db_status = "error"
    return {"status": "ok", "db": db_status}


@router.get("/version")
def version():
    return {"version": APP_VERSION, "environment": get_settings().environment}
