"""
FastAPI dependencies (DB session, settings, user time zone)
"""
from typing import Generator
from zoneinfo import ZoneInfo

from fastapi import Request
from sqlalchemy.orm import Session

from lifeledger.config import Settings


def get_db(request: Request) -> Generator[Session, None, None]:
    """
    One session per request, from the factory created in create_app()

    Usage:
        @router.get("/")
        def handler(db: Session = Depends(get_db)):
            ...
    """
    db = request.app.state.session_factory()
    try:
        yield db
    finally:
        db.close()


def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_timezone(request: Request) -> ZoneInfo:
    """User's local calendar (period windows, alert days)"""
    return ZoneInfo(request.app.state.settings.TIMEZONE)
