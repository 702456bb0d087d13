# FILE: pharmledger/api/deps.py
from __future__ import annotations

from typing import Generator, Optional

from sqlalchemy.orm import Session

from pharmledger.core.config import settings
from pharmledger.core.license import LicenseStatus, license_status_from_settings
from pharmledger.db.session import SessionLocal


def get_db() -> Generator[Session, None, None]:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_license_status() -> Optional[LicenseStatus]:
    """
    License capability for this request. None (not enforced) lets writes
    through with a warning.
    """
    if not settings.LICENSE_ENFORCED:
        return None
    return license_status_from_settings()
