# FILE: pharmledger/core/license.py
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional, Union

from pharmledger.core.config import settings
from pharmledger.core.errors import GuardRejected

DateLike = Union[str, datetime, None]


@dataclass(frozen=True)
class LicenseStatus:
    """
    Snapshot of the subscription state handed to every write call.

    Computed once by the caller (see `calculate_license_status`) and passed
    explicitly; the ledger never looks it up on its own.
    """
    is_demo_expired: bool = False
    is_license_expired: bool = False
    is_grace_period: bool = False
    grace_days_remaining: int = 0
    expiry_date: Optional[datetime] = None
    days_since_expiry: int = 0

    @property
    def is_expired(self) -> bool:
        return self.is_demo_expired or self.is_license_expired

    @property
    def can_write(self) -> bool:
        return not self.is_expired or self.is_grace_period


ACTIVE = LicenseStatus()


def _parse_dt(value: DateLike) -> Optional[datetime]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        dt = value
    else:
        dt = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def calculate_license_status(
    is_demo: bool,
    demo_expires_at: DateLike,
    license_expires_at: DateLike,
    *,
    now: Optional[datetime] = None,
    grace_days: Optional[int] = None,
) -> LicenseStatus:
    """
    Demo licenses stop hard at expiry; paid licenses keep write access for
    `grace_days` whole days after expiry.
    """
    now = _parse_dt(now) or datetime.now(timezone.utc)
    grace = settings.LICENSE_GRACE_DAYS if grace_days is None else grace_days

    demo_expiry = _parse_dt(demo_expires_at)
    license_expiry = _parse_dt(license_expires_at)

    is_demo_expired = bool(is_demo and demo_expiry and now > demo_expiry)
    is_license_expired = bool(
        not is_demo and license_expiry and now > license_expiry)

    is_grace_period = False
    grace_days_remaining = 0
    if is_license_expired and license_expiry:
        days = (now - license_expiry).days
        if days <= grace:
            is_grace_period = True
            grace_days_remaining = grace - days

    expiry = demo_expiry if is_demo else license_expiry
    days_since_expiry = (now - expiry).days if expiry and now > expiry else 0

    return LicenseStatus(
        is_demo_expired=is_demo_expired,
        is_license_expired=is_license_expired,
        is_grace_period=is_grace_period,
        grace_days_remaining=grace_days_remaining,
        expiry_date=expiry,
        days_since_expiry=days_since_expiry,
    )


def license_status_from_settings(now: Optional[datetime] = None) -> LicenseStatus:
    return calculate_license_status(
        settings.LICENSE_IS_DEMO,
        settings.LICENSE_DEMO_EXPIRES_AT,
        settings.LICENSE_EXPIRES_AT,
        now=now,
    )


def assert_license_active(status: LicenseStatus) -> None:
    if status.is_expired and not status.is_grace_period:
        raise GuardRejected(
            "Your license has expired. Contact support to renew.",
            kind="demo" if status.is_demo_expired else "paid",
        )
