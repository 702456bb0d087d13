# FILE: pharmledger/utils/ids.py
from __future__ import annotations

import uuid


def new_id(prefix: str) -> str:
    """
    med_3f2a..., batch_91c0..., bill_7d1e...
    Stable string ids so snapshots restore idempotently across installs.
    """
    return f"{prefix}_{uuid.uuid4().hex}"
