# FILE: pharmledger/api/response.py
from __future__ import annotations

from typing import Any, Optional

from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse


def ok(data: Any = None, *, status_code: int = 200) -> JSONResponse:
    """{"ok": true, "data": ...}"""
    return JSONResponse(status_code=status_code,
                        content=jsonable_encoder({"ok": True, "data": data}))


def err(
    msg: str = "Something went wrong",
    *,
    status_code: int = 400,
    code: Optional[str] = None,
    details: Any = None,
) -> JSONResponse:
    """{"ok": false, "error": {"msg", "code", "details"}}; `code` is the LedgerError code."""
    error = {"msg": msg, "code": code, "details": details}
    return JSONResponse(status_code=status_code,
                        content=jsonable_encoder({"ok": False, "error": error}))
