from __future__ import annotations
import asyncio
from fastapi import APIRouter, Body, Depends, HTTPException, Query, Response
from fastapi.responses import JSONResponse

from ..core.config import get_settings
from ..core.qr import render_qr_png
from ..deps import get_lifecycle, rate_limited, require_roles
from ..schemas import IssuedQr, QrIssueRequest, ValidateResponse
from ..services.lifecycle import SessionLifecycle

settings = get_settings()
router = APIRouter(tags=["qr"])

# --- Utility: any text -> PNG
@router.get("/qr/image")
async def qr_image(text: str | None = Query(default=None)):
    if not text:
        raise HTTPException(status_code=400, detail="text query param required")
    png = await asyncio.to_thread(render_qr_png, text)
    return Response(content=png, media_type="image/png")

# --- Admin forces a fresh code onto a display
@router.post("/admin/qr", response_model=IssuedQr)
async def issue_qr(
    payload: QrIssueRequest | None = Body(default=None),
    role: str = Depends(require_roles("admin")),
    lifecycle: SessionLifecycle = Depends(get_lifecycle),
):
    payload = payload or QrIssueRequest()
    return await lifecycle.issue(
        payload.display_id or settings.default_display_id,
        company_id=payload.company_id,
        issued_by="admin",
    )

# --- Display pulls its live code (first load, or resync after a dropped socket)
@router.get("/display/qr/current", response_model=IssuedQr)
async def current_qr(
    display_id: str | None = Query(default=None, alias="displayId"),
    company_id: str | None = Query(default=None, alias="companyId"),
    role: str = Depends(require_roles("display", "admin")),
    lifecycle: SessionLifecycle = Depends(get_lifecycle),
):
    return await lifecycle.current(display_id or settings.default_display_id, company_id=company_id or None)

# --- Scanner checks a code before showing the form
@router.get(
    "/qr/validate",
    response_model=ValidateResponse,
    response_model_exclude_none=True,
    dependencies=[Depends(rate_limited("qr.validate"))],
)
async def validate_qr(
    token: str | None = Query(default=None),
    role: str = Depends(require_roles("user")),
    lifecycle: SessionLifecycle = Depends(get_lifecycle),
):
    check = await lifecycle.validate(token)
    if not check.valid:
        return JSONResponse(status_code=check.error.status_code, content={"valid": False, "error": check.error.value})
    return ValidateResponse(valid=True)
