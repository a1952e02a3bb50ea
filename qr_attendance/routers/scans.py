from __future__ import annotations
from typing import Any
from fastapi import APIRouter, Body, Depends
from fastapi.responses import JSONResponse

from ..deps import get_protocol, rate_limited, require_roles
from ..schemas import ErrorResponse, ScanRead
from ..services.submission import ScanRejected, ScanSubmissionProtocol

router = APIRouter(tags=["scan"])

# Body is taken raw: shape errors are reported as invalid_payload, not FastAPI's 422
@router.post(
    "/scan",
    response_model=ScanRead,
    responses={400: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
    dependencies=[Depends(rate_limited("scan.submit"))],
)
async def submit_scan(
    payload: Any = Body(default=None),
    role: str = Depends(require_roles("user")),
    protocol: ScanSubmissionProtocol = Depends(get_protocol),
):
    result = await protocol.submit(payload)
    if isinstance(result, ScanRejected):
        return JSONResponse(status_code=result.status_code, content=result.to_body())
    return result.record
