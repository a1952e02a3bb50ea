from __future__ import annotations
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Union
from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.broadcast import ADMIN_GROUP, BroadcastHub, QR_CONSUMED, SCAN_LOGGED, display_group
from ..core.config import Settings
from ..models import Scan
from ..schemas import ScanCreate, ScanRead
from .directory import get_company_name
from .lifecycle import ScanError, SessionLifecycle
from .scans import ScanLedger

logger = logging.getLogger(__name__)

class ScanNotRecorded(Exception):
    """The session was consumed but its scan could not be written. The session stays used."""

    def __init__(self, session_id: str, display_id: str):
        super().__init__(f"scan for session {session_id} on display {display_id} was not recorded")
        self.session_id = session_id
        self.display_id = display_id

@dataclass(frozen=True)
class ScanAccepted:
    scan: Scan
    record: Dict[str, Any]

@dataclass(frozen=True)
class ScanRejected:
    error: ScanError
    details: List[Dict[str, Any]] | None = None

    @property
    def status_code(self) -> int:
        return self.error.status_code

    def to_body(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"error": self.error.value}
        if self.details is not None:
            body["details"] = self.details
        return body

SubmitResult = Union[ScanAccepted, ScanRejected]

def _field_errors(exc: ValidationError) -> List[Dict[str, Any]]:
    return [
        {"field": ".".join(str(p) for p in err["loc"]) or "body", "message": err["msg"]}
        for err in exc.errors()
    ]

class ScanSubmissionProtocol:
    """
    One scan submission, start to finish:

    1. payload shape          -> invalid_payload (nothing touched yet)
    2. session lookup         -> expired_or_unknown_qr
    3. session status         -> already_used / expired_or_unknown_qr
    4. token signature        -> invalid_token
    5. active -> used         -> already_used when a concurrent submit got there first
    6. ledger append          -> ScanNotRecorded; the session is NOT rolled back
    7. qr:consumed to the display, scan:logged to admins
    8. next code for the display
    """

    def __init__(self, db: AsyncSession, *, hub: BroadcastHub | None = None, settings: Settings | None = None):
        self.db = db
        self.lifecycle = SessionLifecycle(db, hub=hub, settings=settings)
        self.sessions = self.lifecycle.sessions
        self.ledger = ScanLedger(db)
        self.hub = self.lifecycle.hub
        self.settings = self.lifecycle.settings

    async def submit(self, raw: Any) -> SubmitResult:
        try:
            payload = ScanCreate.model_validate(raw)
        except ValidationError as exc:
            return ScanRejected(ScanError.INVALID_PAYLOAD, details=_field_errors(exc))

        check = await self.lifecycle.validate(payload.token)
        if not check.valid:
            logger.info("Scan rejected: %s", check.error.value)
            return ScanRejected(check.error)

        consumed = await self.sessions.mark_used(payload.token, force=self.settings.allow_multi_scan)
        if consumed is None:
            logger.info("Scan rejected: already_used (lost the race for session %s)", check.session.id)
            return ScanRejected(ScanError.ALREADY_USED)

        session_id, display_id, company_id = consumed.id, consumed.display_id, consumed.company_id
        try:
            company_name = await get_company_name(self.db, company_id)
            scan = await self.ledger.append(
                qr_session_id=session_id,
                display_id=display_id,
                company_id=company_id,
                full_name_snapshot=payload.full_name,
                job_title_snapshot=payload.job_title,
                employee_id_snapshot=payload.employee_id,
                company_name_snapshot=company_name,
                type=payload.type,
                lat=payload.lat,
                lng=payload.lng,
                accuracy=payload.accuracy,
                image_ref=payload.image_data,
            )
        except SQLAlchemyError as exc:
            await self.db.rollback()
            logger.exception("Session %s on display %s consumed but its scan was not recorded", session_id, display_id)
            raise ScanNotRecorded(str(session_id), display_id) from exc

        record = ScanRead.model_validate(scan).model_dump(mode="json", by_alias=True)
        self.hub.publish(display_group(display_id), QR_CONSUMED, {"token": payload.token, "at": record["createdAt"]})
        self.hub.publish(ADMIN_GROUP, SCAN_LOGGED, record)
        logger.info("Scan %s (%s) recorded on display %s", scan.id, payload.type, display_id)

        await self.lifecycle.issue(display_id, company_id=company_id, issued_by="rotation")
        return ScanAccepted(scan=scan, record=record)
