"""QR session state machine.

    active --scan--> used
    active --sweep / age ceiling--> expired
    active --new code for the same display--> used (superseded)

`used` and `expired` are terminal.
"""
from __future__ import annotations
import asyncio
import logging
import secrets
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.broadcast import BroadcastHub, QR_NEW, display_group, hub as default_hub
from ..core.config import Settings, get_settings
from ..core.qr import InvalidSignature, qr_data_url, sign_qr, verify_qr
from ..models import QrSession, QrStatus, as_utc, utcnow
from ..schemas import IssuedQr
from .directory import get_display
from .sessions import SessionStore

logger = logging.getLogger(__name__)

class ScanError(str, Enum):
    TOKEN_REQUIRED = "token_required"
    EXPIRED_OR_UNKNOWN_QR = "expired_or_unknown_qr"
    ALREADY_USED = "already_used"
    INVALID_TOKEN = "invalid_token"
    INVALID_PAYLOAD = "invalid_payload"

    @property
    def status_code(self) -> int:
        return 409 if self is ScanError.ALREADY_USED else 400

@dataclass(frozen=True)
class Validation:
    valid: bool
    error: ScanError | None = None
    session: QrSession | None = None

class SessionLifecycle:
    def __init__(self, db: AsyncSession, *, hub: BroadcastHub | None = None, settings: Settings | None = None):
        self.db = db
        self.hub = hub or default_hub
        self.settings = settings or get_settings()
        self.sessions = SessionStore(db)

    @property
    def ttl(self) -> timedelta | None:
        if self.settings.qr_ttl_seconds <= 0:
            return None
        return timedelta(seconds=self.settings.qr_ttl_seconds)

    def expires_at(self, session: QrSession) -> datetime | None:
        ttl = self.ttl
        return as_utc(session.created_at) + ttl if ttl else None

    def is_stale(self, session: QrSession, now: datetime | None = None) -> bool:
        exp = self.expires_at(session)
        return exp is not None and exp <= (now or utcnow())

    def _mint(self, session_id: uuid.UUID, created_at: datetime) -> str:
        # without a ceiling the exp claim is still required; a year is "no hint"
        ttl = self.ttl or timedelta(days=365)
        return sign_qr(
            session_id=str(session_id),
            nonce=secrets.token_hex(16),
            expires_at=int((created_at + ttl).timestamp()),
        )

    async def _payload(self, session: QrSession) -> IssuedQr:
        image = await asyncio.to_thread(qr_data_url, session.token)
        return IssuedQr(token=session.token, expires_at_hint=self.expires_at(session), qr_image_data_url=image)

    async def issue(self, display_id: str, *, company_id: str | None = None, issued_by: str = "system") -> IssuedQr:
        """Mint a fresh session for the display, superseding its active one, and push it to the display."""
        if company_id is None:
            display = await get_display(self.db, display_id)
            if display is not None:
                company_id = display.company_id
        session = await self.sessions.create(
            display_id=display_id, company_id=company_id, issued_by=issued_by, mint=self._mint
        )
        issued = await self._payload(session)
        self.hub.publish(display_group(display_id), QR_NEW, issued.model_dump(mode="json", by_alias=True))
        logger.info("QR issued for display %s by %s (session %s)", display_id, issued_by, session.id)
        return issued

    async def current(self, display_id: str, *, company_id: str | None = None) -> IssuedQr:
        """The display's live code, issuing one when it has none (resync after missed events)."""
        session = await self.sessions.find_active_by_display(display_id)
        if session is None or self.is_stale(session):
            return await self.issue(display_id, company_id=company_id, issued_by="system")
        return await self._payload(session)

    async def validate(self, token: str | None) -> Validation:
        # order: existence -> status -> signature
        if not token:
            return Validation(False, ScanError.TOKEN_REQUIRED)
        session = await self.sessions.find_by_token(token)
        if session is None:
            return Validation(False, ScanError.EXPIRED_OR_UNKNOWN_QR)
        active = session.status == QrStatus.ACTIVE.value
        if not active and not self.settings.allow_multi_scan:
            return Validation(False, ScanError.ALREADY_USED)
        # multi-scan reaches here with used/expired rows; the age ceiling still applies
        if session.status == QrStatus.EXPIRED.value or self.is_stale(session):
            if active:
                # the sweep has not caught it yet
                await self.sessions.mark_expired(token)
            return Validation(False, ScanError.EXPIRED_OR_UNKNOWN_QR)
        try:
            verify_qr(token)
        except InvalidSignature:
            return Validation(False, ScanError.INVALID_TOKEN)
        return Validation(True, session=session)

    async def expire_sweep(self) -> int:
        ttl = self.ttl
        if ttl is None:
            return 0
        count = await self.sessions.expire_older_than(utcnow() - ttl)
        if count:
            logger.info("Expired %d stale QR session(s)", count)
        return count
