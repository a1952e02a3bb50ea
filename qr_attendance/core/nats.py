from __future__ import annotations
import json
import logging
from typing import Any, Dict, List
from nats.aio.client import Client as NATS
from .config import get_settings
from .broadcast import SCAN_LOGGED

logger = logging.getLogger(__name__)

_settings = get_settings()
_nats = NATS()

def _servers() -> List[str]:
    return [u.strip() for u in _settings.nats_urls.split(",") if u.strip()]

async def nats_connect():
    if _nats.is_connected:
        return
    await _nats.connect(servers=_servers(), name="qr-attendance-svc", connect_timeout=2, max_reconnect_attempts=5)
    logger.info("Connected to NATS at %s", _nats.connected_url.netloc if _nats.connected_url else _servers())

async def nats_close():
    if not _nats.is_connected:
        return
    try:
        await _nats.drain()
    except Exception as exc:
        logger.warning("NATS drain failed: %s", exc)

async def publish_scan(record: Dict[str, Any]):
    """
    Subject NATS_SUBJECT_SCAN, body = the scan record (camelCase) plus
    "idempotency_key": qrSessionId, so consumers can drop redeliveries.
    """
    await nats_connect()
    evt = {**record, "idempotency_key": record.get("qrSessionId")}
    await _nats.publish(_settings.nats_subject_scan, json.dumps(evt).encode("utf-8"))

async def relay_scan_logged(group: str, event: str, data: Dict[str, Any]):
    """Broadcast relay: mirror scan:logged to NATS for consumers outside this process."""
    if event == SCAN_LOGGED:
        await publish_scan(data)
