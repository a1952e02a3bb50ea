from __future__ import annotations
from dataclasses import dataclass
from typing import Any, Dict
import base64
import io
import jwt
import qrcode
from qrcode.constants import ERROR_CORRECT_M

from ..core.config import get_settings
settings = get_settings()

QR_AUD = "attendance-scan"
QR_ISS = "qr-attendance-svc"

class InvalidSignature(Exception):
    """Token was not minted by this service, or was altered after signing."""

@dataclass(frozen=True)
class TokenClaims:
    session_id: str
    nonce: str
    expires_at: int

def sign_qr(*, session_id: str, nonce: str, expires_at: int) -> str:
    payload: Dict[str, Any] = {
        "aud": QR_AUD,
        "iss": QR_ISS,
        "scope": "scan",
        "sid": str(session_id),
        "n": nonce,
        "exp": int(expires_at),
    }
    return jwt.encode(payload, settings.qr_secret_effective, algorithm="HS256")

def verify_qr(token: str) -> TokenClaims:
    """
    Prove the token was minted here and is unmodified. `exp` is only a hint for
    the display; whether the session is still valid is decided by the store.
    """
    try:
        payload = jwt.decode(
            token,
            settings.qr_secret_effective,
            algorithms=["HS256"],
            audience=QR_AUD,
            issuer=QR_ISS,
            options={"require": ["exp", "aud", "iss"], "verify_exp": False},
        )
    except jwt.PyJWTError as exc:
        raise InvalidSignature(str(exc)) from exc
    if payload.get("scope") != "scan":
        raise InvalidSignature("invalid scope")
    for k in ("sid", "n"):
        if k not in payload:
            raise InvalidSignature("missing claim: " + k)
    return TokenClaims(session_id=str(payload["sid"]), nonce=str(payload["n"]), expires_at=int(payload["exp"]))

def render_qr_png(text: str) -> bytes:
    qr = qrcode.QRCode(
        error_correction=ERROR_CORRECT_M,
        box_size=8,
        border=2,
    )
    qr.add_data(text)
    qr.make(fit=True)
    img = qr.make_image(fill_color="black", back_color="white")
    b = io.BytesIO()
    img.save(b, format="PNG")
    return b.getvalue()

def qr_data_url(text: str) -> str:
    return "data:image/png;base64," + base64.b64encode(render_qr_png(text)).decode("ascii")
