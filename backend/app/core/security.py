"""Helpers de validación para firmas de webhooks LINE."""

import base64
import hmac
from hashlib import sha256

from app.core.logging import get_logger

logger = get_logger(__name__)


def build_line_signature(secret: str, payload: bytes) -> str:
    """Calcula la firma `x-line-signature` (HMAC-SHA256 en base64) del cuerpo bruto."""
    digest = hmac.new(secret.encode("utf-8"), payload, sha256).digest()
    return base64.b64encode(digest).decode("ascii")


def verify_line_signature(secret: str | None, payload: bytes, signature: str | None) -> bool:
    """Verifica la firma de LINE sobre los bytes exactos recibidos.

    Sin secreto configurado la verificación se omite (modo relajado para
    entornos de prueba). Con secreto, una cabecera ausente se rechaza.
    """
    if not secret:
        logger.warning("line.signature_check_disabled")
        return True
    if not signature:
        logger.warning("line.signature_missing")
        return False
    expected = build_line_signature(secret, payload).encode("ascii")
    # Starlette decodifica las cabeceras como latin-1
    received = signature.strip().encode("latin-1", "replace")
    return hmac.compare_digest(expected, received)


def mask_secret(value: str | None) -> str | None:
    """Enmascara secretos para logging seguro."""
    if not value:
        return value
    if len(value) <= 4:
        return "***"
    return f"{value[:2]}***{value[-2:]}"
