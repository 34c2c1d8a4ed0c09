# src/domain/identifiers.py

from datetime import datetime
import hashlib
import re
import secrets

from src.domain.clock import utc_now

DEFAULT_QR_PREFIX = "TICKET"


def generate_order_number(now: datetime | None = None) -> str:
    """
    Human-readable order reference: ORD-<YYYY>-<6 hex>.
    Uniqueness is enforced by the orders table.
    """
    year = (now or utc_now()).year
    return f"ORD-{year}-{secrets.token_hex(3).upper()}"


def _checksum(ticket_id: str, random_part: str) -> str:
    digest = hashlib.sha256(f"{ticket_id}{random_part}".encode("utf-8")).hexdigest()
    return digest[:4].upper()


def generate_ticket_qr_code(ticket_id: str, prefix: str = DEFAULT_QR_PREFIX) -> str:
    """
    Opaque gate token bound to the ticket id:
    PREFIX-<16 hex>-<4 hex checksum of ticket_id + random part>.
    """
    random_part = secrets.token_hex(8).upper()
    return f"{prefix}-{random_part}-{_checksum(ticket_id, random_part)}"


def _qr_pattern(prefix: str) -> re.Pattern:
    return re.compile(rf"^{re.escape(prefix)}-([A-F0-9]{{16}})-([A-F0-9]{{4}})$")


def is_valid_qr_format(qr_code: str, prefix: str = DEFAULT_QR_PREFIX) -> bool:
    return bool(_qr_pattern(prefix).match(qr_code or ""))


def verify_ticket_qr_code(
    ticket_id: str,
    qr_code: str,
    prefix: str = DEFAULT_QR_PREFIX,
) -> bool:
    """Offline check that qr_code was issued for ticket_id."""
    match = _qr_pattern(prefix).match(qr_code or "")
    if not match:
        return False
    random_part, checksum = match.groups()
    return secrets.compare_digest(_checksum(ticket_id, random_part), checksum)
