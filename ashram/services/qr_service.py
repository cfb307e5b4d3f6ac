import base64
import json
from io import BytesIO
from typing import Any, Dict

import qrcode

from ..errors import ValidationError
from ..timeutils import utcnow

QR_TYPE_CHECKIN = "checkin"


def build_checkin_payload(appointment_id: int, user_id: int) -> Dict[str, Any]:
    return {
        "appointmentId": appointment_id,
        "userId": user_id,
        "type": QR_TYPE_CHECKIN,
        "timestamp": utcnow().isoformat(),
    }


def generate_qr_data_url(payload: Dict[str, Any]) -> str:
    """Render the payload as a PNG QR code and return it as a data URL."""
    qr = qrcode.QRCode(version=1, box_size=10, border=4)
    qr.add_data(json.dumps(payload, separators=(",", ":")))
    qr.make(fit=True)

    qr_image = qr.make_image(fill_color="black", back_color="white")
    buffer = BytesIO()
    qr_image.save(buffer, format="PNG")
    return "data:image/png;base64," + base64.b64encode(buffer.getvalue()).decode()


def parse_checkin_payload(raw: str, appointment_id: int) -> Dict[str, Any]:
    """Validate a scanned QR payload against the appointment being checked in."""
    try:
        payload = json.loads(raw)
    except (TypeError, ValueError):
        raise ValidationError("Invalid QR code format")

    if not isinstance(payload, dict) or payload.get("type") != QR_TYPE_CHECKIN:
        raise ValidationError("Invalid QR code type")

    try:
        scanned_id = int(payload.get("appointmentId"))
    except (TypeError, ValueError):
        raise ValidationError("QR code is missing the appointment reference")

    if scanned_id != appointment_id:
        raise ValidationError("QR code does not match this appointment")
    return payload
