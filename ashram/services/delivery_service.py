import logging
from typing import Optional

logger = logging.getLogger(__name__)


class DeliveryService:
    """Outbound email/SMS. No provider is wired up; sends are logged and reported as simulated."""

    def send_email(self, to_email: Optional[str], subject: str, body: str) -> bool:
        if not to_email:
            return False
        logger.info(f"Would send email to {to_email}: {subject}")
        return True

    def send_sms(self, to_phone: Optional[str], body: str) -> bool:
        if not to_phone:
            return False
        logger.info(f"Would send SMS to {to_phone}: {body[:60]}")
        return True


delivery_service = DeliveryService()
