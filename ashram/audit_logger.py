import logging
from typing import Any, Optional

from fastapi import Request
from fastapi.encoders import jsonable_encoder
from sqlalchemy.orm import Session

from . import models


class AuditTrail:
	"""Writes AuditLog rows into the caller's session.

	The row is flushed with the change it describes, so it commits or rolls
	back together with that change.
	"""

	def __init__(self):
		self.logger = logging.getLogger("ashram.audit")

	def record(
		self,
		db: Session,
		user_id: Optional[int],
		action: str,
		resource: str,
		resource_id: Optional[int] = None,
		old_data: Optional[Any] = None,
		new_data: Optional[Any] = None,
		request: Optional[Request] = None,
	) -> models.AuditLog:
		ip_address = None
		user_agent = None
		if request is not None:
			ip_address = request.client.host if request.client else None
			user_agent = request.headers.get("user-agent")

		entry = models.AuditLog(
			user_id=user_id,
			action=action,
			resource=resource,
			resource_id=resource_id,
			old_data=jsonable_encoder(old_data) if old_data is not None else None,
			new_data=jsonable_encoder(new_data) if new_data is not None else None,
			ip_address=ip_address,
			user_agent=user_agent[:500] if user_agent else None,
		)
		db.add(entry)
		self.logger.info(f"{action} {resource}:{resource_id} by user {user_id}")
		return entry


audit_trail = AuditTrail()
