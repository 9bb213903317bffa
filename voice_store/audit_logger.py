# voice_store/audit_logger.py
import logging
from typing import Optional, Any, Dict

from . import schemas
from .adapters.base import DatabaseAdapter
from .errors import StoreError
from .models import AuditOperation


def normalize_operation(action: str) -> AuditOperation:
	"""Reduce free-form action names (create_config, DEMO_DELETE, ...) to INSERT/UPDATE/DELETE."""
	action_upper = (action or '').upper()
	if action_upper in AuditOperation.__members__:
		return AuditOperation[action_upper]
	if 'CREATE' in action_upper or 'INSERT' in action_upper or 'IMPORT' in action_upper or 'DUPLICATE' in action_upper:
		return AuditOperation.INSERT
	if 'DELETE' in action_upper or 'REMOVE' in action_upper:
		return AuditOperation.DELETE
	# Everything else (activate, rename, upsert, ...) mutates an existing row
	return AuditOperation.UPDATE


class AuditLogger:
	"""Writes append-only audit_trail entries through whichever adapter the caller holds."""

	def __init__(self, adapter: DatabaseAdapter, actor: str = 'system'):
		self.adapter = adapter
		self.actor = actor
		self.logger = logging.getLogger(__name__)

	def log_change(
		self,
		table_name: str,
		record_id: str,
		action: str,
		reason: Optional[str] = None,
		field_name: Optional[str] = None,
		old_value: Any = None,
		new_value: Any = None,
		metadata: Optional[Dict[str, Any]] = None,
		changed_by: Optional[str] = None,
	) -> int:
		"""Record one change. Failures propagate so an enclosing transaction rolls back."""
		record = schemas.AuditRecordCreate(
			table_name=table_name,
			record_id=record_id,
			operation=normalize_operation(action),
			field_name=field_name,
			old_value=old_value,
			new_value=new_value,
			changed_by=changed_by or self.actor,
			change_reason=reason,
			metadata=metadata,
		)
		try:
			return self.adapter.log_audit(record)
		except StoreError as e:
			self.logger.error(f"Failed to write audit record for {table_name}:{record_id}: {e}")
			raise

	def history(self, table_name: str, record_id: str):
		return self.adapter.get_audit_records(table_name, record_id)
