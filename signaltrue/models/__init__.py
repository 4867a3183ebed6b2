from signaltrue.models.project import Project
from signaltrue.models.attachment import Attachment
from signaltrue.models.audit_log import AuditLogRecord

__all__ = ["Project", "Attachment", "AuditLogRecord"]
