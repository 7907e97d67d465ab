# ride_dispatch/core/audit/__init__.py
from ride_dispatch.core.audit.trail import AuditEvent, AuditTrail

__all__ = ["AuditEvent", "AuditTrail"]
