"""
Audit logging for Botrelay.

JSON Lines trail of gateway message flow and adapter lifecycle events.
"""

from botrelay.audit.logger import AuditEventType, AuditLogger

__all__ = ["AuditEventType", "AuditLogger"]
