"""Audit logging package."""

from budgee.audit.logger import AuditLogger, configure_logging

__all__ = ["AuditLogger", "configure_logging"]
