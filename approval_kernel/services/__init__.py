"""
Module: approval_kernel.services
Responsibility: Reference implementations of the engine's collaborators:
    directory, scheduler, currency converter and audit sinks.
Architecture position: Kernel > Services.  May import from domain/,
    models/, db/ and utils/.  MUST NOT import approval_engines or
    approval_services.
"""

from approval_kernel.services.audit_sink import InMemoryAuditSink, SqlAlchemyAuditSink
from approval_kernel.services.currency import StaticRateConverter
from approval_kernel.services.directory import InMemoryDirectory
from approval_kernel.services.scheduler import InMemoryScheduler

__all__ = [
    "InMemoryAuditSink",
    "InMemoryDirectory",
    "InMemoryScheduler",
    "SqlAlchemyAuditSink",
    "StaticRateConverter",
]
