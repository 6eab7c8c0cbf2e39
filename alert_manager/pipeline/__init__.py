"""
Alert pipeline: grouping, cooldown, publishing and the cycle orchestrator.
"""

from alert_manager.pipeline.cooldown import CooldownFilter, fingerprint
from alert_manager.pipeline.grouping import AlertGrouper, group_key
from alert_manager.pipeline.orchestrator import CycleOrchestrator, CycleReport, ProjectResult
from alert_manager.pipeline.publisher import DeliveryReport, NotificationPublisher

__all__ = [
    "AlertGrouper",
    "CooldownFilter",
    "CycleOrchestrator",
    "CycleReport",
    "DeliveryReport",
    "NotificationPublisher",
    "ProjectResult",
    "fingerprint",
    "group_key",
]
