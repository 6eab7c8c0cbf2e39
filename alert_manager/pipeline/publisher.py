"""
Notification publishing.

Admitted observations become DeliveryEvents and go out on the alert
channel. All events of a project are published as one batch; if the batch
fails, each event is retried on its own. Events that fail their
individual attempt too are dead-lettered: logged as critical with the
full payload. Nothing is retried across cycles.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Optional
import structlog

from alert_manager.interfaces import EventBus
from alert_manager.rules.models import DeliveryEvent, Observation

logger = structlog.get_logger(__name__)


DEFAULT_CHANNEL = "alerts"
SOURCE_TAG = "alert-cron"
SCHEMA_VERSION = "1.0"


@dataclass
class DeliveryReport:
    """Outcome of one publish call."""
    published: list[DeliveryEvent] = field(default_factory=list)
    failed: list[DeliveryEvent] = field(default_factory=list)
    used_fallback: bool = False


class NotificationPublisher:
    """Publishes delivery events to the event bus."""

    def __init__(
        self,
        bus: EventBus,
        channel: str = DEFAULT_CHANNEL,
        source: str = SOURCE_TAG,
        version: str = SCHEMA_VERSION,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        """
        Initialize publisher.

        Args:
            bus: Pub/sub transport
            channel: Channel alerts are published on
            source: Source tag stamped on every event
            version: Event schema version
            clock: Returns the current time (defaults to UTC now)
        """
        self.bus = bus
        self.channel = channel
        self.source = source
        self.version = version
        self.clock = clock or (lambda: datetime.now(timezone.utc))

    def build_event(self, observation: Observation) -> DeliveryEvent:
        return DeliveryEvent(
            observation=observation,
            published_at=self.clock(),
            source=self.source,
            version=self.version,
        )

    def publish(self, observations: list[Observation]) -> DeliveryReport:
        """Publish observations, batch first, one by one on batch failure."""
        report = DeliveryReport()
        if not observations:
            return report

        events = [self.build_event(o) for o in observations]

        logger.info(
            "publishing_alerts",
            count=len(events),
            channel=self.channel,
        )

        try:
            counts = self.bus.publish_batch(self.channel, [e.to_json() for e in events])
            if len(counts) != len(events):
                raise RuntimeError(
                    f"bus returned {len(counts)} results for {len(events)} events"
                )
        except Exception as e:
            logger.error(
                "alert_batch_publish_failed",
                error=str(e),
                count=len(events),
                channel=self.channel,
            )
            report.used_fallback = True
            self._publish_individually(events, report)
            return report

        for event, subscribers in zip(events, counts):
            event.subscribers = subscribers
            report.published.append(event)
            self._log_published(event, fallback=False)

        return report

    def _publish_individually(self, events: list[DeliveryEvent], report: DeliveryReport) -> None:
        for event in events:
            # Re-stamp: the batch attempt never reached the bus.
            event.published_at = self.clock()
            try:
                event.subscribers = self.bus.publish_one(self.channel, event.to_json())
            except Exception as e:
                self._dead_letter(event, e)
                report.failed.append(event)
                continue

            report.published.append(event)
            self._log_published(event, fallback=True)

    def _log_published(self, event: DeliveryEvent, fallback: bool) -> None:
        rule = event.observation.rule
        logger.info(
            "alert_published",
            project=rule.project_name,
            rule_type=rule.category.value,
            rule_id=rule.id,
            subscribers=event.subscribers,
            fallback=fallback,
        )

    def _dead_letter(self, event: DeliveryEvent, error: Exception) -> None:
        logger.critical(
            "alert_delivery_failed",
            rule_id=event.observation.rule.id,
            project=event.observation.rule.project_name,
            channel=self.channel,
            error=str(error),
            error_type=type(error).__name__,
            alert=event.to_dict(),
        )
