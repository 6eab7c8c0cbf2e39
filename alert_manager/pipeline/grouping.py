"""
Alert grouping.

When several rules for the same thing fire together (say a warn-level
and an error-level log rule) only the most urgent one is sent.
"""

from typing import Hashable, Iterable
import structlog

from alert_manager.rules.models import Observation, RuleCategory

logger = structlog.get_logger(__name__)


def group_key(observation: Observation) -> tuple[Hashable, ...]:
    """(project, category, discriminant) for an observation."""
    rule = observation.rule
    if rule.category is RuleCategory.METRIC_AVERAGE:
        discriminant = rule.metric_name
    elif rule.category is RuleCategory.LOG_COUNT:
        discriminant = rule.log_field
    else:
        discriminant = None
    return (rule.project_name, rule.category.value, discriminant)


class AlertGrouper:
    """Keeps the highest-priority observation per group key."""

    def select(self, observations: Iterable[Observation]) -> list[Observation]:
        """
        Collapse observations to one per group.

        Ties keep the observation seen first, so input order (rules by
        descending threshold) decides between equal scores. Output follows
        the order in which groups first appear.
        """
        best: dict[tuple[Hashable, ...], Observation] = {}
        total = 0

        for observation in observations:
            total += 1
            key = group_key(observation)
            current = best.get(key)
            if current is None or observation.priority > current.priority:
                best[key] = observation

        selected = list(best.values())
        if total != len(selected):
            logger.debug("alerts_grouped", received=total, selected=len(selected))
        return selected
