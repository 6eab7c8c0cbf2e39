"""
Evaluation cycle orchestration.

One call to `run_cycle()` is one tick of the scheduler:

1. Load active, monitored projects
2. Per project (failures isolated):
   a. load rules, highest threshold first
   b. evaluate every rule, in order
   c. group, keeping the most urgent alert per category
   d. drop alerts still in cooldown
   e. publish the rest
3. Return a summary

No state survives between cycles. Projects can be processed by a bounded
thread pool; rules within a project are always evaluated in load order
because grouping tie-breaks depend on it.
"""

from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional
import structlog

from alert_manager.interfaces import Project, RuleSource
from alert_manager.pipeline.cooldown import CooldownFilter
from alert_manager.pipeline.grouping import AlertGrouper
from alert_manager.pipeline.publisher import NotificationPublisher
from alert_manager.rules.evaluator import RuleEvaluator
from alert_manager.rules.models import Observation

logger = structlog.get_logger(__name__)


@dataclass
class ProjectResult:
    """What happened to one project in one cycle."""
    project: str
    rules: int = 0
    triggered: int = 0
    grouped: int = 0
    admitted: int = 0
    published: int = 0
    dead_lettered: int = 0
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class CycleReport:
    """Summary of one cycle."""
    started_at: datetime
    finished_at: Optional[datetime] = None
    projects: list[ProjectResult] = field(default_factory=list)

    @property
    def projects_processed(self) -> int:
        return sum(1 for p in self.projects if p.ok)

    @property
    def projects_failed(self) -> int:
        return sum(1 for p in self.projects if not p.ok)

    @property
    def triggered(self) -> int:
        return sum(p.triggered for p in self.projects)

    @property
    def admitted(self) -> int:
        return sum(p.admitted for p in self.projects)

    @property
    def published(self) -> int:
        return sum(p.published for p in self.projects)

    @property
    def dead_lettered(self) -> int:
        return sum(p.dead_lettered for p in self.projects)


class CycleOrchestrator:
    """
    Runs one evaluation cycle over all active projects.

    All collaborators are injected; their lifecycle belongs to the caller.
    """

    def __init__(
        self,
        rule_source: RuleSource,
        evaluator: RuleEvaluator,
        cooldown: CooldownFilter,
        publisher: NotificationPublisher,
        grouper: Optional[AlertGrouper] = None,
        max_workers: int = 1,
    ):
        """
        Initialize orchestrator.

        Args:
            rule_source: Project and rule configuration
            evaluator: Rule evaluator bound to the telemetry store
            cooldown: Cooldown filter bound to the shared cache
            publisher: Publisher bound to the event bus
            grouper: Alert grouper
            max_workers: Projects processed in parallel (1 = sequential)
        """
        if max_workers < 1:
            raise ValueError(f"max_workers must be at least 1, got {max_workers}")

        self.rule_source = rule_source
        self.evaluator = evaluator
        self.cooldown = cooldown
        self.publisher = publisher
        self.grouper = grouper or AlertGrouper()
        self.max_workers = max_workers

    def run_cycle(self) -> CycleReport:
        """Run one cycle. Never raises for a project-level failure."""
        report = CycleReport(started_at=datetime.now(timezone.utc))
        logger.info("alert_cycle_started")

        try:
            projects = self.rule_source.list_active_projects()
        except Exception as e:
            logger.error("project_load_failed", error=str(e))
            report.finished_at = datetime.now(timezone.utc)
            return report

        if not projects:
            logger.info("no_active_projects")

        if self.max_workers == 1 or len(projects) <= 1:
            report.projects = [self._process_isolated(p) for p in projects]
        else:
            with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
                report.projects = list(executor.map(self._process_isolated, projects))

        report.finished_at = datetime.now(timezone.utc)
        logger.info(
            "alert_cycle_finished",
            projects=len(report.projects),
            failed=report.projects_failed,
            triggered=report.triggered,
            published=report.published,
            dead_lettered=report.dead_lettered,
            duration_seconds=(report.finished_at - report.started_at).total_seconds(),
        )
        return report

    def _process_isolated(self, project: Project) -> ProjectResult:
        try:
            return self.process_project(project.name)
        except Exception as e:
            logger.error(
                "project_processing_failed",
                project=project.name,
                error=str(e),
                error_type=type(e).__name__,
            )
            return ProjectResult(project=project.name, error=str(e))

    def process_project(self, project: str) -> ProjectResult:
        """Evaluate, group, filter and publish alerts for one project."""
        result = ProjectResult(project=project)
        log = logger.bind(project=project)

        rules = self.rule_source.list_rules(project)
        result.rules = len(rules)
        if not rules:
            return result

        triggered: list[Observation] = []
        for rule in rules:
            observation = self.evaluator.observe(rule)
            if observation is None:
                continue
            if not rule.methods:
                log.warning("no_alert_methods", rule_id=rule.id)
                continue
            triggered.append(observation)
        result.triggered = len(triggered)

        grouped = self.grouper.select(triggered)
        result.grouped = len(grouped)

        admitted = self.cooldown.filter(grouped)
        result.admitted = len(admitted)

        delivery = self.publisher.publish(admitted)
        result.published = len(delivery.published)
        result.dead_lettered = len(delivery.failed)

        log.info(
            "project_processed",
            rules=result.rules,
            triggered=result.triggered,
            grouped=result.grouped,
            admitted=result.admitted,
            published=result.published,
        )
        return result
