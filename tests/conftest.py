"""
Pytest configuration and fixtures.

Shared fakes for the pipeline's collaborators (telemetry, rule source,
cooldown cache, event bus) plus rule/observation builders.
"""

import shutil
import tempfile
import threading
from datetime import datetime, timezone
from pathlib import Path

import pytest

from alert_manager.interfaces import LogCounts, Project, TermBucket
from alert_manager.rules.models import AlertRule, NotificationMethod, Observation
from alert_manager.rules.operators import priority_score


class FakeTelemetry:
    """Telemetry backend returning canned results and recording calls."""

    def __init__(self):
        self.averages: dict[tuple[str, str], float] = {}
        self.counts: dict[tuple[str, str, str], LogCounts] = {}
        self.terms: dict[tuple[str, str], list[TermBucket]] = {}
        self.phrases: dict[str, list[TermBucket]] = {}
        self.fail_projects: set[str] = set()
        self.calls: list[tuple] = []

    def _check(self, project):
        if project in self.fail_projects:
            raise ConnectionError(f"telemetry backend unreachable for {project}")

    def average_over(self, project, metric_name, window):
        self.calls.append(("average_over", project, metric_name, window))
        self._check(project)
        return self.averages.get((project, metric_name))

    def counts_over(self, project, field, value, window):
        self.calls.append(("counts_over", project, field, value, window))
        self._check(project)
        return self.counts.get((project, field, value), LogCounts(matching=0, total=0))

    def top_terms_over(self, project, field, window, limit=10):
        self.calls.append(("top_terms_over", project, field, window, limit))
        self._check(project)
        return list(self.terms.get((project, field), []))[:limit]

    def phrase_counts_over(self, project, phrases, window, limit=10):
        self.calls.append(("phrase_counts_over", project, tuple(phrases), window, limit))
        self._check(project)
        return list(self.phrases.get(project, []))[:limit]


class FakeRuleSource:
    """In-memory projects and rules."""

    def __init__(self):
        self.rules: dict[str, list[AlertRule]] = {}
        self.fail_projects: set[str] = set()
        self.fail_listing = False

    def add(self, rule: AlertRule) -> None:
        self.rules.setdefault(rule.project_name, []).append(rule)

    def list_active_projects(self):
        if self.fail_listing:
            raise ConnectionError("rule store unreachable")
        return [Project(name=name) for name in self.rules]

    def list_rules(self, project):
        if project in self.fail_projects:
            raise ConnectionError(f"cannot load rules for {project}")
        return sorted(self.rules.get(project, []), key=lambda r: -r.threshold)

    def list_notification_methods(self, rule_id):
        for rules in self.rules.values():
            for rule in rules:
                if rule.id == rule_id:
                    return list(rule.methods)
        return []


class InMemoryCooldownCache:
    """Cooldown cache with TTL expiry and atomic per-key check-and-set."""

    def __init__(self):
        self.entries: dict[str, tuple[int, int]] = {}  # key -> (value, expires_at)
        self.available = True
        self.batches: list[list[str]] = []
        self._lock = threading.Lock()

    def _live(self, key, now):
        entry = self.entries.get(key)
        if entry is None or entry[1] <= now:
            return None
        return entry[0]

    def _check_available(self):
        if not self.available:
            raise ConnectionError("cooldown cache unreachable")

    def get_if_fresh(self, key, ttl_seconds, now):
        self._check_available()
        last = self._live(key, now)
        if last is None or now - last >= ttl_seconds:
            return None
        return last

    def set_with_ttl(self, key, value, ttl_seconds):
        self._check_available()
        self.entries[key] = (int(value), int(value) + ttl_seconds)

    def check_and_set_many(self, keys, now, ttl_seconds):
        self._check_available()
        self.batches.append(list(keys))
        results = []
        with self._lock:
            for key in keys:
                last = self._live(key, now)
                if last is not None and now - last < ttl_seconds:
                    results.append(False)
                    continue
                self.entries[key] = (now, now + ttl_seconds)
                results.append(True)
        return results


class RecordingBus:
    """Event bus that records payloads and can be told to fail."""

    def __init__(self, subscribers: int = 1):
        self.subscribers = subscribers
        self.batch_error = None
        self.fail_when = None  # predicate on payload for publish_one
        self.batches: list[list[str]] = []
        self.singles: list[str] = []
        self._lock = threading.Lock()

    @property
    def delivered(self) -> list[str]:
        out = [p for batch in self.batches for p in batch]
        return out + list(self.singles)

    def publish_batch(self, channel, payloads):
        if self.batch_error is not None:
            raise self.batch_error
        with self._lock:
            self.batches.append(list(payloads))
        return [self.subscribers for _ in payloads]

    def publish_one(self, channel, payload):
        if self.fail_when is not None and self.fail_when(payload):
            raise ConnectionError("publish failed")
        with self._lock:
            self.singles.append(payload)
        return self.subscribers


@pytest.fixture
def temp_dir():
    """Create temporary directory for tests."""
    temp_path = Path(tempfile.mkdtemp())
    yield temp_path
    shutil.rmtree(temp_path)


@pytest.fixture
def telemetry():
    return FakeTelemetry()


@pytest.fixture
def rule_source():
    return FakeRuleSource()


@pytest.fixture
def cooldown_cache():
    return InMemoryCooldownCache()


@pytest.fixture
def event_bus():
    return RecordingBus()


@pytest.fixture
def fixed_now():
    return datetime(2024, 3, 1, 12, 30, 45, tzinfo=timezone.utc)


@pytest.fixture
def make_rule():
    """Build an AlertRule from row-style keyword arguments."""
    counter = {"next": 1}

    def _make(
        rule_type="metric_avg",
        project_name="p1",
        operator=">",
        threshold=80,
        time_window="5 minutes",
        methods=(("email", "ops@example.com"),),
        **row,
    ):
        if rule_type == "metric_avg":
            row.setdefault("metric_name", "cpu_usage")
        if "id" not in row:
            row["id"] = counter["next"]
            counter["next"] += 1
        row.update({
            "rule_type": rule_type,
            "project_name": project_name,
            "operator": operator,
            "threshold": threshold,
            "time_window": time_window,
        })
        return AlertRule.from_row(
            row, [NotificationMethod(method=m, value=v) for m, v in methods]
        )

    return _make


@pytest.fixture
def make_observation(make_rule, fixed_now):
    """Build an Observation for a rule."""

    def _make(rule=None, current_value=90.0, detail=None, priority=None, **rule_kwargs):
        rule = rule or make_rule(**rule_kwargs)
        return Observation(
            rule=rule,
            current_value=current_value,
            detail=detail or {},
            timestamp=fixed_now,
            priority=priority_score(rule.operator, rule.threshold) if priority is None else priority,
        )

    return _make
