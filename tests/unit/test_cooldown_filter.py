"""
Tests for cooldown suppression.

The cooldown law: once an alert is admitted at T, the same fingerprint is
suppressed before T + cooldown and admitted again from T + cooldown on.
"""

from concurrent.futures import ThreadPoolExecutor
from unittest.mock import Mock

import pytest

from alert_manager.pipeline.cooldown import CooldownFilter, fingerprint


class Clock:
    def __init__(self, now=1_700_000_000):
        self.now = now

    def __call__(self):
        return self.now


class TestFingerprint:
    """Tests for fingerprint."""

    def test_metric_fingerprint(self, make_observation):
        """Metric fingerprints use metric name, threshold and operator."""
        obs = make_observation(metric_name="cpu_usage", threshold=80, operator=">")

        assert fingerprint(obs) == "p1_metric_avg_cpu_usage_80_>"

    def test_log_fingerprint_includes_value(self, make_observation):
        """Log fingerprints include both field and value."""
        obs = make_observation(
            rule_type="log_count", log_field="level", log_field_value="error",
            threshold=12.5, operator=">=",
        )

        assert fingerprint(obs) == "p1_log_count_level_error_12.5_>="

    def test_event_fingerprint(self, make_observation):
        """Event fingerprints have no discriminant."""
        obs = make_observation(rule_type="event_count", threshold=50, operator="<")

        assert fingerprint(obs) == "p1_event_count_50_<"

    def test_rule_id_not_part_of_fingerprint(self, make_observation):
        """Identically configured rules share a fingerprint."""
        a = make_observation(id=1)
        b = make_observation(id=2)

        assert fingerprint(a) == fingerprint(b)


class TestCooldownFilter:
    """Tests for CooldownFilter."""

    def test_first_occurrence_admitted(self, cooldown_cache, make_observation):
        """A new fingerprint is admitted and recorded at now."""
        clock = Clock()
        cooldown = CooldownFilter(cooldown_cache, cooldown_seconds=300, clock=clock)
        obs = make_observation()

        assert cooldown.filter([obs]) == [obs]
        value, _ = cooldown_cache.entries["cooldown:" + fingerprint(obs)]
        assert value == clock.now

    def test_suppressed_within_cooldown(self, cooldown_cache, make_observation):
        """The same fingerprint inside the cooldown is suppressed."""
        clock = Clock()
        cooldown = CooldownFilter(cooldown_cache, cooldown_seconds=300, clock=clock)
        cooldown.filter([make_observation()])

        clock.now += 299

        assert cooldown.filter([make_observation()]) == []

    def test_admitted_at_cooldown_boundary(self, cooldown_cache, make_observation):
        """At exactly the end of the cooldown the alert is admitted again."""
        clock = Clock()
        cooldown = CooldownFilter(cooldown_cache, cooldown_seconds=300, clock=clock)
        cooldown.filter([make_observation()])

        clock.now += 300
        obs = make_observation()

        assert cooldown.filter([obs]) == [obs]

    def test_suppression_does_not_extend_cooldown(self, cooldown_cache, make_observation):
        """A suppressed alert does not restart the cooldown."""
        clock = Clock()
        cooldown = CooldownFilter(cooldown_cache, cooldown_seconds=300, clock=clock)
        cooldown.filter([make_observation()])

        clock.now += 200
        cooldown.filter([make_observation()])
        clock.now += 100

        assert len(cooldown.filter([make_observation()])) == 1

    def test_independent_fingerprints(self, cooldown_cache, make_observation):
        """Fingerprints cool down independently."""
        clock = Clock()
        cooldown = CooldownFilter(cooldown_cache, cooldown_seconds=300, clock=clock)
        cooldown.filter([make_observation(metric_name="cpu_usage")])

        mem = make_observation(metric_name="memory_usage")
        cpu = make_observation(metric_name="cpu_usage")

        assert cooldown.filter([cpu, mem]) == [mem]

    def test_single_batched_call(self, cooldown_cache, make_observation):
        """All fingerprints go to the cache in one call."""
        cooldown = CooldownFilter(cooldown_cache, clock=Clock())

        cooldown.filter([
            make_observation(metric_name="cpu_usage"),
            make_observation(metric_name="memory_usage"),
        ])

        assert len(cooldown_cache.batches) == 1
        assert len(cooldown_cache.batches[0]) == 2

    def test_custom_prefix(self, cooldown_cache, make_observation):
        """The key prefix is configurable."""
        cooldown = CooldownFilter(cooldown_cache, key_prefix="alert_cache:", clock=Clock())

        cooldown.filter([make_observation()])

        assert all(k.startswith("alert_cache:") for k in cooldown_cache.entries)

    def test_empty_input_skips_cache(self, make_observation):
        """No observations means no cache call."""
        cache = Mock()

        assert CooldownFilter(cache).filter([]) == []
        cache.check_and_set_many.assert_not_called()

    def test_non_positive_cooldown_rejected(self, cooldown_cache):
        """Cooldown must be positive."""
        with pytest.raises(ValueError):
            CooldownFilter(cooldown_cache, cooldown_seconds=0)


class TestFailOpen:
    """Cache outages admit everything."""

    def test_unreachable_cache_admits_all(self, cooldown_cache, make_observation):
        """An unreachable cache admits every alert."""
        cooldown_cache.available = False
        cooldown = CooldownFilter(cooldown_cache, clock=Clock())
        observations = [
            make_observation(metric_name="cpu_usage"),
            make_observation(metric_name="memory_usage"),
            make_observation(rule_type="event_count"),
        ]

        assert cooldown.filter(observations) == observations

    def test_short_result_admits_all(self, make_observation):
        """A result of the wrong length admits every alert."""
        cache = Mock()
        cache.check_and_set_many.return_value = [False]
        observations = [make_observation(metric_name="cpu_usage"), make_observation(metric_name="memory_usage")]

        assert CooldownFilter(cache, clock=Clock()).filter(observations) == observations


class TestConcurrentAdmission:
    """Concurrent workers never both admit the same fingerprint."""

    def test_only_one_worker_admits(self, cooldown_cache, make_rule, make_observation):
        """Racing workers admit a fingerprint only once."""
        rule = make_rule()
        cooldown = CooldownFilter(cooldown_cache, clock=Clock())

        def attempt(_):
            return len(cooldown.filter([make_observation(rule=rule)]))

        with ThreadPoolExecutor(max_workers=8) as executor:
            admitted = sum(executor.map(attempt, range(32)))

        assert admitted == 1
