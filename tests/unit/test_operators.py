"""
Tests for threshold comparison and priority scoring.
"""

import pytest

from alert_manager.rules.operators import Operator, compare, priority_score

ALL_OPERATORS = [">", "<", ">=", "<=", "==", "!="]


class TestCompare:
    """Tests for compare, including missing-data semantics."""

    def test_greater_than(self):
        """> is strict."""
        assert compare(">", 10, 5) is True
        assert compare(">", 5, 5) is False

    def test_less_than_or_equal(self):
        """<= includes the threshold."""
        assert compare("<=", 5, 5) is True
        assert compare("<=", 6, 5) is False

    def test_greater_or_equal_and_less(self):
        """>= includes the threshold; < excludes it."""
        assert compare(">=", 5, 5) is True
        assert compare("<", 4.99, 5) is True
        assert compare("<", 5, 5) is False

    def test_equality(self):
        """== and != compare numerically across int and float."""
        assert compare("==", 5, 5.0) is True
        assert compare("!=", 5, 5.0) is False
        assert compare("!=", 5, 6) is True

    def test_numeric_strings_are_coerced(self):
        """Operands are parsed as floats."""
        assert compare(">", "10.5", "10") is True
        assert compare("==", "80", 80) is True

    @pytest.mark.parametrize("op,expected", [
        (">", False), ("<", False), (">=", False), ("<=", False),
        ("==", True), ("!=", False),
    ])
    def test_both_missing(self, op, expected):
        """Missing on both sides only satisfies ==."""
        assert compare(op, None, None) is expected

    @pytest.mark.parametrize("op,expected", [
        (">", False), ("<", False), (">=", False), ("<=", False),
        ("==", False), ("!=", True),
    ])
    def test_one_missing(self, op, expected):
        """Missing on one side only satisfies !=."""
        assert compare(op, 5, None) is expected
        assert compare(op, None, 5) is expected

    @pytest.mark.parametrize("op", ALL_OPERATORS)
    def test_non_numeric_behaves_as_missing(self, op):
        """Non-numeric strings behave exactly like missing values."""
        assert compare(op, "abc", 5) == compare(op, None, 5)
        assert compare(op, "abc", "xyz") == compare(op, None, None)

    def test_nan_behaves_as_missing(self):
        """NaN is treated as missing."""
        assert compare(">", float("nan"), 5) is False
        assert compare("!=", float("nan"), 5) is True

    def test_accepts_operator_enum(self):
        """Operator members are accepted as well as symbols."""
        assert compare(Operator.GT, 10, 5) is True

    def test_unknown_operator_rejected(self):
        """Unknown symbols raise ValueError."""
        with pytest.raises(ValueError):
            compare("=>", 1, 2)


class TestOperatorDirection:
    """Tests for operator direction."""

    @pytest.mark.parametrize("op", [Operator.GT, Operator.GE])
    def test_greater_operators(self, op):
        """> and >= point upward."""
        assert op.is_greater
        assert not op.is_lesser

    @pytest.mark.parametrize("op", [Operator.LT, Operator.LE])
    def test_lesser_operators(self, op):
        """< and <= point downward."""
        assert op.is_lesser
        assert not op.is_greater

    @pytest.mark.parametrize("op", [Operator.EQ, Operator.NE])
    def test_equality_has_no_direction(self, op):
        """== and != are neither greater nor lesser."""
        assert not op.is_greater
        assert not op.is_lesser


class TestPriorityScore:
    """Tests for priority scoring."""

    @pytest.mark.parametrize("op", [">", ">="])
    def test_greater_scores_threshold(self, op):
        """Greater-than rules score their threshold."""
        assert priority_score(op, 80) == 80

    @pytest.mark.parametrize("op", ["<", "<="])
    def test_lesser_scores_complement(self, op):
        """Less-than rules score 100 minus their threshold."""
        assert priority_score(op, 20) == 80

    @pytest.mark.parametrize("op", ["==", "!="])
    def test_equality_scores_threshold(self, op):
        """Equality operators have no direction and score the raw threshold."""
        assert priority_score(op, 42) == 42

    def test_tighter_lesser_bound_is_more_urgent(self):
        """A smaller less-than bound scores higher."""
        assert priority_score("<", 5) > priority_score("<", 30)
