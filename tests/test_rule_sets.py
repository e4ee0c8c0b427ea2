"""Tests for versioned rule sets and deterministic A/B assignment."""

import unittest

import pytest

from adaptation_engine.exceptions import RuleSetError
from adaptation_engine.models import RuleName
from adaptation_engine.rule_sets import (
    BASELINE_RULE_SET,
    RuleSetRegistry,
    RuleSetVersion,
    assignment_bucket,
)
from adaptation_engine.rules import SleepRule, StressRule


def candidate(version_id="v1.1.0", rules=(RuleName.STRESS, RuleName.SLEEP), weights=None):
    return RuleSetVersion(
        version_id=version_id,
        version_name="candidate",
        rules=rules,
        rule_weights=weights if weights is not None else {RuleName.STRESS: 1.2},
    )


@pytest.mark.fast
class TestRuleSetVersion(unittest.TestCase):
    def test_baseline(self):
        self.assertEqual(BASELINE_RULE_SET.version_id, "v1.0.0")
        self.assertEqual(set(BASELINE_RULE_SET.rules), set(RuleName))
        self.assertEqual(BASELINE_RULE_SET.weight_for(RuleName.MOTIVATION), 0.6)
        self.assertFalse(BASELINE_RULE_SET.is_retired)

    def test_missing_weight_defaults_to_one(self):
        self.assertEqual(candidate().weight_for(RuleName.SLEEP), 1.0)

    def test_validation(self):
        with self.assertRaises(RuleSetError):
            candidate(version_id="")
        with self.assertRaises(RuleSetError):
            candidate(rules=())
        with self.assertRaises(RuleSetError):
            candidate(weights={RuleName.FATIGUE: 1.0})
        with self.assertRaises(RuleSetError):
            candidate(rules=("FatigueRule",))


@pytest.mark.fast
class TestRuleSetRegistry(unittest.TestCase):
    def setUp(self):
        self.registry = RuleSetRegistry()

    def test_bucket_is_stable_and_bounded(self):
        bucket = assignment_bucket("user-1", "v1.1.0")

        self.assertEqual(bucket, assignment_bucket("user-1", "v1.1.0"))
        self.assertTrue(0 <= bucket < 100)

    def test_users_default_to_baseline(self):
        self.assertIsNone(self.registry.test_group_for("user-1"))
        self.assertIs(self.registry.version_for_user("user-1"), BASELINE_RULE_SET)

    def test_full_rollout_assigns_everyone(self):
        self.registry.deploy(candidate(), test_group_percentage=100)

        for user in ("user-1", "user-2", "user-3"):
            self.assertEqual(self.registry.test_group_for(user), "v1.1.0")
            self.assertEqual(self.registry.version_for_user(user).version_id, "v1.1.0")

    def test_zero_rollout_assigns_nobody(self):
        self.registry.deploy(candidate(), test_group_percentage=0)
        self.assertIsNone(self.registry.test_group_for("user-1"))

    def test_partial_rollout_matches_bucket(self):
        self.registry.deploy(candidate(), test_group_percentage=50)
        users = [f"user-{i}" for i in range(50)]

        for user in users:
            expected = "v1.1.0" if assignment_bucket(user, "v1.1.0") < 50 else None
            self.assertEqual(self.registry.test_group_for(user), expected)

    def test_newest_deployment_wins(self):
        self.registry.deploy(candidate("v1.1.0"), test_group_percentage=100)
        self.registry.deploy(candidate("v1.2.0"), test_group_percentage=100)

        self.assertEqual(self.registry.test_group_for("user-1"), "v1.2.0")

    def test_duplicate_and_invalid_deployments(self):
        self.registry.deploy(candidate())
        with self.assertRaises(RuleSetError):
            self.registry.deploy(candidate())
        with self.assertRaises(RuleSetError):
            self.registry.deploy(candidate("v2.0.0"), test_group_percentage=150)

    def test_retire(self):
        self.registry.deploy(candidate(), test_group_percentage=100)
        retired = self.registry.retire("v1.1.0")

        self.assertTrue(retired.is_retired)
        self.assertIsNone(self.registry.test_group_for("user-1"))
        self.assertTrue(self.registry.get("v1.1.0").is_retired)

    def test_cannot_retire_baseline_or_unknown(self):
        with self.assertRaises(RuleSetError):
            self.registry.retire("v1.0.0")
        with self.assertRaises(RuleSetError):
            self.registry.retire("v9.9.9")
        with self.assertRaises(RuleSetError):
            self.registry.get("v9.9.9")

    def test_rules_for_version(self):
        rules = RuleSetRegistry.rules_for(candidate())

        self.assertEqual([type(r) for r in rules], [StressRule, SleepRule])
        self.assertEqual(len(self.registry.versions()), 1)
