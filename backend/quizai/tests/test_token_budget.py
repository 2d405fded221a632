from django.test import SimpleTestCase

from quizai.services.errors import SessionLimitExceeded
from quizai.services.token_budget import SessionTokenTracker, SessionTrackerRegistry


class SessionTokenTrackerTests(SimpleTestCase):

    def test_usage_accumulates(self):
        tracker = SessionTokenTracker(ceiling=1000, cost_per_1k_usd=0.0006)
        tracker.record_usage(100, 50)
        tracker.record_usage(200, 150)

        usage = tracker.get_usage()
        self.assertEqual(usage.total_tokens, 500)
        self.assertEqual(usage.call_count, 2)
        self.assertAlmostEqual(usage.estimated_cost, 0.0003)
        self.assertEqual(tracker.remaining_tokens, 500)

    def test_check_passes_below_ceiling(self):
        tracker = SessionTokenTracker(ceiling=1000)
        tracker.record_usage(500, 499)
        tracker.check_and_reserve()
        self.assertFalse(tracker.is_exhausted)

    def test_reaching_ceiling_blocks_further_calls(self):
        tracker = SessionTokenTracker(ceiling=1000)
        tracker.record_usage(600, 400)
        self.assertTrue(tracker.is_exhausted)
        with self.assertRaises(SessionLimitExceeded) as ctx:
            tracker.check_and_reserve()
        self.assertEqual(ctx.exception.code, "SESSION_LIMIT")
        self.assertEqual(ctx.exception.http_status, 429)

    def test_check_does_not_change_usage(self):
        tracker = SessionTokenTracker(ceiling=10)
        tracker.record_usage(10, 0)
        for _ in range(3):
            with self.assertRaises(SessionLimitExceeded):
                tracker.check_and_reserve()
        self.assertEqual(tracker.get_usage().call_count, 1)

    def test_negative_counts_are_rejected(self):
        tracker = SessionTokenTracker()
        with self.assertRaises(ValueError):
            tracker.record_usage(-1, 0)
        self.assertEqual(tracker.get_usage().total_tokens, 0)

    def test_ceiling_must_be_positive(self):
        with self.assertRaises(ValueError):
            SessionTokenTracker(ceiling=0)


class SessionTrackerRegistryTests(SimpleTestCase):

    def test_one_tracker_per_session(self):
        registry = SessionTrackerRegistry(ceiling=500)
        first = registry.get("a")
        self.assertIs(registry.get("a"), first)
        self.assertIsNot(registry.get("b"), first)
        self.assertEqual(len(registry), 2)
        self.assertEqual(first.ceiling, 500)

    def test_sessions_have_independent_budgets(self):
        registry = SessionTrackerRegistry(ceiling=100)
        registry.get("a").record_usage(100, 0)
        registry.get("b").check_and_reserve()
        self.assertIn("a", registry)
        self.assertNotIn("c", registry)

    def test_oldest_tracker_is_dropped_when_full(self):
        registry = SessionTrackerRegistry(max_sessions=2)
        registry.get("a")
        registry.get("b")
        registry.get("c")
        self.assertEqual(len(registry), 2)
        self.assertNotIn("a", registry)
        self.assertIn("c", registry)

    def test_discard(self):
        registry = SessionTrackerRegistry()
        registry.get("a")
        registry.discard("a")
        registry.discard("missing")
        self.assertNotIn("a", registry)
        with self.assertRaises(ValueError):
            SessionTrackerRegistry(max_sessions=0)
