import unittest

from stackdeploy.testing.fakes import FakeClock
from stackdeploy.utils.backoff import ExponentialBackoff


class TestExponentialBackoff(unittest.TestCase):
    def test_next_backoff(self):
        initial_expected_backoff = 0.5
        multiplication_factor = 1.5

        boff = ExponentialBackoff(randomization_factor=0)  # no jitter for deterministic testing

        self.assertEqual(boff.next_backoff(), initial_expected_backoff)
        self.assertEqual(boff.next_backoff(), initial_expected_backoff * multiplication_factor)
        self.assertEqual(
            boff.next_backoff(), initial_expected_backoff * multiplication_factor**2
        )

    def test_backoff_retry_limit(self):
        boff = ExponentialBackoff(randomization_factor=0, max_retries=1)

        self.assertFalse(boff.exhausted)
        self.assertEqual(boff.next_backoff(), 0.5)
        self.assertTrue(boff.exhausted)

        # max_retries exceeded, only 0 should be returned until reset() called
        self.assertEqual(boff.next_backoff(), 0)
        self.assertEqual(boff.next_backoff(), 0)

        boff.reset()

        self.assertEqual(boff.next_backoff(), 0.5)
        self.assertEqual(boff.next_backoff(), 0)

    def test_backoff_retry_limit_disable_retries(self):
        boff = ExponentialBackoff(randomization_factor=0, max_retries=0)

        self.assertEqual(boff.next_backoff(), 0)
        boff.reset()
        self.assertEqual(boff.next_backoff(), 0)

    def test_backoff_time_elapsed_limit(self):
        clock = FakeClock()
        boff = ExponentialBackoff(randomization_factor=0, max_time_elapsed=1.0, clock=clock)

        self.assertEqual(boff.next_backoff(), 0.5)
        clock.advance(0.5)
        self.assertEqual(boff.next_backoff(), 0.75)
        clock.advance(0.75)

        # more than max_time_elapsed has passed since the first call
        self.assertEqual(boff.next_backoff(), 0)

    def test_backoff_max_interval(self):
        boff = ExponentialBackoff(
            initial_interval=2, randomization_factor=0, multiplier=10, max_interval=5
        )

        self.assertEqual(boff.next_backoff(), 2)
        self.assertEqual(boff.next_backoff(), 5)
        self.assertEqual(boff.next_backoff(), 5)

    def test_backoff_randomization(self):
        boff = ExponentialBackoff(initial_interval=1, randomization_factor=0.5, multiplier=2)

        first = boff.next_backoff()
        second = boff.next_backoff()

        self.assertTrue(0.5 <= first <= 1.5)
        self.assertTrue(1 <= second <= 3)
