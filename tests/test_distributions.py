"""
Tests for waiting-time distributions and discrete hazards.
"""

import unittest
import numpy as np
from scipy import stats

from denim import (
    Distribution,
    DistributionKind,
    InvalidDistribution,
    exponential,
    gamma,
    weibull,
    lognormal,
    nonparametric
)


class TestNonparametric(unittest.TestCase):
    """Test cases for empirical waiting-time tables."""

    def test_table_is_normalized(self):
        """Tables that do not sum to one are rescaled."""
        d = nonparametric([1, 2, 3, 4])
        self.assertAlmostEqual(sum(d.waiting_time), 1.0)
        np.testing.assert_allclose(d.waiting_time, [0.1, 0.2, 0.3, 0.4])

        # Already normalized tables are kept as they are
        d = nonparametric([0.25, 0.75])
        self.assertEqual(d.waiting_time, (0.25, 0.75))

    def test_hazard_formula(self):
        """hazard(k) = wt[k] / (1 - sum(wt[:k]))."""
        wt = [0.1, 0.2, 0.3, 0.4]
        d = nonparametric(wt)
        for k in range(len(wt)):
            expected = wt[k] / (1 - sum(wt[:k]))
            self.assertAlmostEqual(d.hazard(k), expected, places=12)

        # Last bin always empties
        self.assertAlmostEqual(d.hazard(3), 1.0)

    def test_hazard_beyond_support(self):
        """No one stays past the end of the table."""
        d = nonparametric([0.5, 0.3, 0.2])
        for k in range(3, 10):
            self.assertEqual(d.hazard(k), 1.0)

    def test_hazard_bounds(self):
        """Hazards are probabilities for random tables."""
        rng = np.random.default_rng(7)
        for _ in range(20):
            wt = rng.uniform(0, 1, size=rng.integers(1, 15))
            wt[rng.uniform(size=wt.size) < 0.3] = 0.0
            if wt.sum() == 0:
                wt[0] = 1.0
            d = nonparametric(wt)
            self.assertAlmostEqual(sum(d.waiting_time), 1.0)
            hazards = [d.hazard(k) for k in range(wt.size + 3)]
            self.assertTrue(all(0.0 <= h <= 1.0 for h in hazards))
            table, tail = d.hazard_table(time_step=1.0)
            self.assertEqual(tail, 1.0)
            self.assertTrue(np.all((table >= 0) & (table <= 1)))

    def test_zero_bins_inside_table(self):
        """Zero-weight bins give zero hazard while survivors remain."""
        d = nonparametric([0.0, 0.5, 0.0, 0.5])
        self.assertEqual(d.hazard(0), 0.0)
        self.assertAlmostEqual(d.hazard(1), 0.5)
        self.assertEqual(d.hazard(2), 0.0)
        self.assertAlmostEqual(d.hazard(3), 1.0)

    def test_hazard_table_matches_hazard(self):
        """Compiled table agrees with pointwise hazards on the native grid."""
        d = nonparametric([0.2, 0.3, 0.5])
        table, tail = d.hazard_table(time_step=1.0)
        self.assertEqual(len(table), 3)
        np.testing.assert_allclose(table, [d.hazard(k) for k in range(3)])
        self.assertEqual(tail, 1.0)

    def test_finer_time_step(self):
        """Halving the step spreads each bin uniformly over two steps."""
        d = nonparametric([0.5, 0.5])
        table, _ = d.hazard_table(time_step=0.5)
        self.assertEqual(len(table), 4)
        survival = np.cumprod(np.concatenate(([1.0], 1 - table)))
        np.testing.assert_allclose(survival, [1.0, 0.75, 0.5, 0.25, 0.0],
                                   atol=1e-12)

    def test_invalid_tables(self):
        """Empty, negative, zero-sum and non-finite tables are rejected."""
        with self.assertRaises(InvalidDistribution):
            nonparametric([])
        with self.assertRaises(InvalidDistribution):
            nonparametric([0.5, -0.1, 0.6])
        with self.assertRaises(InvalidDistribution):
            nonparametric([0, 0, 0])
        with self.assertRaises(InvalidDistribution):
            nonparametric([0.5, np.nan])
        with self.assertRaises(InvalidDistribution):
            nonparametric([0.5, 0.5], bin_width=0)

    def test_invalid_distribution_is_value_error(self):
        """Construction errors can be caught as ValueError."""
        with self.assertRaises(ValueError):
            nonparametric([-1])


class TestParametric(unittest.TestCase):
    """Test cases for exponential, gamma, Weibull and log-normal hazards."""

    def test_exponential_constant_hazard(self):
        """Exponential hazard does not depend on elapsed time."""
        d = exponential(rate=0.3)
        expected = 1 - np.exp(-0.3 * 0.5)
        for k in (0, 1, 10, 1000):
            self.assertAlmostEqual(d.hazard(k, time_step=0.5), expected)
        self.assertTrue(d.memoryless)

        table, tail = d.hazard_table(time_step=0.5)
        self.assertEqual(len(table), 0)
        self.assertAlmostEqual(tail, expected)

    def test_gamma_hazard_from_survival(self):
        """hazard(k) = 1 - S((k+1)dt) / S(k dt) with the gamma survival."""
        d = gamma(scale=2.0, shape=3.0)
        dt = 0.25
        sf = stats.gamma(a=3.0, scale=2.0).sf
        for k in (0, 1, 5, 20):
            expected = 1 - sf((k + 1) * dt) / sf(k * dt)
            self.assertAlmostEqual(d.hazard(k, time_step=dt), expected, places=10)
        self.assertFalse(d.memoryless)

    def test_gamma_hazard_increases_with_shape_above_one(self):
        """Shape > 1 gives an increasing hazard."""
        table, tail = gamma(scale=1.0, shape=2.0).hazard_table(time_step=0.1)
        self.assertTrue(np.all(np.diff(table[:50]) > 0))
        self.assertEqual(tail, 1.0)

    def test_weibull_hazard(self):
        """Weibull hazard uses the Weibull survival function."""
        d = weibull(scale=3.0, shape=1.5)
        sf = stats.weibull_min(c=1.5, scale=3.0).sf
        expected = 1 - sf(2.0) / sf(1.0)
        self.assertAlmostEqual(d.hazard(1, time_step=1.0), expected, places=10)

    def test_weibull_shape_one_is_exponential(self):
        """Weibull with shape 1 reduces to an exponential."""
        w = weibull(scale=2.0, shape=1.0)
        e = exponential(rate=0.5)
        for k in range(5):
            self.assertAlmostEqual(w.hazard(k, 0.1), e.hazard(k, 0.1), places=10)

    def test_lognormal_hazard(self):
        """Log-normal hazard uses the log-normal survival function."""
        d = lognormal(meanlog=1.0, sdlog=0.5)
        sf = stats.lognorm(s=0.5, scale=np.exp(1.0)).sf
        expected = 1 - sf(3.0) / sf(2.0)
        self.assertAlmostEqual(d.hazard(2, time_step=1.0), expected, places=10)

    def test_table_survival_reaches_cutoff(self):
        """Parametric tables cover the distribution up to the cutoff."""
        d = gamma(scale=1.0, shape=2.0)
        table, _ = d.hazard_table(time_step=0.1, survival_cutoff=1e-6)
        survival = np.prod(1 - table)
        self.assertLess(survival, 1e-5)
        self.assertTrue(np.all((table >= 0) & (table <= 1)))

    def test_invalid_parameters(self):
        """Non-positive parameters are rejected."""
        with self.assertRaises(InvalidDistribution):
            exponential(rate=0)
        with self.assertRaises(InvalidDistribution):
            gamma(scale=-1, shape=2)
        with self.assertRaises(InvalidDistribution):
            weibull(scale=1, shape=np.inf)
        with self.assertRaises(InvalidDistribution):
            lognormal(meanlog=np.nan, sdlog=1)
        with self.assertRaises(InvalidDistribution):
            Distribution("uniform")

    def test_parameters_of_other_kinds_rejected(self):
        """Only the parameters of the chosen kind may be set."""
        with self.assertRaises(InvalidDistribution):
            Distribution("exponential", rate=1.0, shape=3.0)
        with self.assertRaises(InvalidDistribution):
            Distribution("gamma", scale=1.0, shape=2.0, waiting_time=(0.5, 0.5))
        with self.assertRaises(InvalidDistribution):
            Distribution("weibull", scale=1.0, shape=2.0, bin_width=0.5)
        self.assertEqual(Distribution("exponential", rate=1.0),
                         exponential(rate=1.0))

    def test_invalid_time_step(self):
        """time_step and k are validated."""
        d = exponential(rate=1.0)
        with self.assertRaises(ValueError):
            d.hazard(0, time_step=0)
        with self.assertRaises(ValueError):
            d.hazard(-1)


class TestDistributionValue(unittest.TestCase):
    """Distributions are immutable values."""

    def test_frozen(self):
        d = exponential(rate=1.0)
        with self.assertRaises(AttributeError):
            d.rate = 2.0

    def test_equality_and_kind(self):
        self.assertEqual(gamma(1.0, 2.0), gamma(1.0, 2.0))
        self.assertNotEqual(gamma(1.0, 2.0), weibull(1.0, 2.0))
        self.assertIs(Distribution("gamma", scale=1, shape=2).kind,
                      DistributionKind.GAMMA)


if __name__ == '__main__':
    unittest.main()
