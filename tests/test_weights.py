"""
Tests for IrlsWeightTable
"""

import unittest
import numpy as np

from irlsmap.weights import IrlsWeightTable


class TestIrlsWeightTable(unittest.TestCase):
    """Test weight initialization and reweighting."""

    def test_initialized_to_one(self):
        table = IrlsWeightTable(10)

        self.assertEqual(len(table), 10)
        np.testing.assert_array_equal(table.weights, np.ones(10))

    def test_update_is_inverse_magnitude(self):
        table = IrlsWeightTable(4, epsilon=1e-3)
        table.update(np.array([0.5, -2.0, 0.1, -0.25]))

        np.testing.assert_allclose(table.weights, [2.0, 0.5, 10.0, 4.0])

    def test_large_residual_gets_smaller_weight(self):
        """Weights decrease with residual magnitude and never drop below epsilon."""
        epsilon = 1e-3
        table = IrlsWeightTable(5, epsilon=epsilon)
        table.update(np.array([5.0, 1e-6, -1e-5, 0.0, 2e-4]))

        large = table[0]
        for index in range(1, 5):
            self.assertLess(large, table[index])
        self.assertTrue(np.all(table.weights >= epsilon))
        np.testing.assert_allclose(table.weights[1:], 1.0 / epsilon)

    def test_weight_floor(self):
        epsilon = 1e-3
        table = IrlsWeightTable(3, epsilon=epsilon)
        table.update(np.array([1e4, 1e9, -1e6]))

        np.testing.assert_array_equal(table.weights, [epsilon] * 3)

    def test_non_finite_residuals_clamp_to_floor(self):
        epsilon = 1e-2
        table = IrlsWeightTable(4, epsilon=epsilon)
        with self.assertLogs('irlsmap.weights', level='WARNING'):
            table.update(np.array([np.nan, np.inf, -np.inf, 0.5]))

        np.testing.assert_allclose(table.weights, [epsilon, epsilon, epsilon, 2.0])
        self.assertTrue(np.all(np.isfinite(table.weights)))

    def test_update_in_place_and_reset(self):
        table = IrlsWeightTable(3)
        weights = table.weights
        table.update(np.array([0.5, 0.5, 0.5]))

        self.assertIs(table.weights, weights)
        np.testing.assert_allclose(weights, 2.0)

        table.reset()
        self.assertIs(table.weights, weights)
        np.testing.assert_array_equal(weights, np.ones(3))

    def test_invalid_arguments(self):
        with self.assertRaises(ValueError):
            IrlsWeightTable(0)
        with self.assertRaises(ValueError):
            IrlsWeightTable(4, epsilon=0.0)
        with self.assertRaises(ValueError):
            IrlsWeightTable(4, epsilon=-1.0)

        table = IrlsWeightTable(4)
        with self.assertRaises(ValueError):
            table.update(np.zeros(3))
        with self.assertRaises(ValueError):
            table.update(None)


if __name__ == '__main__':
    unittest.main()
