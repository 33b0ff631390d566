"""
Tests for IrlsMapSolver
"""

import unittest
import numpy as np

from irlsmap.degradation import DegradationOperator, gaussian_kernel
from irlsmap.image_data import ImageData
from irlsmap.metrics import mse
from irlsmap.minimizer import Minimizer, ScipyMinimizer, Tolerances
from irlsmap.objective import numerical_gradient
from irlsmap.regularizers import (
    BilateralTotalVariationRegularizer,
    SmoothnessRegularizer,
    TotalVariationRegularizer,
)
from irlsmap.solver import IrlsMapSolver, SolverOptions, initial_estimate_from_observation


def _make_scene(width=16, height=16):
    """Smooth ramp with a bright square."""
    y, x = np.mgrid[0:height, 0:width]
    scene = 0.2 + 0.3 * x / width
    scene[height // 4:3 * height // 4, width // 4:3 * width // 4] = 0.9
    return ImageData(scene)


class RecordingMinimizer(Minimizer):
    """Calls each callback once and returns the initial vector unchanged."""

    def __init__(self, solver_weights=None):
        self.solver_weights = solver_weights
        self.calls = []

    def minimize(self, initial_vector, objective_and_gradient, iteration_report,
                 tolerances):
        weights_seen = None
        if self.solver_weights is not None:
            weights_seen = self.solver_weights().copy()
        cost, _ = objective_and_gradient(initial_vector)
        iteration_report(initial_vector, cost)
        self.calls.append((np.array(initial_vector), tolerances, weights_seen))
        return initial_vector


class TestSolverConfiguration(unittest.TestCase):
    """Configuration errors fail at setup."""

    def setUp(self):
        self.image_size = (8, 8)
        self.observation = ImageData(np.zeros((4, 4)))

    def test_observation_count_mismatch(self):
        operator = DegradationOperator(2, num_images=2)
        with self.assertRaises(ValueError):
            IrlsMapSolver([self.observation], operator, [], self.image_size)

    def test_no_observations(self):
        with self.assertRaises(ValueError):
            IrlsMapSolver([], DegradationOperator(2), [], self.image_size)

    def test_observation_size_mismatch(self):
        with self.assertRaises(ValueError):
            IrlsMapSolver([ImageData(np.zeros((3, 4)))], DegradationOperator(2), [],
                          self.image_size)

    def test_size_not_divisible_by_scale(self):
        with self.assertRaises(ValueError):
            IrlsMapSolver([ImageData(np.zeros((3, 3)))], DegradationOperator(2), [],
                          (7, 7))

    def test_channel_mismatch(self):
        operator = DegradationOperator(2, num_images=2)
        observations = [self.observation, ImageData(np.zeros((3, 4, 4)))]
        with self.assertRaises(ValueError):
            IrlsMapSolver(observations, operator, [], self.image_size)

    def test_negative_lambda(self):
        regularizers = [(SmoothnessRegularizer(self.image_size), -0.1)]
        with self.assertRaises(ValueError):
            IrlsMapSolver([self.observation], DegradationOperator(2), regularizers,
                          self.image_size)

    def test_regularizer_size_mismatch(self):
        regularizers = [(SmoothnessRegularizer((4, 4)), 0.1)]
        with self.assertRaises(ValueError):
            IrlsMapSolver([self.observation], DegradationOperator(2), regularizers,
                          self.image_size)

    def test_multi_channel_observations_warn(self):
        observation = ImageData(np.zeros((3, 4, 4)))
        with self.assertLogs('irlsmap.solver', level='WARNING'):
            IrlsMapSolver([observation], DegradationOperator(2), [], self.image_size)

    def test_accessors(self):
        operator = DegradationOperator(2, num_images=2)
        solver = IrlsMapSolver([self.observation, self.observation], operator, [],
                               self.image_size)

        self.assertEqual(solver.get_num_pixels(), 64)
        self.assertEqual(solver.get_num_images(), 2)
        self.assertEqual(solver.get_image_size(), (8, 8))


class TestSolverObjective(unittest.TestCase):
    """Test the objective-and-gradient and iteration-report callbacks."""

    def setUp(self):
        rng = np.random.default_rng(21)
        self.image_size = (8, 6)
        self.operator = DegradationOperator(
            2,
            num_images=2,
            blur_kernel=gaussian_kernel(0.7),
            motion_shifts=[(0, 0), (1, 1)],
        )
        self.observations = [ImageData(rng.random((3, 4))) for _ in range(2)]
        self.regularizers = [
            (TotalVariationRegularizer(self.image_size), 0.2),
            (SmoothnessRegularizer(self.image_size), 0.05),
        ]
        self.solver = IrlsMapSolver(
            self.observations, self.operator, self.regularizers, self.image_size
        )
        self.estimate = rng.random(48)

    def test_weights_start_at_one(self):
        np.testing.assert_array_equal(self.solver.irls_weights.weights, np.ones(48))

    def test_deterministic(self):
        cost_a, gradient_a = self.solver.objective_and_gradient(self.estimate)
        cost_b, gradient_b = self.solver.objective_and_gradient(self.estimate)

        self.assertEqual(cost_a, cost_b)
        np.testing.assert_array_equal(gradient_a, gradient_b)

    def test_objective_is_sum_of_terms(self):
        cost, gradient = self.solver.objective_and_gradient(self.estimate)

        expected_cost, expected_gradient = self.solver.compute_regularization(self.estimate)
        for image_index in range(self.solver.get_num_images()):
            term_cost, term_gradient = self.solver.compute_data_term(
                image_index, self.estimate
            )
            expected_cost += term_cost
            expected_gradient = expected_gradient + term_gradient

        self.assertAlmostEqual(cost, expected_cost)
        np.testing.assert_allclose(gradient, expected_gradient)

    def test_gradient_matches_finite_differences(self):
        """Checked after a reweighting so the weights are not all one."""
        self.solver.update_irls_weights(np.random.default_rng(4).random(48))

        _, gradient = self.solver.objective_and_gradient(self.estimate)
        numeric = numerical_gradient(
            lambda x: self.solver.objective_and_gradient(x)[0], self.estimate, step=1e-6
        )
        np.testing.assert_allclose(gradient, numeric, rtol=1e-5, atol=1e-6)

    def test_numerical_differentiation_option(self):
        solver = IrlsMapSolver(
            self.observations, self.operator, self.regularizers, self.image_size,
            options=SolverOptions(use_numerical_differentiation=True),
        )
        _, numeric = solver.objective_and_gradient(self.estimate)
        _, analytic = self.solver.objective_and_gradient(self.estimate)

        np.testing.assert_allclose(numeric, analytic, rtol=1e-5, atol=1e-6)

    def test_iteration_report_updates_weights(self):
        with self.assertLogs('irlsmap.solver', level='INFO'):
            self.solver.iteration_report(self.estimate, 1.5)

        tv = self.regularizers[0][0].apply_to_image(self.estimate)
        smooth = self.regularizers[1][0].apply_to_image(self.estimate)
        magnitude = np.maximum(np.sqrt(tv ** 2 + smooth ** 2), 1e-3)
        np.testing.assert_allclose(
            self.solver.irls_weights.weights, np.maximum(1.0 / magnitude, 1e-3)
        )
        self.assertEqual(self.solver.objective.get_num_completed_iterations(), 1)
        self.assertEqual(self.solver.objective.cost_history, [1.5])

    def test_reweighting_changes_objective(self):
        cost_before, _ = self.solver.objective_and_gradient(self.estimate)
        self.solver.update_irls_weights(self.estimate)
        cost_after, _ = self.solver.objective_and_gradient(self.estimate)

        self.assertNotAlmostEqual(cost_before, cost_after)

    def test_invalid_estimate(self):
        with self.assertRaises(ValueError):
            self.solver.objective_and_gradient(None)
        with self.assertRaises(ValueError):
            self.solver.objective_and_gradient(np.zeros(47))
        with self.assertRaises(ValueError):
            self.solver.update_irls_weights(None)


class TestSolverScenarios(unittest.TestCase):
    """End-to-end behaviour."""

    def test_zero_data_term_uniform_smoothness(self):
        """A uniform estimate that reproduces its observation has zero cost and gradient."""
        image_size = (8, 8)
        operator = DegradationOperator(2, blur_kernel=gaussian_kernel(1.0))
        estimate = ImageData(np.full((8, 8), 0.5))
        observation = operator.apply_to_image(estimate, 0)
        regularizer = SmoothnessRegularizer(image_size)
        solver = IrlsMapSolver([observation], operator, [(regularizer, 0.1)], image_size)

        x = estimate.get_channel_data(0)
        np.testing.assert_allclose(regularizer.apply_to_image(x), 0.0, atol=1e-12)

        cost, gradient = solver.objective_and_gradient(x)
        self.assertAlmostEqual(cost, 0.0)
        np.testing.assert_allclose(gradient, 0.0, atol=1e-12)

    def test_pure_data_term(self):
        """No regularizers: the objective is the data term alone."""
        operator = DegradationOperator(2)
        observation = ImageData(np.array([[0.1]]))
        solver = IrlsMapSolver([observation], operator, [], (2, 2))

        cost, gradient = solver.objective_and_gradient(np.array([0.2, 0.4, 0.6, 0.8]))

        self.assertAlmostEqual(cost, 4 * 0.4 ** 2)
        np.testing.assert_allclose(gradient, np.full(4, 0.8))

    def test_solve_resets_weights_and_passes_tolerances(self):
        image_size = (4, 4)
        observation = ImageData(np.random.default_rng(0).random((2, 2)))
        options = SolverOptions(gradient_tolerance=1e-6, cost_tolerance=1e-9,
                                step_tolerance=1e-7, max_iterations=7)
        minimizer = RecordingMinimizer()
        solver = IrlsMapSolver(
            [observation], DegradationOperator(2),
            [(TotalVariationRegularizer(image_size), 0.1)],
            image_size, options=options, minimizer=minimizer,
        )
        minimizer.solver_weights = lambda: solver.irls_weights.weights
        solver.irls_weights.weights[:] = 5.0

        initial = ImageData(np.full((4, 4), 0.3))
        result = solver.solve(initial)

        _, tolerances, weights_seen = minimizer.calls[0]
        np.testing.assert_array_equal(weights_seen, np.ones(16))
        self.assertEqual(tolerances, Tolerances(1e-6, 1e-9, 1e-7, 7))
        self.assertEqual(result.get_image_size(), image_size)
        np.testing.assert_allclose(result.get_channel_image(0), 0.3)
        self.assertEqual(solver.objective.get_num_completed_iterations(), 1)

    def test_solve_rejects_bad_initial_estimate(self):
        solver = IrlsMapSolver([ImageData(np.zeros((2, 2)))], DegradationOperator(2), [],
                               (4, 4))
        with self.assertRaises(ValueError):
            solver.solve(None)
        with self.assertRaises(ValueError):
            solver.solve(ImageData(np.zeros((2, 2))))

    def test_multi_frame_reconstruction_improves_on_upsampling(self):
        scene = _make_scene()
        image_size = scene.get_image_size()
        shifts = [(0, 0), (0, 1), (1, 0), (1, 1)]
        operator = DegradationOperator(2, num_images=4, motion_shifts=shifts)
        observations = [operator.apply_to_image(scene, i) for i in range(4)]

        regularizer = TotalVariationRegularizer(image_size)
        options = SolverOptions(max_iterations=100, irls_epsilon=1e-2)
        solver = IrlsMapSolver(
            observations, operator, [(regularizer, 0.01)], image_size,
            options=options, minimizer=ScipyMinimizer('L-BFGS-B'),
        )
        initial = initial_estimate_from_observation(observations[0], 2, 'bicubic')
        initial_cost, _ = solver.objective_and_gradient(initial.get_channel_data(0))

        result = solver.solve(initial)

        truth = scene.get_channel_image(0)
        self.assertLess(
            mse(truth, result.get_channel_image(0)),
            mse(truth, initial.get_channel_image(0)),
        )
        self.assertGreater(solver.objective.get_num_completed_iterations(), 0)
        self.assertLess(solver.objective.cost_history[0], initial_cost)
        self.assertTrue(np.all(solver.irls_weights.weights >= 1e-2))

    def test_solve_with_bilateral_tv_and_cg(self):
        scene = _make_scene(8, 8)
        operator = DegradationOperator(2, num_images=2, motion_shifts=[(0, 0), (1, 1)])
        observations = [operator.apply_to_image(scene, i) for i in range(2)]
        solver = IrlsMapSolver(
            observations, operator,
            [(BilateralTotalVariationRegularizer((8, 8), patch_radius=1), 0.01)],
            (8, 8),
            options=SolverOptions(max_iterations=20),
            minimizer=ScipyMinimizer('CG'),
        )
        initial = initial_estimate_from_observation(observations[0], 2, 'nearest')

        result = solver.solve(initial)

        self.assertEqual(result.get_image_size(), (8, 8))
        self.assertTrue(np.all(np.isfinite(result.get_channel_image(0))))


class TestInitialEstimate(unittest.TestCase):

    def test_upsamples_to_hr_size(self):
        observation = ImageData(np.full((3, 5), 0.4))
        estimate = initial_estimate_from_observation(observation, 3)

        self.assertEqual(estimate.get_image_size(), (15, 9))
        np.testing.assert_allclose(estimate.get_channel_image(0), 0.4, atol=1e-5)
        self.assertEqual(observation.get_image_size(), (5, 3))


class TestScipyMinimizer(unittest.TestCase):

    def test_minimizes_quadratic_and_reports_iterations(self):
        target = np.array([1.0, -2.0, 3.0])
        reports = []

        def objective_and_gradient(x):
            diff = x - target
            return float(np.dot(diff, diff)), 2.0 * diff

        minimizer = ScipyMinimizer()
        result = minimizer.minimize(
            np.zeros(3), objective_and_gradient,
            lambda x, cost: reports.append(cost), Tolerances(max_iterations=50),
        )

        np.testing.assert_allclose(result, target, atol=1e-6)
        self.assertGreater(len(reports), 0)
        self.assertLess(reports[-1], 1e-6)

    def test_unsupported_method(self):
        with self.assertRaises(ValueError):
            ScipyMinimizer('Nelder-Mead')


if __name__ == '__main__':
    unittest.main()
