"""
IRLS MAP Solver - Super-resolution by iteratively reweighted least squares

The solver minimizes

    sum_i || A_i x - y_i ||^2  +  sum_k lambda_k^2 * sum_p w_p * r_k,p(x)^2

with an external Minimizer. After every accepted iteration the weights w
are recomputed from the current regularization residuals, so each step
minimizes a quadratic that locally approximates a robust (L1-like)
penalty. The objective therefore changes between iterations; this is the
intended quasi-IRLS approximation, and the minimizer's convergence
guarantees only hold approximately.
"""

import logging
from dataclasses import dataclass

import numpy as np

from .image_data import ImageData
from .minimizer import ScipyMinimizer, Tolerances
from .objective import (
    DataTerm,
    IrlsRegularizationTerm,
    ObjectiveFunction,
    check_estimate,
)
from .weights import IrlsWeightTable


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SolverOptions:
    """Tuning parameters for IrlsMapSolver."""

    gradient_tolerance: float = 1e-10
    cost_tolerance: float = 0.0
    step_tolerance: float = 0.0
    max_iterations: int = 50
    irls_epsilon: float = 1e-3
    use_numerical_differentiation: bool = False
    numerical_diff_step: float = 1e-6

    def get_tolerances(self):
        return Tolerances(
            gradient_eps=self.gradient_tolerance,
            cost_eps=self.cost_tolerance,
            step_eps=self.step_tolerance,
            max_iterations=self.max_iterations,
        )


def initial_estimate_from_observation(observation, scale, interpolation='bicubic'):
    """
    Upsample an observation to HR size to use as a starting estimate.

    Args:
        observation: LR ImageData
        scale: Integer upsampling factor
        interpolation: Resampling policy passed to ImageData.resize_image

    Returns:
        ImageData: New image at HR size
    """
    width, height = observation.get_image_size()
    estimate = observation.copy()
    estimate.resize_image((width * scale, height * scale), interpolation)
    return estimate


class IrlsMapSolver:
    """
    Reconstructs one HR image from several LR observations.

    The solver owns the IRLS weight table. The degradation operator and the
    regularizers are shared, read-only collaborators.
    """

    def __init__(self, observations, degradation_operator, regularizers, image_size,
                 options=None, minimizer=None):
        """
        Initialize the solver and validate the configuration.

        Args:
            observations: List of LR ImageData, one per frame of the operator
            degradation_operator: DegradationOperator describing every frame
            regularizers: List of (Regularizer, lambda) pairs
            image_size: HR (width, height)
            options: SolverOptions (default: SolverOptions())
            minimizer: Minimizer (default: ScipyMinimizer())
        """
        self.options = options if options is not None else SolverOptions()
        self.minimizer = minimizer if minimizer is not None else ScipyMinimizer()
        self.degradation_operator = degradation_operator
        self.observations = list(observations)
        self.regularizers = [
            (regularizer, float(lam)) for regularizer, lam in regularizers
        ]
        self.image_size = tuple(image_size)

        self._validate()

        self.irls_weights = IrlsWeightTable(
            self.get_num_pixels(), epsilon=self.options.irls_epsilon
        )
        self.data_terms = [
            DataTerm(degradation_operator, observation, image_index, self.image_size)
            for image_index, observation in enumerate(self.observations)
        ]
        self.regularization_terms = [
            IrlsRegularizationTerm(regularizer, lam, self.irls_weights)
            for regularizer, lam in self.regularizers
        ]

        self.objective = ObjectiveFunction(
            self.get_num_pixels(),
            use_numerical_differentiation=self.options.use_numerical_differentiation,
            numerical_diff_step=self.options.numerical_diff_step,
        )
        for term in self.data_terms + self.regularization_terms:
            self.objective.add_term(term)

    def _validate(self):
        if not self.observations:
            raise ValueError("At least one observation is required")

        num_images = self.degradation_operator.get_num_images()
        if len(self.observations) != num_images:
            raise ValueError(
                f"Got {len(self.observations)} observations but the degradation "
                f"operator describes {num_images} images"
            )

        width, height = self.image_size
        if width <= 0 or height <= 0:
            raise ValueError(f"Invalid HR image size {self.image_size}")
        low_res_size = self.degradation_operator.get_low_res_size(self.image_size)

        num_channels = self.observations[0].get_num_channels()
        for image_index, observation in enumerate(self.observations):
            if observation.get_image_size() != low_res_size:
                raise ValueError(
                    f"Observation {image_index} has size {observation.get_image_size()}, "
                    f"expected {low_res_size} for HR size {self.image_size}"
                )
            if observation.get_num_channels() != num_channels:
                raise ValueError(
                    f"Observation {image_index} has {observation.get_num_channels()} "
                    f"channels, expected {num_channels}"
                )
        if num_channels > 1:
            logger.warning(
                "Observations have %d channels; only channel 0 is reconstructed",
                num_channels,
            )

        for regularizer, lam in self.regularizers:
            if lam < 0:
                raise ValueError(f"Regularization parameter must be non-negative, got {lam}")
            if regularizer.image_size != self.image_size:
                raise ValueError(
                    f"{regularizer!r} does not match HR size {self.image_size}"
                )

    def get_num_pixels(self):
        return self.image_size[0] * self.image_size[1]

    def get_num_images(self):
        return len(self.observations)

    def get_image_size(self):
        return self.image_size

    def compute_data_term(self, image_index, estimate):
        """
        Cost and gradient of one frame's data fidelity term.

        Returns:
            tuple: (cost, gradient)
        """
        gradient = np.zeros(self.get_num_pixels())
        cost = self.data_terms[image_index].compute(estimate, gradient)
        return cost, gradient

    def compute_regularization(self, estimate):
        """
        Summed cost and gradient of all IRLS-weighted regularization terms.

        Returns:
            tuple: (cost, gradient)
        """
        gradient = np.zeros(self.get_num_pixels())
        cost = 0.0
        for term in self.regularization_terms:
            cost += term.compute(estimate, gradient)
        return cost, gradient

    def objective_and_gradient(self, estimate):
        """
        Total cost and gradient at the estimate under the current weights.

        Returns:
            tuple: (cost, gradient)
        """
        gradient = np.zeros(self.get_num_pixels())
        cost = self.objective.compute_all_terms(estimate, gradient)
        return cost, gradient

    def iteration_report(self, estimate, cost):
        """Called after every accepted iteration: refresh the IRLS weights."""
        self.update_irls_weights(estimate)
        self.objective.report_iteration_complete(cost)
        logger.info(
            "Iteration %d: cost = %.6g",
            self.objective.get_num_completed_iterations(), cost,
        )

    def update_irls_weights(self, estimate):
        """
        Recompute the weights from the regularization residuals at the estimate.

        With several regularizers the per-pixel residuals are combined as
        sqrt(sum_k r_k^2) since all terms share one weight table.
        """
        estimate = check_estimate(estimate, self.get_num_pixels())
        if not self.regularizers:
            return

        squared = np.zeros(self.get_num_pixels())
        for regularizer, _ in self.regularizers:
            squared += regularizer.apply_to_image(estimate) ** 2
        self.irls_weights.update(np.sqrt(squared))

    def solve(self, initial_estimate):
        """
        Run the minimizer from the initial estimate.

        Args:
            initial_estimate: ImageData at HR size

        Returns:
            ImageData: The reconstructed HR image (one channel)
        """
        if initial_estimate is None:
            raise ValueError("Initial estimate must not be None")
        if initial_estimate.get_image_size() != self.image_size:
            raise ValueError(
                f"Initial estimate has size {initial_estimate.get_image_size()}, "
                f"expected {self.image_size}"
            )

        self.irls_weights.reset()
        logger.info(
            "Solving %dx%d estimate from %d observations with %d regularizers",
            self.image_size[0], self.image_size[1],
            self.get_num_images(), len(self.regularizers),
        )

        solution = self.minimizer.minimize(
            initial_estimate.get_channel_data(0),
            self.objective_and_gradient,
            self.iteration_report,
            self.options.get_tolerances(),
        )

        logger.info(
            "Finished after %d iterations",
            self.objective.get_num_completed_iterations(),
        )
        return ImageData(solution, self.image_size)
