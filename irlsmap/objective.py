"""
Objective Function - Composable cost terms for the MAP estimate

The objective is a sum of independent terms, typically one data fidelity
term per observed frame plus one term per regularizer. Each term computes
its cost and, optionally, adds its gradient into a shared buffer.
"""

import abc
import logging

import numpy as np


logger = logging.getLogger(__name__)


def check_estimate(estimate, num_parameters):
    """Validate an estimate vector and return it as a flat float64 array."""
    if estimate is None:
        raise ValueError("Estimate must not be None")
    estimate = np.asarray(estimate, dtype=np.float64).reshape(-1)
    if estimate.size != num_parameters:
        raise ValueError(
            f"Estimate has {estimate.size} values, expected {num_parameters}"
        )
    return estimate


def numerical_gradient(cost_function, x, step=1e-6):
    """
    Central difference approximation of the gradient of cost_function at x.

    Args:
        cost_function: Callable mapping a flat vector to a scalar cost
        x: Point to differentiate at
        step: Finite difference step size

    Returns:
        np.ndarray: Gradient estimate, same length as x
    """
    x = np.array(x, dtype=np.float64).reshape(-1)
    gradient = np.zeros_like(x)
    for i in range(x.size):
        original = x[i]
        x[i] = original + step
        cost_plus = cost_function(x)
        x[i] = original - step
        cost_minus = cost_function(x)
        x[i] = original
        gradient[i] = (cost_plus - cost_minus) / (2.0 * step)
    return gradient


class ObjectiveTerm(abc.ABC):
    """One independently computed part of the objective."""

    @abc.abstractmethod
    def compute(self, estimate, gradient=None):
        """
        Compute this term's cost at the estimate.

        Args:
            estimate: Flat HR estimate
            gradient: None, or an array the term's gradient is added into

        Returns:
            float: The term's cost
        """


class ObjectiveFunction:
    """
    Sums the costs and gradients of a list of ObjectiveTerms.

    Also tracks solver progress: report_iteration_complete() is meant to be
    called once per accepted solver iteration. It does not know anything
    about what the terms do between iterations.
    """

    def __init__(self, num_parameters, use_numerical_differentiation=False,
                 numerical_diff_step=1e-6):
        """
        Args:
            num_parameters: Length of the estimate and gradient vectors
            use_numerical_differentiation: Compute gradients by central
                differences instead of asking the terms
            numerical_diff_step: Step size for numerical differentiation
        """
        if num_parameters <= 0:
            raise ValueError(f"num_parameters must be positive, got {num_parameters}")
        self.num_parameters = num_parameters
        self.use_numerical_differentiation = use_numerical_differentiation
        self.numerical_diff_step = numerical_diff_step
        self.terms = []
        self.cost_history = []
        self._num_iterations_completed = 0

    def add_term(self, objective_term):
        self.terms.append(objective_term)

    def compute_all_terms(self, estimate, gradient=None):
        """
        Compute the total cost and, if a buffer is given, the total gradient.

        Args:
            estimate: Flat HR estimate
            gradient: None to skip gradient work, or an array of length
                num_parameters that is overwritten with the summed gradient

        Returns:
            float: Sum of all term costs
        """
        estimate = check_estimate(estimate, self.num_parameters)
        if gradient is not None and gradient.shape != (self.num_parameters,):
            raise ValueError(
                f"Gradient buffer has shape {gradient.shape}, "
                f"expected ({self.num_parameters},)"
            )

        if gradient is None or self.use_numerical_differentiation:
            cost = self._sum_costs(estimate)
            if gradient is not None:
                gradient[:] = numerical_gradient(
                    self._sum_costs, estimate, self.numerical_diff_step
                )
            return cost

        gradient.fill(0.0)
        cost = 0.0
        for term in self.terms:
            term_cost = term.compute(estimate, gradient)
            logger.debug("%r cost = %.6g", term, term_cost)
            cost += term_cost
        return cost

    def _sum_costs(self, estimate):
        return sum(term.compute(estimate) for term in self.terms)

    def report_iteration_complete(self, cost):
        """Record that the solver finished an iteration at the given cost."""
        self._num_iterations_completed += 1
        self.cost_history.append(float(cost))

    def get_num_completed_iterations(self):
        return self._num_iterations_completed


class DataTerm(ObjectiveTerm):
    """
    Data fidelity of one observed frame.

    The degraded estimate and the observation are both replicated back onto
    the HR grid and compared pixel by pixel there:

        cost = || U(A x) - U(y) ||^2
        grad = 2 A^T U^T (U(A x) - U(y))

    where A is the frame's degradation and U is nearest-neighbour
    upsampling by the scale factor.
    """

    def __init__(self, degradation_operator, observation, image_index, image_size,
                 channel=0):
        """
        Args:
            degradation_operator: DegradationOperator shared by all frames
            observation: LR ImageData for this frame
            image_index: Index of this frame in the degradation operator
            image_size: HR (width, height)
            channel: Observation channel to compare against
        """
        self.degradation_operator = degradation_operator
        self.image_index = image_index
        self.image_size = tuple(image_size)
        self.scale = degradation_operator.get_downsampling_scale()
        self.low_res_size = degradation_operator.get_low_res_size(self.image_size)

        if observation.get_image_size() != self.low_res_size:
            raise ValueError(
                f"Observation {image_index} has size {observation.get_image_size()}, "
                f"expected {self.low_res_size}"
            )
        self.num_pixels = self.image_size[0] * self.image_size[1]
        self.upsampled_observation = self._upsample(
            observation.get_channel_data(channel)
        )

    def _upsample(self, low_res):
        width, height = self.low_res_size
        image = low_res.reshape(height, width)
        s = self.scale
        return np.repeat(np.repeat(image, s, axis=0), s, axis=1).reshape(-1)

    def _upsample_transpose(self, high_res):
        width, height = self.low_res_size
        s = self.scale
        return high_res.reshape(height, s, width, s).sum(axis=(1, 3)).reshape(-1)

    def compute_residuals(self, estimate):
        """Per HR pixel residuals between the degraded estimate and the observation."""
        estimate = check_estimate(estimate, self.num_pixels)
        degraded = self.degradation_operator.apply(
            estimate, self.image_size, self.image_index
        )
        return self._upsample(degraded) - self.upsampled_observation

    def compute(self, estimate, gradient=None):
        residuals = self.compute_residuals(estimate)
        cost = float(np.dot(residuals, residuals))

        if gradient is not None:
            low_res_residuals = self._upsample_transpose(residuals)
            gradient += 2.0 * self.degradation_operator.apply_transpose(
                low_res_residuals, self.low_res_size, self.image_index
            )
        return cost

    def __repr__(self):
        return f"DataTerm(image_index={self.image_index})"


class IrlsRegularizationTerm(ObjectiveTerm):
    """
    IRLS-weighted regularization term.

    Each residual r_i is scaled by lambda * sqrt(w_i) before squaring, so
    the cost is sum_i lambda^2 * w_i * r_i^2. The weights come from a shared
    IrlsWeightTable which is read here and refreshed between iterations.
    """

    def __init__(self, regularizer, regularization_parameter, irls_weights):
        """
        Args:
            regularizer: Regularizer computing residuals and derivatives
            regularization_parameter: Strength lambda (>= 0)
            irls_weights: IrlsWeightTable shared with the solver
        """
        if regularization_parameter < 0:
            raise ValueError(
                f"Regularization parameter must be non-negative, got {regularization_parameter}"
            )
        if regularizer.num_pixels != irls_weights.num_pixels:
            raise ValueError(
                f"{regularizer!r} covers {regularizer.num_pixels} pixels but the "
                f"weight table has {irls_weights.num_pixels}"
            )
        self.regularizer = regularizer
        self.regularization_parameter = float(regularization_parameter)
        self.irls_weights = irls_weights

    def compute(self, estimate, gradient=None):
        estimate = check_estimate(estimate, self.regularizer.num_pixels)
        weights = self.irls_weights.weights
        lam = self.regularization_parameter

        residuals = self.regularizer.apply_to_image(estimate)
        scaled_residuals = lam * np.sqrt(weights) * residuals
        cost = float(np.dot(scaled_residuals, scaled_residuals))

        if gradient is not None:
            # d/dx (lambda sqrt(w) r)^2 = 2 * lambda * sqrt(w) * scaled_r * dr/dx
            partial_const_terms = 2.0 * lam * np.sqrt(weights) * scaled_residuals
            gradient += self.regularizer.get_derivatives(estimate, partial_const_terms)
        return cost

    def __repr__(self):
        return (
            f"IrlsRegularizationTerm({self.regularizer!r}, "
            f"lambda={self.regularization_parameter})"
        )
