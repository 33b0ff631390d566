"""
Minimizer - Gradient-based optimization backends driven by callbacks
"""

import abc
import logging
from dataclasses import dataclass

import numpy as np
from scipy import optimize


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Tolerances:
    """
    Convergence settings handed to a Minimizer.

    gradient_eps: stop when the gradient norm falls below this
    cost_eps: stop when the relative cost reduction falls below this
    step_eps: stop when an accepted step moves the estimate less than this
    max_iterations: iteration cap, 0 for no cap
    """

    gradient_eps: float = 1e-10
    cost_eps: float = 0.0
    step_eps: float = 0.0
    max_iterations: int = 50


class Minimizer(abc.ABC):
    """
    Minimizes an objective given as callbacks.

    objective_and_gradient(x) -> (cost, gradient) is called on every trial
    point; iteration_report(x, cost) is called once per accepted iteration.
    The two are never called concurrently.
    """

    @abc.abstractmethod
    def minimize(self, initial_vector, objective_and_gradient, iteration_report,
                 tolerances):
        """
        Returns:
            np.ndarray: The final estimate
        """


class ScipyMinimizer(Minimizer):
    """Minimizer backed by scipy.optimize.minimize with analytic gradients."""

    SUPPORTED_METHODS = ('L-BFGS-B', 'CG', 'BFGS')

    def __init__(self, method='L-BFGS-B'):
        """
        Args:
            method: 'L-BFGS-B', 'CG' or 'BFGS'
        """
        if method not in self.SUPPORTED_METHODS:
            raise ValueError(
                f"Unsupported method '{method}', expected one of "
                f"{list(self.SUPPORTED_METHODS)}"
            )
        self.method = method
        self.last_result = None

    def _options(self, tolerances):
        options = {'gtol': tolerances.gradient_eps}
        if tolerances.max_iterations > 0:
            options['maxiter'] = tolerances.max_iterations
        if self.method == 'L-BFGS-B':
            options['ftol'] = tolerances.cost_eps
        return options

    def minimize(self, initial_vector, objective_and_gradient, iteration_report,
                 tolerances):
        last_evaluation = {'x': None, 'cost': None}
        previous = {'x': np.array(initial_vector, dtype=np.float64)}

        def fun(x):
            cost, gradient = objective_and_gradient(x)
            last_evaluation['x'] = np.array(x, copy=True)
            last_evaluation['cost'] = cost
            return cost, gradient

        def callback(xk):
            xk = np.array(xk, copy=True)
            if last_evaluation['x'] is not None and np.array_equal(xk, last_evaluation['x']):
                cost = last_evaluation['cost']
            else:
                cost, _ = objective_and_gradient(xk)
            iteration_report(xk, cost)

            step = np.linalg.norm(xk - previous['x'])
            previous['x'] = xk
            if tolerances.step_eps > 0 and step < tolerances.step_eps:
                logger.info("Step %.3g below tolerance %.3g, stopping", step,
                            tolerances.step_eps)
                raise StopIteration

        result = optimize.minimize(
            fun,
            np.array(initial_vector, dtype=np.float64),
            jac=True,
            method=self.method,
            callback=callback,
            options=self._options(tolerances),
        )
        self.last_result = result

        logger.info(
            "%s finished after %d iterations (cost %.6g): %s",
            self.method, result.nit, result.fun, result.message,
        )
        return result.x
