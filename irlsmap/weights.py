"""
IRLS Weights - Per-pixel reweighting state for the regularization terms
"""

import logging

import numpy as np


logger = logging.getLogger(__name__)


class IrlsWeightTable:
    """
    One non-negative weight per HR pixel, shared by all regularization terms.

    Weights start at 1.0 and are refreshed from the current regularization
    residuals with w = 1 / max(|r|, epsilon), which turns the weighted
    quadratic penalty w * r^2 into an approximation of |r|. Every weight is
    kept at or above epsilon.
    """

    def __init__(self, num_pixels, epsilon=1e-3):
        """
        Args:
            num_pixels: Number of HR pixels
            epsilon: Floor for both the residual magnitude and the weights
        """
        if int(num_pixels) != num_pixels or num_pixels <= 0:
            raise ValueError(f"num_pixels must be a positive integer, got {num_pixels}")
        if not np.isfinite(epsilon) or epsilon <= 0:
            raise ValueError(f"epsilon must be positive, got {epsilon}")
        self.num_pixels = int(num_pixels)
        self.epsilon = float(epsilon)
        self.weights = np.ones(self.num_pixels)

    def reset(self):
        """Set every weight back to 1.0."""
        self.weights.fill(1.0)

    def update(self, residuals):
        """
        Recompute every weight in place from residual magnitudes.

        Non-finite residuals do not propagate: their weights are clamped to
        the epsilon floor.

        Args:
            residuals: Per-pixel regularization residuals, length num_pixels
        """
        if residuals is None:
            raise ValueError("residuals must not be None")
        residuals = np.asarray(residuals, dtype=np.float64).reshape(-1)
        if residuals.size != self.num_pixels:
            raise ValueError(
                f"Got {residuals.size} residuals for {self.num_pixels} weights"
            )

        finite = np.isfinite(residuals)
        magnitude = np.maximum(np.abs(residuals[finite]), self.epsilon)

        self.weights[finite] = np.maximum(1.0 / magnitude, self.epsilon)
        self.weights[~finite] = self.epsilon

        num_clamped = self.num_pixels - int(np.count_nonzero(finite))
        if num_clamped:
            logger.warning(
                "Clamped %d IRLS weights with non-finite residuals to %g",
                num_clamped, self.epsilon,
            )

    def __len__(self):
        return self.num_pixels

    def __getitem__(self, index):
        return self.weights[index]
