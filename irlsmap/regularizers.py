"""
Regularizers - Local stencil penalties on the HR estimate

Every regularizer maps the flat HR estimate to one residual per pixel and
computes the derivative of a coefficient-weighted sum of those residuals:

    d/dx_j  sum_i c_i * r_i(x)

A pixel appears in the stencils of several neighbours, so its derivative
collects a contribution from each residual it takes part in.
"""

import abc

import numpy as np


class Regularizer(abc.ABC):
    """Base class for stencil-based regularizers on a (width, height) image."""

    def __init__(self, image_size):
        width, height = image_size
        if width <= 0 or height <= 0:
            raise ValueError(f"Invalid image size {image_size}")
        self.image_size = (int(width), int(height))
        self.num_pixels = self.image_size[0] * self.image_size[1]

    @abc.abstractmethod
    def apply_to_image(self, estimate):
        """
        Compute the per-pixel residuals of the estimate.

        Args:
            estimate: Flat HR estimate of length num_pixels

        Returns:
            np.ndarray: Residuals, length num_pixels
        """

    @abc.abstractmethod
    def get_derivatives(self, estimate, partial_const_terms):
        """
        Derivative of sum_i c_i * r_i(estimate) with respect to every pixel.

        Args:
            estimate: Flat HR estimate of length num_pixels
            partial_const_terms: Upstream coefficient c_i for each residual

        Returns:
            np.ndarray: Gradient, length num_pixels
        """

    def _as_image(self, vector, name='estimate'):
        if vector is None:
            raise ValueError(f"{name} must not be None")
        vector = np.asarray(vector, dtype=np.float64)
        if vector.size != self.num_pixels:
            raise ValueError(
                f"{name} has {vector.size} values, expected {self.num_pixels}"
            )
        width, height = self.image_size
        return vector.reshape(height, width)

    def __repr__(self):
        width, height = self.image_size
        return f"{type(self).__name__}(image_size={width}x{height})"


class SmoothnessRegularizer(Regularizer):
    """
    Quadratic smoothness prior using a 4-neighbour Laplacian.

    r_i = sum over in-bounds neighbours n of (x_i - x_n). The stencil is a
    symmetric linear operator, so its derivative is the same stencil applied
    to the coefficients.
    """

    def apply_to_image(self, estimate):
        return self._laplacian(self._as_image(estimate)).reshape(-1)

    def get_derivatives(self, estimate, partial_const_terms):
        self._as_image(estimate)
        coefficients = self._as_image(partial_const_terms, 'partial_const_terms')
        return self._laplacian(coefficients).reshape(-1)

    @staticmethod
    def _laplacian(image):
        result = np.zeros_like(image)

        horizontal = image[:, :-1] - image[:, 1:]
        result[:, :-1] += horizontal
        result[:, 1:] -= horizontal

        vertical = image[:-1, :] - image[1:, :]
        result[:-1, :] += vertical
        result[1:, :] -= vertical
        return result


def _forward_differences(image):
    """Forward differences along x and y, zero on the last column / row."""
    grad_x = np.zeros_like(image)
    grad_y = np.zeros_like(image)
    grad_x[:, :-1] = image[:, 1:] - image[:, :-1]
    grad_y[:-1, :] = image[1:, :] - image[:-1, :]
    return grad_x, grad_y


def _forward_differences_transpose(grad_x, grad_y):
    """Adjoint of _forward_differences (a negative divergence)."""
    result = np.zeros_like(grad_x)
    result[:, 1:] += grad_x[:, :-1]
    result[:, :-1] -= grad_x[:, :-1]
    result[1:, :] += grad_y[:-1, :]
    result[:-1, :] -= grad_y[:-1, :]
    return result


class TotalVariationRegularizer(Regularizer):
    """
    Isotropic total variation: r_i = sqrt(gx_i^2 + gy_i^2).

    Where the local gradient is exactly zero the zero subgradient is used.
    """

    def apply_to_image(self, estimate):
        grad_x, grad_y = _forward_differences(self._as_image(estimate))
        return np.sqrt(grad_x ** 2 + grad_y ** 2).reshape(-1)

    def get_derivatives(self, estimate, partial_const_terms):
        grad_x, grad_y = _forward_differences(self._as_image(estimate))
        coefficients = self._as_image(partial_const_terms, 'partial_const_terms')

        magnitude = np.sqrt(grad_x ** 2 + grad_y ** 2)
        nonzero = magnitude > 0
        scale = np.zeros_like(magnitude)
        scale[nonzero] = coefficients[nonzero] / magnitude[nonzero]

        return _forward_differences_transpose(
            scale * grad_x, scale * grad_y
        ).reshape(-1)


def _overlap(offset, length):
    """Slices pairing index k with k + offset where both are in range."""
    if offset >= 0:
        return slice(0, length - offset), slice(offset, length)
    return slice(-offset, length), slice(0, length + offset)


class BilateralTotalVariationRegularizer(Regularizer):
    """
    Bilateral total variation (Farsiu et al.).

    r_i = sum over shifts (l, m) != (0, 0) with |l|, |m| <= patch_radius of
    alpha^(|l| + |m|) * |x_i - x_(i shifted by (l, m))|, skipping shifts that
    leave the image.
    """

    def __init__(self, image_size, patch_radius=2, alpha=0.7):
        """
        Args:
            image_size: (width, height) of the HR estimate
            patch_radius: Largest shift considered in each direction
            alpha: Spatial decay of the shift weights, in (0, 1]
        """
        super().__init__(image_size)
        if int(patch_radius) != patch_radius or patch_radius < 1:
            raise ValueError(f"patch_radius must be a positive integer, got {patch_radius}")
        if not 0 < alpha <= 1:
            raise ValueError(f"alpha must be in (0, 1], got {alpha}")
        self.patch_radius = int(patch_radius)
        self.alpha = float(alpha)

    def _shifts(self):
        height, width = self.image_size[1], self.image_size[0]
        radius = self.patch_radius
        for l in range(-radius, radius + 1):
            for m in range(-radius, radius + 1):
                if (l, m) == (0, 0) or abs(l) >= height or abs(m) >= width:
                    continue
                rows, neighbour_rows = _overlap(l, height)
                cols, neighbour_cols = _overlap(m, width)
                yield (
                    self.alpha ** (abs(l) + abs(m)),
                    (rows, cols),
                    (neighbour_rows, neighbour_cols),
                )

    def apply_to_image(self, estimate):
        image = self._as_image(estimate)
        residuals = np.zeros_like(image)
        for weight, base, neighbour in self._shifts():
            residuals[base] += weight * np.abs(image[base] - image[neighbour])
        return residuals.reshape(-1)

    def get_derivatives(self, estimate, partial_const_terms):
        image = self._as_image(estimate)
        coefficients = self._as_image(partial_const_terms, 'partial_const_terms')
        gradient = np.zeros_like(image)
        for weight, base, neighbour in self._shifts():
            contribution = (
                coefficients[base] * weight * np.sign(image[base] - image[neighbour])
            )
            gradient[base] += contribution
            gradient[neighbour] -= contribution
        return gradient.reshape(-1)

    def __repr__(self):
        width, height = self.image_size
        return (
            f"{type(self).__name__}(image_size={width}x{height}, "
            f"patch_radius={self.patch_radius}, alpha={self.alpha})"
        )
