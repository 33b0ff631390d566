"""
Quality metrics for reconstructed images
"""

import numpy as np


def mse(reference, estimate):
    """Mean squared error between two arrays of the same shape."""
    reference = np.asarray(reference, dtype=np.float64)
    estimate = np.asarray(estimate, dtype=np.float64)
    if reference.shape != estimate.shape:
        raise ValueError(
            f"Shape mismatch: {reference.shape} vs {estimate.shape}"
        )
    return float(np.mean((reference - estimate) ** 2))


def psnr(reference, estimate, data_range=1.0):
    """
    Peak signal-to-noise ratio in dB.

    Args:
        reference: Ground truth array
        estimate: Reconstructed array
        data_range: Peak value of the pixel range (1.0 for [0, 1] images)

    Returns:
        float: PSNR, inf for identical inputs
    """
    error = mse(reference, estimate)
    if error == 0:
        return float('inf')
    return float(10 * np.log10(data_range ** 2 / error))
