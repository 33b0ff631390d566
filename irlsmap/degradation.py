"""
Degradation Operator - Forward image formation model and its exact adjoint
"""

import numpy as np
from scipy import ndimage

from .image_data import ImageData


DOWNSAMPLING_METHODS = ('box', 'nearest')


def gaussian_kernel(sigma, size=None):
    """
    Create a normalized 2D Gaussian blur kernel.

    Args:
        sigma: Standard deviation in HR pixels. sigma <= 0 gives the identity kernel.
        size: Odd kernel side length (default: 2 * ceil(3 * sigma) + 1)

    Returns:
        np.ndarray: (size, size) kernel summing to 1
    """
    if sigma <= 0:
        return np.ones((1, 1))

    if size is None:
        size = 2 * int(np.ceil(3 * sigma)) + 1
    if size % 2 == 0:
        size += 1

    half = size // 2
    y, x = np.mgrid[-half:half + 1, -half:half + 1]
    kernel = np.exp(-(x ** 2 + y ** 2) / (2.0 * sigma ** 2))
    return kernel / kernel.sum()


def shift_image(image, dy, dx):
    """
    Translate a 2D array by whole pixels, filling uncovered pixels with zeros.

    out[r, c] = image[r - dy, c - dx]. Shifting by (-dy, -dx) is the adjoint.
    """
    height, width = image.shape
    shifted = np.zeros_like(image)
    if abs(dy) >= height or abs(dx) >= width:
        return shifted

    src_rows = slice(max(0, -dy), height - max(0, dy))
    dst_rows = slice(max(0, dy), height - max(0, -dy))
    src_cols = slice(max(0, -dx), width - max(0, dx))
    dst_cols = slice(max(0, dx), width - max(0, -dx))
    shifted[dst_rows, dst_cols] = image[src_rows, src_cols]
    return shifted


class DegradationOperator:
    """
    Models how each low-resolution observation was produced from the scene.

    For frame i the forward map is:
    1. Translate by the frame's integer motion (zero fill)
    2. Blur by correlating with the frame's kernel (zero padding)
    3. Downsample by the shared integer scale

    Downsampling is either 'box' (average of every scale x scale block) or
    'nearest' (keep the top-left pixel of every block). The transpose
    reverses each step with its exact adjoint, so that
    <A x, y> == <x, A^T y> holds for every frame.
    """

    def __init__(self, scale, num_images=1, blur_kernel=None, motion_shifts=None,
                 downsampling='box'):
        """
        Initialize the degradation operator.

        Args:
            scale: Integer downsampling factor shared by all frames
            num_images: Number of observed frames this operator describes
            blur_kernel: None (no blur), one 2D kernel shared by all frames, or
                a list with one 2D kernel per frame. Kernel sides must be odd.
            motion_shifts: None or a list of (dy, dx) integer shifts, one per frame
            downsampling: 'box' or 'nearest'
        """
        if isinstance(scale, (bool, np.bool_)) or int(scale) != scale or scale <= 0:
            raise ValueError(f"Scale must be a positive integer, got {scale}")
        if int(num_images) != num_images or num_images <= 0:
            raise ValueError(f"num_images must be a positive integer, got {num_images}")
        if downsampling not in DOWNSAMPLING_METHODS:
            raise ValueError(
                f"Unknown downsampling '{downsampling}', expected one of "
                f"{list(DOWNSAMPLING_METHODS)}"
            )

        self.scale = int(scale)
        self.num_images = int(num_images)
        self.downsampling = downsampling
        self.blur_kernels = self._validate_kernels(blur_kernel)
        self.motion_shifts = self._validate_shifts(motion_shifts)

    def _validate_kernels(self, blur_kernel):
        if blur_kernel is None:
            return [None] * self.num_images

        if isinstance(blur_kernel, np.ndarray) and blur_kernel.ndim == 2:
            kernels = [blur_kernel] * self.num_images
        else:
            kernels = list(blur_kernel)
            if len(kernels) != self.num_images:
                raise ValueError(
                    f"Got {len(kernels)} blur kernels for {self.num_images} images"
                )

        validated = []
        for kernel in kernels:
            kernel = np.asarray(kernel, dtype=np.float64)
            if kernel.ndim != 2:
                raise ValueError(f"Blur kernels must be 2D, got shape {kernel.shape}")
            if kernel.shape[0] % 2 == 0 or kernel.shape[1] % 2 == 0:
                raise ValueError(
                    f"Blur kernel sides must be odd, got shape {kernel.shape}"
                )
            if not np.all(np.isfinite(kernel)):
                raise ValueError("Blur kernel contains non-finite values")
            validated.append(kernel)
        return validated

    def _validate_shifts(self, motion_shifts):
        if motion_shifts is None:
            return [(0, 0)] * self.num_images

        shifts = [tuple(shift) for shift in motion_shifts]
        if len(shifts) != self.num_images:
            raise ValueError(
                f"Got {len(shifts)} motion shifts for {self.num_images} images"
            )
        for shift in shifts:
            if len(shift) != 2 or any(int(v) != v for v in shift):
                raise ValueError(f"Motion shifts must be integer (dy, dx) pairs, got {shift}")
        return [(int(dy), int(dx)) for dy, dx in shifts]

    def get_downsampling_scale(self):
        return self.scale

    def get_num_images(self):
        return self.num_images

    def get_low_res_size(self, image_size):
        """LR (width, height) for an HR (width, height)."""
        width, height = image_size
        if width % self.scale != 0 or height % self.scale != 0:
            raise ValueError(
                f"HR size {width}x{height} is not divisible by scale {self.scale}"
            )
        return (width // self.scale, height // self.scale)

    def apply_to_image(self, image, image_index):
        """
        Degrade every channel of an HR image.

        Args:
            image: ImageData at HR size
            image_index: Observed frame whose blur and motion to use

        Returns:
            ImageData: New image at LR size
        """
        self.get_low_res_size(image.get_image_size())
        channels = [
            self._forward(channel, image_index) for channel in image.get_pixels()
        ]
        return ImageData(np.stack(channels))

    def apply_transpose_to_image(self, image, image_index):
        """
        Apply the adjoint of apply_to_image to an LR image.

        Args:
            image: ImageData at LR size
            image_index: Observed frame whose blur and motion to use

        Returns:
            ImageData: New image at HR size
        """
        channels = [
            self._transpose(channel, image_index) for channel in image.get_pixels()
        ]
        return ImageData(np.stack(channels))

    def apply(self, vector, image_size, image_index):
        """Forward map of a flat HR vector, returned as a flat LR vector."""
        width, height = image_size
        self.get_low_res_size(image_size)
        hr = np.asarray(vector, dtype=np.float64).reshape(height, width)
        return self._forward(hr, image_index).reshape(-1)

    def apply_transpose(self, vector, low_res_size, image_index):
        """Adjoint map of a flat LR vector, returned as a flat HR vector."""
        width, height = low_res_size
        lr = np.asarray(vector, dtype=np.float64).reshape(height, width)
        return self._transpose(lr, image_index).reshape(-1)

    def degrade_image(self, image, image_index, noise_sigma=0.0, rng=None):
        """
        Simulate an observation: degrade an HR image and add Gaussian noise.

        Args:
            image: ImageData at HR size
            image_index: Frame to simulate
            noise_sigma: Noise standard deviation (pixel values are in [0, 1])
            rng: numpy Generator (default: a fresh default_rng())

        Returns:
            ImageData: Simulated LR observation
        """
        observation = self.apply_to_image(image, image_index)
        if noise_sigma > 0:
            if rng is None:
                rng = np.random.default_rng()
            pixels = observation.get_pixels()
            pixels += rng.normal(0.0, noise_sigma, size=pixels.shape)
        return observation

    def _check_index(self, image_index):
        if not 0 <= image_index < self.num_images:
            raise IndexError(
                f"Image index {image_index} out of range for {self.num_images} images"
            )

    def _forward(self, hr, image_index):
        self._check_index(image_index)
        dy, dx = self.motion_shifts[image_index]
        kernel = self.blur_kernels[image_index]

        result = shift_image(hr, dy, dx)
        if kernel is not None:
            result = ndimage.correlate(result, kernel, mode='constant', cval=0.0)
        return self._downsample(result)

    def _transpose(self, lr, image_index):
        self._check_index(image_index)
        dy, dx = self.motion_shifts[image_index]
        kernel = self.blur_kernels[image_index]

        result = self._downsample_transpose(lr)
        if kernel is not None:
            result = ndimage.correlate(
                result, kernel[::-1, ::-1], mode='constant', cval=0.0
            )
        return shift_image(result, -dy, -dx)

    def _downsample(self, hr):
        s = self.scale
        if self.downsampling == 'nearest':
            return hr[::s, ::s].copy()
        height, width = hr.shape
        return hr.reshape(height // s, s, width // s, s).mean(axis=(1, 3))

    def _downsample_transpose(self, lr):
        # Zero-insertion upsample. For 'box' each LR value is spread over its
        # block with the 1/scale^2 weight the forward average used.
        s = self.scale
        height, width = lr.shape
        if self.downsampling == 'nearest':
            hr = np.zeros((height * s, width * s))
            hr[::s, ::s] = lr
            return hr
        return np.repeat(np.repeat(lr, s, axis=0), s, axis=1) / (s * s)
