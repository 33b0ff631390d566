"""
ImageData - Multi-channel floating point pixel buffer
"""

import numpy as np
from PIL import Image


RESAMPLE_METHODS = {
    'nearest': Image.NEAREST,
    'bilinear': Image.BILINEAR,
    'bicubic': Image.BICUBIC,
    'box': Image.BOX,
    'lanczos': Image.LANCZOS,
}


def get_resample_method(interpolation):
    """
    Get PIL resample method from interpolation string.

    Args:
        interpolation: Interpolation method string

    Returns:
        PIL resample constant
    """
    try:
        return RESAMPLE_METHODS[interpolation]
    except KeyError:
        raise ValueError(
            f"Unknown interpolation '{interpolation}', expected one of "
            f"{sorted(RESAMPLE_METHODS)}"
        ) from None


class ImageData:
    """
    Rectangular multi-channel image with real-valued pixels.

    Pixels are stored as a float64 array shaped (channels, height, width).
    A pixel is addressed by its channel and its row-major linear index
    within that channel. Sizes are (width, height), the same order PIL uses.
    """

    def __init__(self, data, image_size=None):
        """
        Create an image from pixel data.

        Args:
            data: PIL Image, 2D array (height, width), 3D array
                (channels, height, width), or a flat vector when
                image_size is given
            image_size: (width, height), required for flat vectors
        """
        if isinstance(data, Image.Image):
            array = np.asarray(data, dtype=np.float64) / 255.0
            if array.ndim == 3:
                array = np.moveaxis(array, -1, 0)
            else:
                array = array[np.newaxis]
        elif data is None:
            raise ValueError("Image data must not be None")
        else:
            array = np.array(data, dtype=np.float64)
            if image_size is not None:
                width, height = image_size
                if width <= 0 or height <= 0:
                    raise ValueError(f"Invalid image size {image_size}")
                if array.size % (width * height) != 0:
                    raise ValueError(
                        f"Cannot reshape {array.size} values into images of "
                        f"size {width}x{height}"
                    )
                array = array.reshape(-1, height, width)
            elif array.ndim == 2:
                array = array[np.newaxis]
            elif array.ndim != 3:
                raise ValueError(
                    f"Expected a 2D or 3D pixel array, got {array.ndim}D"
                )

        if 0 in array.shape:
            raise ValueError("Images must have at least one pixel")

        self._pixels = np.ascontiguousarray(array)

    def get_num_channels(self):
        return self._pixels.shape[0]

    def get_num_pixels(self):
        """Number of pixels in a single channel."""
        return self._pixels.shape[1] * self._pixels.shape[2]

    def get_image_size(self):
        """Image size as (width, height)."""
        return (self._pixels.shape[2], self._pixels.shape[1])

    def get_pixel_value(self, channel, index):
        return float(self._channel_view(channel, index)[index])

    def set_pixel_value(self, channel, index, value):
        self._channel_view(channel, index)[index] = value

    def get_channel_data(self, channel):
        """Flat copy of one channel."""
        return self._channel_view(channel).copy()

    def get_channel_image(self, channel):
        """2D (height, width) view of one channel."""
        self._check_channel(channel)
        return self._pixels[channel]

    def get_pixels(self):
        """The underlying (channels, height, width) array."""
        return self._pixels

    def copy(self):
        return ImageData(self._pixels.copy())

    def resize_image(self, image_size, interpolation='bicubic'):
        """
        Resize every channel in place.

        Args:
            image_size: target (width, height)
            interpolation: 'nearest', 'bilinear', 'bicubic', 'box' or 'lanczos'
        """
        resample = get_resample_method(interpolation)
        width, height = image_size
        if width <= 0 or height <= 0:
            raise ValueError(f"Invalid target size {image_size}")

        resized = []
        for channel in self._pixels:
            img = Image.fromarray(channel.astype(np.float32))
            img_resized = img.resize((width, height), resample)
            resized.append(np.asarray(img_resized, dtype=np.float64))

        self._pixels = np.ascontiguousarray(np.stack(resized))

    def to_pil_image(self):
        """Convert to an 8-bit PIL image, clipping values to [0, 1]."""
        array = np.clip(self._pixels, 0.0, 1.0) * 255.0
        array = np.round(array).astype(np.uint8)
        if self.get_num_channels() == 1:
            return Image.fromarray(array[0])
        if self.get_num_channels() == 3:
            return Image.fromarray(np.moveaxis(array, 0, -1))
        raise ValueError(
            f"Cannot convert {self.get_num_channels()} channels to a PIL image"
        )

    def _check_channel(self, channel):
        if not 0 <= channel < self.get_num_channels():
            raise IndexError(
                f"Channel {channel} out of range for "
                f"{self.get_num_channels()} channel image"
            )

    def _channel_view(self, channel, index=None):
        self._check_channel(channel)
        if index is not None and not 0 <= index < self.get_num_pixels():
            raise IndexError(f"Pixel index {index} out of range")
        return self._pixels[channel].reshape(-1)

    def __repr__(self):
        width, height = self.get_image_size()
        return (
            f"ImageData(size={width}x{height}, "
            f"channels={self.get_num_channels()})"
        )
