"""
Preprocessor
============

Converts an image into the network's input tensor.

Steps::

    1. Downscale (aspect preserved) if the larger side exceeds max_size
    2. Match the network's channel count (gray <-> color)
    3. Reorder RGB -> network channel order (BGR for Caffe-trained nets)
    4. Subtract the channel mean (broadcast scalars or pixel-aligned image)
    5. HWC -> (1, C, H, W) float32
"""

from __future__ import annotations

from typing import Optional

import numpy as np
from PIL import Image

from cnnfeat.engines.definition import InputSpec
from cnnfeat.errors import ConfigurationError
from cnnfeat.image import ImageLike, as_array
from cnnfeat.network.loader import ChannelMean


def downscale(image: np.ndarray, max_size: int) -> np.ndarray:
    """Shrink ``image`` so that its larger side is at most ``max_size`` pixels.

    ``max_size`` of 0 disables the limit.  Images that already fit are
    returned unchanged.
    """
    h, w = image.shape[:2]
    if max_size <= 0 or max(h, w) <= max_size:
        return image
    scale = max_size / max(h, w)
    new_w = max(1, int(round(w * scale)))
    new_h = max(1, int(round(h * scale)))
    if image.dtype != np.uint8:
        image = image.astype(np.float32)
    channels = [
        np.asarray(
            Image.fromarray(np.ascontiguousarray(image[:, :, c])).resize(
                (new_w, new_h), Image.Resampling.BILINEAR
            )
        )
        for c in range(image.shape[2])
    ]
    return np.stack(channels, axis=2)


class Preprocessor:
    """Prepares images for one network.

    Parameters
    ----------
    input_spec : InputSpec
        Channel count and order expected by the network.
    mean : ChannelMean or None
        Mean to subtract.
    max_size : int
        Pixel cap on the larger image side (0 = unlimited).
    """

    def __init__(self, input_spec: InputSpec, mean: Optional[ChannelMean] = None, max_size: int = 0):
        self.channels = input_spec.channels
        self.channel_order = input_spec.channel_order
        self.mean = mean
        self.max_size = max_size

    def prepare(self, image: ImageLike) -> np.ndarray:
        """Return the ``(1, C, H, W)`` float32 input tensor for ``image``."""
        arr = downscale(as_array(image), self.max_size)
        arr = arr.astype(np.float32)

        if self.channels == 1 and arr.shape[2] == 3:
            arr = arr.mean(axis=2, keepdims=True)
        elif self.channels == 3 and arr.shape[2] == 1:
            arr = np.repeat(arr, 3, axis=2)
        elif arr.shape[2] != self.channels:
            raise ConfigurationError(
                f"Network expects {self.channels} input channels, image has {arr.shape[2]}"
            )

        if self.channels == 3 and self.channel_order == "bgr":
            arr = arr[:, :, ::-1]

        if self.mean is not None:
            arr = self._subtract_mean(arr)

        return np.ascontiguousarray(arr.transpose(2, 0, 1)[np.newaxis])

    def _subtract_mean(self, arr: np.ndarray) -> np.ndarray:
        if self.mean.is_image:
            mean = self.mean.image
            if mean.shape[:2] != arr.shape[:2]:
                raise ConfigurationError(
                    f"Mean image size {mean.shape[1]}x{mean.shape[0]} does not match "
                    f"input size {arr.shape[1]}x{arr.shape[0]}"
                )
        else:
            mean = self.mean.values
        if mean.shape[-1] != arr.shape[2]:
            raise ConfigurationError(
                f"Mean has {mean.shape[-1]} channels, network input has {arr.shape[2]}"
            )
        return arr - mean
