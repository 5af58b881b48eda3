"""Tests for image preprocessing (features/preprocess.py, network/loader.py means)."""

from __future__ import annotations

import numpy as np
import pytest
from PIL import Image

from cnnfeat.engines.definition import InputSpec
from cnnfeat.errors import ConfigurationError
from cnnfeat.features.preprocess import Preprocessor, downscale
from cnnfeat.network.loader import ChannelMean, load_mean


@pytest.fixture()
def image():
    img = np.zeros((4, 6, 3), dtype=np.uint8)
    img[..., 0], img[..., 1], img[..., 2] = 10, 20, 30
    return img


class TestPreprocessor:
    def test_bgr_order_and_scalar_mean(self, image):
        mean = ChannelMean(values=np.array([1.0, 2.0, 3.0], dtype=np.float32))
        out = Preprocessor(InputSpec(channel_order="bgr"), mean).prepare(image)
        assert out.shape == (1, 3, 4, 6)
        assert out.dtype == np.float32
        np.testing.assert_allclose(out[0, :, 0, 0], [29.0, 18.0, 7.0])

    def test_rgb_order_kept(self, image):
        out = Preprocessor(InputSpec(channel_order="rgb")).prepare(image)
        np.testing.assert_allclose(out[0, :, 2, 3], [10.0, 20.0, 30.0])

    def test_gray_image_replicated(self):
        gray = np.full((5, 5), 7, dtype=np.uint8)
        out = Preprocessor(InputSpec()).prepare(gray)
        assert out.shape == (1, 3, 5, 5)
        assert np.all(out == 7.0)

    def test_single_channel_network(self, image):
        out = Preprocessor(InputSpec(channels=1)).prepare(image)
        assert out.shape == (1, 1, 4, 6)
        np.testing.assert_allclose(out[0, 0], 20.0)

    def test_pil_image_accepted(self, image):
        out = Preprocessor(InputSpec(channel_order="rgb")).prepare(Image.fromarray(image))
        np.testing.assert_allclose(out[0, :, 0, 0], [10.0, 20.0, 30.0])

    def test_mean_image_pixel_aligned(self, image, rng):
        mean_img = rng.uniform(0, 5, size=(4, 6, 3)).astype(np.float32)
        mean = ChannelMean.from_image(mean_img, average=False)
        out = Preprocessor(InputSpec(channel_order="rgb"), mean).prepare(image)
        np.testing.assert_allclose(out[0].transpose(1, 2, 0), image - mean_img, rtol=1e-6)

    def test_mean_image_size_mismatch(self, image):
        mean = ChannelMean.from_image(np.zeros((8, 8, 3)), average=False)
        with pytest.raises(ConfigurationError, match="does not match"):
            Preprocessor(InputSpec(), mean).prepare(image)

    def test_downscale_applied(self):
        img = np.zeros((100, 200, 3), dtype=np.uint8)
        out = Preprocessor(InputSpec(), max_size=50).prepare(img)
        assert out.shape == (1, 3, 25, 50)


class TestDownscale:
    def test_unlimited(self):
        img = np.zeros((300, 100, 3), dtype=np.uint8)
        assert downscale(img, 0) is img

    def test_already_small(self):
        img = np.zeros((30, 10, 3), dtype=np.uint8)
        assert downscale(img, 30) is img

    def test_aspect_preserved_float(self):
        img = np.ones((90, 30, 3), dtype=np.float64)
        out = downscale(img, 45)
        assert out.shape == (45, 15, 3)
        np.testing.assert_allclose(out, 1.0, rtol=1e-6)


class TestLoadMean:
    def test_text_triple(self, tmp_path):
        path = tmp_path / "mean.txt"
        path.write_text("104.0\n117.0\n123.0\n")
        mean = load_mean(path)
        assert not mean.is_image
        np.testing.assert_allclose(mean.values, [104.0, 117.0, 123.0])

    def test_npy_image_averaged(self, tmp_path, rng):
        img = rng.uniform(0, 255, size=(3, 8, 10)).astype(np.float32)
        path = tmp_path / "mean.npy"
        np.save(path, img)
        mean = load_mean(path)
        np.testing.assert_allclose(mean.values, img.mean(axis=(1, 2)), rtol=1e-5)

    def test_wrong_count_rejected(self, tmp_path):
        path = tmp_path / "mean.txt"
        path.write_text("1.0\n2.0\n")
        with pytest.raises(ConfigurationError):
            load_mean(path)

    def test_missing(self, tmp_path):
        with pytest.raises(ConfigurationError, match="not found"):
            load_mean(tmp_path / "nope.txt")
