"""
test_image.py
~~~~~~~~~~~~~

Unit tests for the Image container and im2col.
"""

import os
import sys

import pytest

# Add project root to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from dlfs.errors import ShapeError
from dlfs.image import Image, im2col, output_size
from dlfs.matrix import Matrix


@pytest.fixture
def image_3x3():
    return Image([[[1, 2, 3], [4, 5, 6], [7, 8, 9]]])


@pytest.mark.unit
class TestImage:

    def test_dimensions(self):
        image = Image([[[0.0] * 4] * 3] * 2)
        assert image.shape == (2, 3, 4)
        assert image.channels == 2
        assert image.height == 3
        assert image.width == 4

    def test_ragged_channel_rejected(self):
        with pytest.raises(ShapeError):
            Image([[[1, 2], [3, 4]], [[1, 2], [3]]])

    def test_padding(self, image_3x3):
        padded = image_3x3.padded(1)
        assert padded.shape == (1, 5, 5)
        assert padded.pixel(0, 0, 0) == 0.0
        assert padded.pixel(0, 1, 1) == 1


@pytest.mark.unit
class TestIm2col:

    def test_output_size(self):
        assert output_size(28, 5, 1, 0) == 24
        assert output_size(28, 3, 1, 1) == 28
        assert output_size(7, 3, 2, 0) == 3

    def test_single_channel_patches(self, image_3x3):
        cols = im2col([image_3x3], 2, 2)
        assert cols.to_list() == [
            [1, 2, 4, 5],
            [2, 3, 5, 6],
            [4, 5, 7, 8],
            [5, 6, 8, 9],
        ]

    def test_stride(self, image_3x3):
        cols = im2col([image_3x3], 2, 2, stride=2)
        assert cols.to_list() == [[1, 2, 4, 5]]

    def test_batch_and_channels_shape(self):
        images = [Image([[[0.0] * 7] * 7] * 3) for _ in range(2)]
        cols = im2col(images, 5, 5, stride=1, pad=0)
        assert cols.shape == (2 * 3 * 3, 3 * 5 * 5)

    def test_padding_keeps_spatial_size(self, image_3x3):
        cols = im2col([image_3x3], 3, 3, pad=1)
        assert cols.shape == (9, 9)
        # centre patch is the unpadded image
        assert cols.row(4) == [1, 2, 3, 4, 5, 6, 7, 8, 9]

    def test_convolution_as_dot_product(self, image_3x3):
        """A 2x2 summing filter becomes one matrix product."""
        cols = im2col([image_3x3], 2, 2)
        out = cols.dot_product(Matrix([[1], [1], [1], [1]]))
        assert out.to_list() == [[12], [16], [24], [28]]

    def test_mixed_shapes_rejected(self, image_3x3):
        other = Image([[[1, 2], [3, 4]]])
        with pytest.raises(ShapeError):
            im2col([image_3x3, other], 2, 2)

    def test_filter_too_large(self, image_3x3):
        with pytest.raises(ShapeError):
            im2col([image_3x3], 4, 4)

    def test_empty_batch(self):
        assert im2col([], 2, 2).shape == (0, 0)
