"""
image.py
~~~~~~~~

Multi-channel image container and the im2col transform, which lays every
filter-sized patch out as a matrix row so a convolution becomes a single
``dot_product``.
"""

from typing import List, Sequence

from dlfs.errors import ShapeError
from dlfs.matrix import Matrix


class Image:
    """Pixel values indexed ``[channel][height][width]``."""

    def __init__(self, channels: Sequence[Sequence[Sequence[float]]]):
        data = [[list(row) for row in channel] for channel in channels]
        if not data or not data[0] or not data[0][0]:
            raise ShapeError("An image needs at least one channel, row and column")
        height = len(data[0])
        width = len(data[0][0])
        for c, channel in enumerate(data):
            if len(channel) != height or any(len(row) != width for row in channel):
                raise ShapeError(
                    f"Channel {c} is not {height}x{width} like channel 0"
                )
        self._data = data

    @property
    def channels(self) -> int:
        return len(self._data)

    @property
    def height(self) -> int:
        return len(self._data[0])

    @property
    def width(self) -> int:
        return len(self._data[0][0])

    @property
    def shape(self):
        return (self.channels, self.height, self.width)

    def pixel(self, c: int, y: int, x: int) -> float:
        return self._data[c][y][x]

    def padded(self, pad: int) -> 'Image':
        """Return a copy with ``pad`` zeros added on every spatial border."""
        if pad == 0:
            return self
        width = self.width + 2 * pad
        channels = []
        for channel in self._data:
            rows = [[0.0] * width for _ in range(pad)]
            rows += [[0.0] * pad + row + [0.0] * pad for row in channel]
            rows += [[0.0] * width for _ in range(pad)]
            channels.append(rows)
        return Image(channels)


def output_size(size: int, filter_size: int, stride: int, pad: int) -> int:
    return (size + 2 * pad - filter_size) // stride + 1


def im2col(
    images: Sequence[Image],
    filter_h: int,
    filter_w: int,
    stride: int = 1,
    pad: int = 0
) -> Matrix:
    """
    Unfold image patches into matrix rows.

    Args:
        images: Batch of images that all share one shape
        filter_h: Filter height
        filter_w: Filter width
        stride: Step between neighbouring patches
        pad: Zero padding on each border

    Returns:
        Matrix: ``N*out_h*out_w`` rows of ``C*filter_h*filter_w`` values,
        ordered channel-major within each row

    Raises:
        ShapeError: If the images differ in shape or the filter does not fit
    """
    if not images:
        return Matrix()
    if stride < 1 or pad < 0:
        raise ValueError(f"Invalid stride {stride} or pad {pad}")
    shape = images[0].shape
    for image in images:
        if image.shape != shape:
            raise ShapeError(f"Image shape {image.shape} differs from {shape}")

    _, height, width = shape
    out_h = output_size(height, filter_h, stride, pad)
    out_w = output_size(width, filter_w, stride, pad)
    if out_h < 1 or out_w < 1:
        raise ShapeError(
            f"Filter {filter_h}x{filter_w} does not fit image {height}x{width} "
            f"with pad {pad}"
        )

    rows: List[List[float]] = []
    for image in images:
        source = image.padded(pad)
        for oy in range(out_h):
            for ox in range(out_w):
                y0 = oy * stride
                x0 = ox * stride
                rows.append([
                    source.pixel(c, y0 + dy, x0 + dx)
                    for c in range(source.channels)
                    for dy in range(filter_h)
                    for dx in range(filter_w)
                ])
    return Matrix(rows)
