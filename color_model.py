"""
Value types shared by the palette parser, the quantizer and the pipeline.

Color and Palette are immutable. PixelBuffer is a mutable RGBA8 grid backed by
a numpy array; whoever holds it owns it.
"""

from dataclasses import dataclass, field
from typing import List, NamedTuple, Tuple

import numpy as np
from PIL import Image

__all__ = [
    'Color',
    'Palette',
    'PixelBuffer',
    'clamp_channel',
    'color_to_hex',
    'DEFAULT_PALETTE',
    'ALTERNATE_PALETTE',
    'BUILTIN_PALETTES',
]


def clamp_channel(value: int) -> int:
    """Clamp a channel value to [0, 255]."""
    return min(max(int(value), 0), 255)


class Color(NamedTuple):
    r: int
    g: int
    b: int
    a: int = 255

    @classmethod
    def clamped(cls, r: int, g: int, b: int, a: int = 255) -> 'Color':
        return cls(clamp_channel(r), clamp_channel(g), clamp_channel(b), clamp_channel(a))

    @property
    def rgb(self) -> Tuple[int, int, int]:
        return (self.r, self.g, self.b)


def color_to_hex(color: Color) -> str:
    """
    Convert a Color to a hex string.

    Args:
        color: Color to render (alpha is dropped)

    Returns:
        Hex string like "#ff0000"
    """
    return f'#{color.r:02x}{color.g:02x}{color.b:02x}'


@dataclass(frozen=True)
class Palette:
    """
    Ordered, immutable list of quantization targets.

    Order matters: the nearest-color search breaks ties in favour of the
    earlier entry, and it is the order palettes are shown in.
    """
    name: str
    colors: Tuple[Color, ...] = field(default_factory=tuple)

    def __post_init__(self):
        # Accept any iterable but always store a tuple
        object.__setattr__(self, 'colors', tuple(Color(*c) for c in self.colors))

    def __len__(self) -> int:
        return len(self.colors)

    def __iter__(self):
        return iter(self.colors)

    def __getitem__(self, index: int) -> Color:
        return self.colors[index]

    def to_hex_list(self) -> List[str]:
        return [color_to_hex(c) for c in self.colors]

    def as_array(self) -> np.ndarray:
        """Palette RGB as an (N, 3) int32 array."""
        if not self.colors:
            return np.zeros((0, 3), dtype=np.int32)
        return np.array([c.rgb for c in self.colors], dtype=np.int32)


DEFAULT_PALETTE = Palette('default', (
    Color(0, 0, 0),
    Color(255, 255, 255),
    Color(255, 0, 0),
    Color(0, 255, 0),
    Color(0, 0, 255),
))

# 0.25 / 0.75 / 0.5 channel fractions, truncated after scaling by 255
ALTERNATE_PALETTE = Palette('alternate', (
    Color(63, 63, 63),
    Color(191, 191, 191),
    Color(255, 127, 0),
    Color(127, 0, 255),
    Color(255, 255, 0),
))

BUILTIN_PALETTES: Tuple[Palette, ...] = (DEFAULT_PALETTE, ALTERNATE_PALETTE)


class PixelBuffer:
    """
    Row-major RGBA8 pixel grid.

    ``pixels`` is a uint8 array of shape (height, width, 4). Dithering works
    on it in place; resampling always returns a new buffer.
    """

    def __init__(self, pixels: np.ndarray):
        if pixels.ndim != 3 or pixels.shape[2] != 4:
            raise ValueError(f"Expected an (H, W, 4) array, got shape {pixels.shape}")
        height, width = pixels.shape[:2]
        if width <= 0 or height <= 0:
            raise ValueError(f"Buffer dimensions must be positive, got {width}x{height}")
        self.pixels = np.ascontiguousarray(pixels, dtype=np.uint8)

    @property
    def width(self) -> int:
        return self.pixels.shape[1]

    @property
    def height(self) -> int:
        return self.pixels.shape[0]

    @property
    def size(self) -> Tuple[int, int]:
        return (self.width, self.height)

    @classmethod
    def new(cls, width: int, height: int, fill: Color = Color(0, 0, 0)) -> 'PixelBuffer':
        if width <= 0 or height <= 0:
            raise ValueError(f"Buffer dimensions must be positive, got {width}x{height}")
        arr = np.empty((height, width, 4), dtype=np.uint8)
        arr[:, :] = tuple(fill)
        return cls(arr)

    @classmethod
    def from_bytes(cls, data: bytes, width: int, height: int) -> 'PixelBuffer':
        """
        Wrap row-major RGBA8 bytes (stride = width * 4).

        Args:
            data: Raw pixel bytes, top row first
            width: Width in pixels
            height: Height in pixels

        Returns:
            A PixelBuffer owning a copy of the data
        """
        if width <= 0 or height <= 0:
            raise ValueError(f"Buffer dimensions must be positive, got {width}x{height}")
        expected = width * height * 4
        if len(data) != expected:
            raise ValueError(f"Expected {expected} bytes for {width}x{height} RGBA8, got {len(data)}")
        arr = np.frombuffer(bytes(data), dtype=np.uint8).reshape((height, width, 4)).copy()
        return cls(arr)

    def to_bytes(self) -> bytes:
        return self.pixels.tobytes()

    @classmethod
    def from_image(cls, image: Image.Image) -> 'PixelBuffer':
        if image.mode != 'RGBA':
            image = image.convert('RGBA')
        return cls(np.array(image, dtype=np.uint8))

    def to_image(self) -> Image.Image:
        return Image.fromarray(self.pixels)

    def copy(self) -> 'PixelBuffer':
        return PixelBuffer(self.pixels.copy())

    def get_pixel(self, x: int, y: int) -> Color:
        r, g, b, a = self.pixels[y, x]
        return Color(int(r), int(g), int(b), int(a))

    def set_pixel(self, x: int, y: int, color: Color):
        self.pixels[y, x] = tuple(color)

    def __eq__(self, other) -> bool:
        if not isinstance(other, PixelBuffer):
            return NotImplemented
        return self.pixels.shape == other.pixels.shape and np.array_equal(self.pixels, other.pixels)

    def __repr__(self) -> str:
        return f"PixelBuffer({self.width}x{self.height})"
