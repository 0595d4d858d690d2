"""
Palette quantization, Floyd–Steinberg dithering and the resampling stages that
bracket them. PixelPipeline strings the stages together:

    downsample -> quantize / dither -> nearest-neighbor upscale
"""

import logging
from enum import Enum
from typing import Optional, Tuple

import numpy as np
from PIL import Image

from color_model import Color, Palette, PixelBuffer

__all__ = [
    'DitherMode',
    'nearest_color',
    'quantize_buffer',
    'floyd_steinberg_dither',
    'BaseDitherStrategy',
    'NoDitherStrategy',
    'FloydSteinbergDitherStrategy',
    'ImageResampler',
    'PixelPipeline',
]

logger = logging.getLogger(__name__)


# -------------------- Enumerations --------------------

class DitherMode(Enum):
    NONE = "none"
    FLOYD_STEINBERG = "floyd_steinberg"


# -------------------- Color Quantizer --------------------

def nearest_color(pixel: Color, palette: Palette) -> Color:
    """
    Find the palette entry closest to ``pixel`` in RGB space.

    Squared Euclidean distance over R, G, B; alpha is ignored and the input
    pixel's alpha is kept. Ties go to the earliest palette entry. An empty
    palette returns the pixel unchanged.
    """
    best_distance = None
    best = None
    r, g, b = pixel[0], pixel[1], pixel[2]
    for entry in palette:
        dr = entry.r - r
        dg = entry.g - g
        db = entry.b - b
        distance = dr * dr + dg * dg + db * db
        if best_distance is None or distance < best_distance:
            best_distance = distance
            best = entry

    if best is None:
        return pixel
    alpha = pixel[3] if len(pixel) > 3 else 255
    return Color(best.r, best.g, best.b, alpha)


def quantize_buffer(buffer: PixelBuffer, palette: Palette) -> PixelBuffer:
    """
    Map every pixel of ``buffer`` to its nearest palette color.

    Same rules as nearest_color, vectorized. Returns a new buffer; alpha is
    copied from the input.
    """
    out = buffer.copy()
    if len(palette) == 0:
        return out

    palette_arr = palette.as_array()
    flat = buffer.pixels[:, :, :3].reshape((-1, 3)).astype(np.int32)
    # (N, P) squared distances; argmin keeps the first minimum
    diff = flat[:, None, :] - palette_arr[None, :, :]
    dist = np.einsum('npc,npc->np', diff, diff)
    idx = np.argmin(dist, axis=1)
    out.pixels[:, :, :3] = palette_arr[idx].reshape((buffer.height, buffer.width, 3)).astype(np.uint8)
    return out


# -------------------- Dither Engine --------------------

# (dx, dy, weight) in diffusion order
FLOYD_STEINBERG_WEIGHTS = (
    (1, 0, np.float32(7 / 16)),
    (-1, 1, np.float32(3 / 16)),
    (0, 1, np.float32(5 / 16)),
    (1, 1, np.float32(1 / 16)),
)


def floyd_steinberg_dither(buffer: PixelBuffer, palette: Palette):
    """
    Floyd–Steinberg error diffusion, applied to ``buffer`` in place.

    Pixels are visited row by row, left to right. Each one is replaced by its
    nearest palette color straight away and the residual is pushed onto the
    right and lower neighbours, so later pixels read values that already
    carry the error of earlier ones. Error that would land outside the buffer
    is dropped.
    """
    if len(palette) == 0:
        return

    pixels = buffer.pixels
    h, w = pixels.shape[:2]
    for y in range(h):
        for x in range(w):
            old = pixels[y, x]
            old_rgb = (int(old[0]), int(old[1]), int(old[2]))
            new = nearest_color(old_rgb, palette)
            pixels[y, x, :3] = new[:3]

            err = np.array([old_rgb[0] - new.r, old_rgb[1] - new.g, old_rgb[2] - new.b],
                           dtype=np.float32)
            if not err.any():
                continue

            for dx, dy, weight in FLOYD_STEINBERG_WEIGHTS:
                tx, ty = x + dx, y + dy
                if tx < 0 or tx >= w or ty >= h:
                    continue
                target = pixels[ty, tx, :3].astype(np.float32) + weight * err
                # astype truncates toward zero before the clamp
                pixels[ty, tx, :3] = np.clip(target.astype(np.int32), 0, 255)


class BaseDitherStrategy:
    """
    Base class for palette application strategies.
    Each strategy implements .apply(buffer, palette), which rewrites the
    buffer in place.
    """
    def apply(self, buffer: PixelBuffer, palette: Palette):
        raise NotImplementedError


class NoDitherStrategy(BaseDitherStrategy):
    """
    No dithering at all; simply assign each pixel to its nearest palette color.
    """
    def apply(self, buffer: PixelBuffer, palette: Palette):
        quantized = quantize_buffer(buffer, palette)
        buffer.pixels[...] = quantized.pixels


class FloydSteinbergDitherStrategy(BaseDitherStrategy):
    """
    Row-major Floyd–Steinberg error diffusion.
    """
    def apply(self, buffer: PixelBuffer, palette: Palette):
        floyd_steinberg_dither(buffer, palette)


def get_dither_strategy(mode: DitherMode) -> BaseDitherStrategy:
    if mode == DitherMode.NONE:
        return NoDitherStrategy()
    elif mode == DitherMode.FLOYD_STEINBERG:
        return FloydSteinbergDitherStrategy()
    else:
        raise ValueError(f"Unrecognized DitherMode: {mode}")


# -------------------- Image Resampler --------------------

class ImageResampler:
    """
    Fixed-size smooth downsampling and integer nearest-neighbor upscaling.
    Both operations return a new buffer and leave the source untouched.
    """

    FILTERS = {
        "box": Image.Resampling.BOX,
        "bilinear": Image.Resampling.BILINEAR,
        "hamming": Image.Resampling.HAMMING,
        "bicubic": Image.Resampling.BICUBIC,
        "lanczos": Image.Resampling.LANCZOS,
    }

    @classmethod
    def get_filter(cls, name: str) -> Image.Resampling:
        try:
            return cls.FILTERS[name.lower()]
        except KeyError:
            raise ValueError(f"Unknown resample filter: '{name}'. Must be one of: {sorted(cls.FILTERS)}") from None

    @classmethod
    def downsample(cls, source: PixelBuffer, target_w: int, target_h: int,
                   resample: str = "box") -> PixelBuffer:
        """
        Resize ``source`` to exactly target_w x target_h with a smoothing filter.

        Args:
            source: Buffer to shrink
            target_w: Working width in pixels
            target_h: Working height in pixels
            resample: Filter name, see FILTERS

        Returns:
            New PixelBuffer of the requested size
        """
        if target_w <= 0 or target_h <= 0:
            raise ValueError(f"Target size must be positive, got {target_w}x{target_h}")
        pil_filter = cls.get_filter(resample)
        if source.size == (target_w, target_h):
            return source.copy()
        resized = source.to_image().resize((target_w, target_h), pil_filter)
        return PixelBuffer.from_image(resized)

    @staticmethod
    def upscale(source: PixelBuffer, factor: int) -> PixelBuffer:
        """
        Enlarge ``source`` by an integer factor with no interpolation.

        Each source pixel becomes a factor x factor block of the same color.
        """
        if int(factor) != factor or factor < 1:
            raise ValueError(f"Upscale factor must be a positive integer, got {factor}")
        factor = int(factor)
        if factor == 1:
            return source.copy()
        blocks = np.repeat(np.repeat(source.pixels, factor, axis=0), factor, axis=1)
        return PixelBuffer(blocks)


# -------------------- Pipeline --------------------

class PixelPipeline:
    """
    Orchestrates downsampling, palette application (with or without
    dithering) and the final hard-edged upscale.
    """
    def __init__(self,
                 palette: Palette,
                 working_size: Tuple[int, int] = (128, 128),
                 upscale_factor: int = 8,
                 dither_mode: Optional[DitherMode] = DitherMode.NONE,
                 resample: str = "box"):
        width, height = working_size
        if width <= 0 or height <= 0:
            raise ValueError(f"Working size must be positive, got {width}x{height}")
        if int(upscale_factor) != upscale_factor or upscale_factor < 1:
            raise ValueError(f"Upscale factor must be a positive integer, got {upscale_factor}")
        ImageResampler.get_filter(resample)

        self.palette = palette
        self.working_size = (int(width), int(height))
        self.upscale_factor = int(upscale_factor)
        self.dither_mode = dither_mode or DitherMode.NONE
        self.resample = resample

    @classmethod
    def from_config(cls, config, palette: Palette) -> 'PixelPipeline':
        """
        Build a pipeline from the 'pipeline' section of a ConfigManager.
        """
        return cls(
            palette,
            working_size=(config.get("pipeline", "working_width", default=128),
                          config.get("pipeline", "working_height", default=128)),
            upscale_factor=config.get("pipeline", "upscale_factor", default=8),
            dither_mode=DitherMode(config.get("pipeline", "dither_mode", default="none")),
            resample=config.get("pipeline", "resample", default="box"),
        )

    @property
    def output_size(self) -> Tuple[int, int]:
        w, h = self.working_size
        return (w * self.upscale_factor, h * self.upscale_factor)

    def process(self, buffer: PixelBuffer) -> PixelBuffer:
        w, h = self.working_size
        logger.debug(f"Downsampling {buffer.width}x{buffer.height} -> {w}x{h} ({self.resample})")
        working = ImageResampler.downsample(buffer, w, h, self.resample)

        logger.debug(f"Applying palette '{self.palette.name}' ({len(self.palette)} colors), "
                     f"dither={self.dither_mode.value}")
        get_dither_strategy(self.dither_mode).apply(working, self.palette)

        logger.debug(f"Upscaling x{self.upscale_factor}")
        return ImageResampler.upscale(working, self.upscale_factor)

    def process_image(self, image: Image.Image) -> Image.Image:
        return self.process(PixelBuffer.from_image(image)).to_image()
