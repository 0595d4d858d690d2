import numpy as np
import pytest

from color_model import DEFAULT_PALETTE, Color, Palette, PixelBuffer
from config_manager import ConfigManager
from pixel_lib import (
    DitherMode,
    FloydSteinbergDitherStrategy,
    ImageResampler,
    NoDitherStrategy,
    PixelPipeline,
    floyd_steinberg_dither,
    nearest_color,
    quantize_buffer,
)

BLACK = Color(0, 0, 0)
WHITE = Color(255, 255, 255)
BLACK_WHITE = Palette("bw", (BLACK, WHITE))


def _gray_buffer(width: int, height: int, value: int) -> PixelBuffer:
    return PixelBuffer.new(width, height, Color(value, value, value))


def _gradient_buffer(width: int, height: int) -> PixelBuffer:
    ys, xs = np.mgrid[0:height, 0:width]
    arr = np.empty((height, width, 4), dtype=np.uint8)
    arr[..., 0] = (xs * 255 // max(width - 1, 1)).astype(np.uint8)
    arr[..., 1] = (ys * 255 // max(height - 1, 1)).astype(np.uint8)
    arr[..., 2] = ((xs + ys) * 7 % 256).astype(np.uint8)
    arr[..., 3] = 255
    return PixelBuffer(arr)


# -------------------- nearest_color --------------------

def test_nearest_color_picks_minimum_distance() -> None:
    palette = Palette("p", (Color(0, 0, 0), Color(200, 0, 0), Color(0, 0, 200)))

    assert nearest_color(Color(180, 20, 10), palette) == Color(200, 0, 0)
    assert nearest_color(Color(10, 10, 150), palette) == Color(0, 0, 200)


def test_nearest_color_tie_goes_to_first_entry() -> None:
    palette = Palette("tie", (Color(0, 0, 0), Color(2, 2, 2)))
    reversed_palette = Palette("tie", (Color(2, 2, 2), Color(0, 0, 0)))

    assert nearest_color(Color(1, 1, 1), palette) == Color(0, 0, 0)
    assert nearest_color(Color(1, 1, 1), reversed_palette) == Color(2, 2, 2)


@pytest.mark.parametrize("pixel", [Color(0, 0, 0), Color(255, 255, 255), Color(12, 200, 99)])
def test_single_entry_palette_always_wins(pixel: Color) -> None:
    palette = Palette("one", (Color(10, 20, 30),))

    assert nearest_color(pixel, palette).rgb == (10, 20, 30)


def test_empty_palette_is_identity() -> None:
    pixel = Color(12, 34, 56, 78)

    assert nearest_color(pixel, Palette("empty")) is pixel


def test_nearest_color_ignores_palette_alpha() -> None:
    palette = Palette("alpha", (Color(100, 100, 100, 0), Color(0, 0, 0, 255)))

    # Pixel alpha is kept, palette alpha plays no part
    assert nearest_color(Color(90, 90, 90, 200), palette) == Color(100, 100, 100, 200)


def test_nearest_color_matches_brute_force() -> None:
    rng = np.random.default_rng(7)
    palette = Palette("rand", tuple(Color(*map(int, c)) for c in rng.integers(0, 256, (12, 3))))
    for pixel in rng.integers(0, 256, (200, 3)):
        pixel = Color(*map(int, pixel))
        result = nearest_color(pixel, palette)
        distances = [sum((a - b) ** 2 for a, b in zip(pixel.rgb, c.rgb)) for c in palette]
        assert result.rgb == palette[distances.index(min(distances))].rgb


# -------------------- quantize_buffer --------------------

def test_quantize_buffer_agrees_with_nearest_color() -> None:
    buffer = _gradient_buffer(16, 9)
    palette = Palette("tie", DEFAULT_PALETTE.colors + (Color(128, 128, 128), Color(127, 127, 127)))

    out = quantize_buffer(buffer, palette)

    for y in range(buffer.height):
        for x in range(buffer.width):
            assert out.get_pixel(x, y) == nearest_color(buffer.get_pixel(x, y), palette)


def test_quantize_buffer_keeps_alpha_and_input() -> None:
    buffer = PixelBuffer.new(2, 2, Color(240, 10, 10, 77))
    original = buffer.copy()

    out = quantize_buffer(buffer, DEFAULT_PALETTE)

    assert out.get_pixel(1, 1) == Color(255, 0, 0, 77)
    assert buffer == original


def test_quantize_buffer_empty_palette_returns_copy() -> None:
    buffer = _gradient_buffer(4, 4)

    out = quantize_buffer(buffer, Palette("empty"))

    assert out == buffer
    assert out.pixels is not buffer.pixels


# -------------------- dithering --------------------

def test_dither_hand_computed_2x2() -> None:
    buffer = _gray_buffer(2, 2, 100)

    floyd_steinberg_dither(buffer, BLACK_WHITE)

    assert buffer.get_pixel(0, 0).rgb == BLACK.rgb
    assert buffer.get_pixel(1, 0).rgb == WHITE.rgb
    assert buffer.get_pixel(0, 1).rgb == BLACK.rgb
    assert buffer.get_pixel(1, 1).rgb == BLACK.rgb


def test_dither_clamps_instead_of_wrapping() -> None:
    buffer = PixelBuffer.new(2, 1)
    buffer.set_pixel(0, 0, Color(60, 60, 60))
    buffer.set_pixel(1, 0, Color(250, 250, 250))

    floyd_steinberg_dither(buffer, BLACK_WHITE)

    # 250 + 7/16 * 60 clamps to 255; wrapping would have turned it black
    assert buffer.get_pixel(1, 0).rgb == WHITE.rgb


def test_dither_single_pixel_is_plain_quantize() -> None:
    buffer = PixelBuffer.new(1, 1, Color(200, 30, 30, 128))

    floyd_steinberg_dither(buffer, DEFAULT_PALETTE)

    assert buffer.get_pixel(0, 0) == Color(255, 0, 0, 128)


def test_dither_empty_palette_is_noop() -> None:
    buffer = _gradient_buffer(8, 8)
    original = buffer.copy()

    floyd_steinberg_dither(buffer, Palette("empty"))

    assert buffer == original


def test_dither_works_in_place() -> None:
    buffer = _gradient_buffer(8, 8)
    pixels = buffer.pixels

    FloydSteinbergDitherStrategy().apply(buffer, DEFAULT_PALETTE)

    assert buffer.pixels is pixels
    colors = {tuple(p) for p in pixels[:, :, :3].reshape(-1, 3).tolist()}
    assert colors <= {c.rgb for c in DEFAULT_PALETTE}


def test_dither_mid_gray_balances_black_and_white() -> None:
    buffer = _gray_buffer(64, 64, 128)

    floyd_steinberg_dither(buffer, BLACK_WHITE)

    white = buffer.pixels[:, :, 0] == 255
    assert set(np.unique(buffer.pixels[:, :, 0]).tolist()) <= {0, 255}
    assert 0.4 <= white.mean() <= 0.6

    row_ratios = white.mean(axis=1)
    assert row_ratios.min() >= 0.2
    assert row_ratios.max() <= 0.8
    # No drift between the top and the bottom of the image
    assert abs(row_ratios[:16].mean() - row_ratios[-16:].mean()) < 0.1


def test_no_dither_strategy_rewrites_buffer() -> None:
    buffer = _gray_buffer(3, 3, 100)
    pixels = buffer.pixels

    NoDitherStrategy().apply(buffer, BLACK_WHITE)

    assert buffer.pixels is pixels
    assert (pixels[:, :, :3] == 0).all()


# -------------------- resampling --------------------

def test_downsample_exact_size_and_pure() -> None:
    source = _gradient_buffer(300, 200)
    original = source.copy()

    out = ImageResampler.downsample(source, 128, 128)

    assert out.size == (128, 128)
    assert source == original


def test_downsample_keeps_uniform_color() -> None:
    out = ImageResampler.downsample(PixelBuffer.new(99, 57, Color(10, 200, 30)), 16, 8, "bilinear")

    assert (out.pixels == np.array([10, 200, 30, 255], dtype=np.uint8)).all()


def test_downsample_rejects_bad_arguments() -> None:
    source = PixelBuffer.new(4, 4)
    with pytest.raises(ValueError):
        ImageResampler.downsample(source, 0, 4)
    with pytest.raises(ValueError):
        ImageResampler.downsample(source, 2, 2, "sharpest")


def test_upscale_replicates_blocks() -> None:
    source = PixelBuffer.new(2, 1)
    source.set_pixel(0, 0, Color(1, 2, 3))
    source.set_pixel(1, 0, Color(4, 5, 6, 7))

    out = ImageResampler.upscale(source, 3)

    assert out.size == (6, 3)
    assert (out.pixels[:, :3] == [1, 2, 3, 255]).all()
    assert (out.pixels[:, 3:] == [4, 5, 6, 7]).all()


@pytest.mark.parametrize("factor", [0, -1, 1.5])
def test_upscale_rejects_bad_factor(factor) -> None:
    with pytest.raises(ValueError):
        ImageResampler.upscale(PixelBuffer.new(1, 1), factor)


def test_downsample_quantize_upscale_has_hard_edges() -> None:
    source = _gradient_buffer(640, 480)

    working = ImageResampler.downsample(source, 128, 128)
    NoDitherStrategy().apply(working, DEFAULT_PALETTE)
    out = ImageResampler.upscale(working, 8)

    assert out.size == (1024, 1024)
    blocks = out.pixels.reshape(128, 8, 128, 8, 4)
    assert (blocks == blocks[:, :1, :, :1, :]).all()
    # Blocks are the working pixels, so neighbouring blocks can differ
    assert np.array_equal(blocks[:, 0, :, 0, :], working.pixels)
    assert len(np.unique(working.pixels.reshape(-1, 4), axis=0)) > 1


# -------------------- pipeline --------------------

def test_pipeline_output_size_and_palette_colors() -> None:
    pipeline = PixelPipeline(DEFAULT_PALETTE, working_size=(32, 24), upscale_factor=4,
                             dither_mode=DitherMode.FLOYD_STEINBERG)

    out = pipeline.process(_gradient_buffer(200, 150))

    assert out.size == pipeline.output_size == (128, 96)
    colors = {tuple(p) for p in out.pixels[:, :, :3].reshape(-1, 3).tolist()}
    assert colors <= {c.rgb for c in DEFAULT_PALETTE}


@pytest.mark.parametrize("mode", list(DitherMode))
def test_pipeline_is_deterministic(mode: DitherMode) -> None:
    source = _gradient_buffer(160, 120)
    pipeline = PixelPipeline(DEFAULT_PALETTE, working_size=(40, 30), upscale_factor=2, dither_mode=mode)

    first = pipeline.process(source).to_bytes()
    second = PixelPipeline(DEFAULT_PALETTE, working_size=(40, 30), upscale_factor=2,
                           dither_mode=mode).process(source).to_bytes()

    assert first == second


def test_pipeline_dithering_changes_result() -> None:
    source = _gray_buffer(64, 64, 128)
    plain = PixelPipeline(BLACK_WHITE, working_size=(16, 16), upscale_factor=1).process(source)
    dithered = PixelPipeline(BLACK_WHITE, working_size=(16, 16), upscale_factor=1,
                             dither_mode=DitherMode.FLOYD_STEINBERG).process(source)

    assert len(np.unique(plain.pixels[:, :, 0])) == 1
    assert set(np.unique(dithered.pixels[:, :, 0]).tolist()) == {0, 255}


def test_pipeline_empty_palette_passes_colors_through() -> None:
    source = PixelBuffer.new(20, 20, Color(12, 34, 56))

    out = PixelPipeline(Palette("empty"), working_size=(5, 5), upscale_factor=2,
                        dither_mode=DitherMode.FLOYD_STEINBERG).process(source)

    assert (out.pixels == [12, 34, 56, 255]).all()


def test_pipeline_rejects_bad_settings() -> None:
    with pytest.raises(ValueError):
        PixelPipeline(DEFAULT_PALETTE, working_size=(0, 10))
    with pytest.raises(ValueError):
        PixelPipeline(DEFAULT_PALETTE, upscale_factor=0)
    with pytest.raises(ValueError):
        PixelPipeline(DEFAULT_PALETTE, resample="nope")


def test_pipeline_from_config(tmp_path) -> None:
    config = ConfigManager(str(tmp_path / "config.json"))
    config.set("pipeline", "working_width", value=64)
    config.set("pipeline", "dither_mode", value="floyd_steinberg")

    pipeline = PixelPipeline.from_config(config, DEFAULT_PALETTE)

    assert pipeline.working_size == (64, 128)
    assert pipeline.upscale_factor == 8
    assert pipeline.dither_mode is DitherMode.FLOYD_STEINBERG


def test_pipeline_process_image() -> None:
    image = _gradient_buffer(50, 50).to_image().convert("RGB")

    out = PixelPipeline(DEFAULT_PALETTE, working_size=(10, 10), upscale_factor=3).process_image(image)

    assert out.size == (30, 30)
    assert out.mode == "RGBA"
