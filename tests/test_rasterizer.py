"""Tests for the frame rasterizer.

Features:
- Background fill and layer paint order
- Layer transforms (opacity, scale, rotation)
- Image sources and placeholders
- Atomic frame files in the scratch directory
"""

from pathlib import Path

import pytest
from PIL import Image

from thumbreel.exceptions import RasterizeError
from thumbreel.render.rasterizer import (
    PLACEHOLDER_FILL,
    FrameRasterizer,
    fit_image,
    frame_filename,
)
from thumbreel.schemas.composition import parse_composition

RED = (255, 0, 0, 255)
BLUE = (0, 0, 255, 255)
BLACK = (0, 0, 0, 255)


def assert_close(pixel, expected, tolerance=2):
    assert len(pixel) == len(expected)
    assert all(abs(a - b) <= tolerance for a, b in zip(pixel, expected)), f"{pixel} != {expected}"


@pytest.fixture
def rasterizer(tmp_path: Path) -> FrameRasterizer:
    return FrameRasterizer(font_dir=str(tmp_path / "fonts"))


@pytest.fixture
def compose(make_payload):
    """Build a 100x100 composition from layer payloads."""

    def _compose(layers, background="#000000", **kwargs):
        return parse_composition(
            make_payload(width=100, height=100, layers=layers, background=background, **kwargs)
        )

    return _compose


class TestCanvasPainting:
    """Tests for background and paint order."""

    def test_background_fill(self, rasterizer, compose):
        canvas = rasterizer.render_canvas(compose([], background="#00ff00"), 0.0)

        assert canvas.size == (100, 100)
        assert canvas.getpixel((0, 0)) == (0, 255, 0, 255)

    def test_higher_z_index_painted_on_top(self, rasterizer, compose, shape_layer):
        composition = compose([
            shape_layer("blue", color="#0000ff", z_index=2),
            shape_layer("red", color="#ff0000", z_index=1),
        ])

        canvas = rasterizer.render_canvas(composition, 0.5)

        assert canvas.getpixel((50, 50)) == BLUE

    def test_equal_z_index_later_layer_on_top(self, rasterizer, compose, shape_layer):
        composition = compose([
            shape_layer("blue", color="#0000ff"),
            shape_layer("red", color="#ff0000"),
        ])

        canvas = rasterizer.render_canvas(composition, 0.5)

        assert canvas.getpixel((50, 50)) == RED

    def test_layer_centered_on_position(self, rasterizer, compose, shape_layer):
        composition = compose([shape_layer("box", x=25, y=25, width=20, height=20)])

        canvas = rasterizer.render_canvas(composition, 0.0)

        assert canvas.getpixel((25, 25)) == RED
        assert canvas.getpixel((50, 50)) == BLACK

    def test_layer_outside_window_not_painted(self, rasterizer, compose, shape_layer):
        composition = compose([shape_layer("late", start_time=0.5, duration=0.5)])

        assert rasterizer.render_canvas(composition, 0.25).getpixel((50, 50)) == BLACK
        assert rasterizer.render_canvas(composition, 0.75).getpixel((50, 50)) == RED

    def test_hidden_layer_not_painted(self, rasterizer, compose, shape_layer):
        composition = compose([shape_layer("hidden", visible=False)])

        assert rasterizer.render_canvas(composition, 0.5).getpixel((50, 50)) == BLACK

    def test_partially_offscreen_layer_clipped(self, rasterizer, compose, shape_layer):
        composition = compose([shape_layer("edge", x=0, y=0, width=40, height=40)])

        canvas = rasterizer.render_canvas(composition, 0.0)

        assert canvas.getpixel((5, 5)) == RED
        assert canvas.getpixel((30, 30)) == BLACK

    def test_gradient_fill(self, rasterizer, compose, shape_layer):
        layer = shape_layer("grad", width=100, height=100)
        layer["properties"] = {
            "shape": "rectangle",
            "gradient": {"type": "linear", "colors": ["#000000", "#ffffff"]},
        }

        canvas = rasterizer.render_canvas(compose([layer]), 0.0)

        assert canvas.getpixel((5, 5))[0] < canvas.getpixel((95, 95))[0]

    def test_text_drawn(self, rasterizer, compose):
        layer = {
            "id": "title",
            "type": "text",
            "duration": 1.0,
            "position": {"x": 50, "y": 50},
            "size": {"width": 100, "height": 60},
            "properties": {"text": "Hi", "fontSize": 40, "color": "#ffffff"},
        }

        canvas = rasterizer.render_canvas(compose([layer]), 0.0)

        assert canvas.convert("L").getextrema()[1] > 0


class TestLayerTransforms:
    """Tests for opacity, scale and rotation."""

    def test_zero_opacity_skipped(self, rasterizer, compose, shape_layer):
        composition = compose([shape_layer("ghost", opacity=0)])

        assert rasterizer.render_canvas(composition, 0.5).getpixel((50, 50)) == BLACK

    def test_half_opacity_blends(self, rasterizer, compose, shape_layer):
        composition = compose([shape_layer("half", color="#ffffff", opacity=0.5)])

        r, g, b, _ = rasterizer.render_canvas(composition, 0.5).getpixel((50, 50))

        assert 120 <= r <= 136
        assert r == g == b

    def test_scale_grows_tile_around_center(self, rasterizer, compose, shape_layer):
        layer = shape_layer("grow", width=20, height=20, animations=[{
            "type": "zoom",
            "duration": 1.0,
            "properties": {"from": {"scale": 2}, "to": {"scale": 2}},
        }])

        canvas = rasterizer.render_canvas(compose([layer]), 0.5)

        assert canvas.getpixel((35, 50)) == RED
        assert canvas.getpixel((25, 50)) == BLACK

    def test_rotation_clockwise_quarter_turn(self, rasterizer, compose, shape_layer):
        layer = shape_layer("bar", width=80, height=10, rotation=90)

        canvas = rasterizer.render_canvas(compose([layer]), 0.0)

        assert canvas.getpixel((50, 20)) == RED
        assert canvas.getpixel((20, 50)) == BLACK

    def test_slide_animation_moves_layer(self, rasterizer, compose, shape_layer):
        layer = shape_layer("mover", width=10, height=10, animations=[{
            "type": "slide",
            "duration": 1.0,
            "properties": {"from": {"x": 10, "y": 50}, "to": {"x": 90, "y": 50}},
        }])
        composition = compose([layer])

        assert rasterizer.render_canvas(composition, 0.0).getpixel((10, 50)) == RED
        assert rasterizer.render_canvas(composition, 1.0).getpixel((90, 50)) == RED


class TestImageSources:
    """Tests for image and video layers."""

    def test_local_image_painted(self, rasterizer, compose, tmp_path):
        src = tmp_path / "green.png"
        Image.new("RGB", (100, 100), (0, 255, 0)).save(src)
        layer = {
            "id": "img",
            "type": "image",
            "duration": 1.0,
            "position": {"x": 50, "y": 50},
            "size": {"width": 100, "height": 100},
            "properties": {"src": str(src), "fit": "fill"},
        }

        canvas = rasterizer.render_canvas(compose([layer]), 0.0)

        assert canvas.getpixel((50, 50)) == (0, 255, 0, 255)

    def test_remote_image_uses_placeholder(self, rasterizer, compose):
        layer = {
            "id": "img",
            "type": "image",
            "duration": 1.0,
            "position": {"x": 50, "y": 50},
            "size": {"width": 100, "height": 100},
            "properties": {"src": "https://example.com/thumb.png"},
        }

        canvas = rasterizer.render_canvas(compose([layer]), 0.0)

        assert canvas.getpixel((2, 2)) == PLACEHOLDER_FILL

    def test_video_without_encoder_uses_placeholder(self, rasterizer, compose, tmp_path):
        src = tmp_path / "clip.mp4"
        src.write_bytes(b"not really a video")
        layer = {
            "id": "vid",
            "type": "video",
            "duration": 1.0,
            "position": {"x": 50, "y": 50},
            "size": {"width": 100, "height": 100},
            "properties": {"src": str(src)},
        }

        canvas = rasterizer.render_canvas(compose([layer]), 0.5)

        assert canvas.getpixel((2, 2)) == PLACEHOLDER_FILL

    def test_fit_contain_letterboxes(self):
        source = Image.new("RGBA", (200, 100), RED)

        tile = fit_image(source, (100, 100), "contain")

        assert tile.size == (100, 100)
        assert tile.getpixel((50, 10))[3] == 0
        assert_close(tile.getpixel((50, 50)), RED)

    def test_fit_cover_fills_tile(self):
        source = Image.new("RGBA", (200, 100), RED)

        tile = fit_image(source, (100, 100), "cover")

        assert_close(tile.getpixel((50, 2)), RED)


class TestRenderFrame:
    """Tests for frame files."""

    def test_frame_filename(self):
        assert frame_filename(0) == "frame_000000.png"
        assert frame_filename(1234) == "frame_001234.png"

    def test_writes_frame_at_output_resolution(self, rasterizer, make_payload, tmp_path):
        payload = make_payload(width=64, height=36)
        payload["template"]["resolution"] = {"width": 128, "height": 72}
        payload["layers"][0]["size"] = {"width": 128, "height": 72}
        payload["layers"][0]["position"] = {"x": 64, "y": 36}
        composition = parse_composition(payload)

        path = rasterizer.render_frame(composition, 0.0, 7, tmp_path)

        assert path == tmp_path / "frame_000007.png"
        with Image.open(path) as frame:
            assert frame.size == (64, 36)
            assert frame.mode == "RGB"
            assert_close(frame.getpixel((32, 18)), (255, 0, 0))
        assert not list(tmp_path.glob(".*.part"))

    def test_write_failure_raises_rasterize_error(self, rasterizer, make_payload, tmp_path):
        composition = parse_composition(make_payload())

        with pytest.raises(RasterizeError) as exc_info:
            rasterizer.render_frame(composition, 0.0, 3, tmp_path / "missing")

        assert exc_info.value.frame_index == 3
        assert "frame 3" in exc_info.value.message

    def test_same_frame_renders_identically(self, rasterizer, make_payload, tmp_path):
        composition = parse_composition(make_payload())
        first = tmp_path / "a"
        second = tmp_path / "b"
        first.mkdir()
        second.mkdir()

        rasterizer.render_frame(composition, 0.5, 0, first)
        rasterizer.render_frame(composition, 0.5, 0, second)

        assert (first / "frame_000000.png").read_bytes() == (second / "frame_000000.png").read_bytes()
