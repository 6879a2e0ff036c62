"""Frame rasterizer.

Paints one frame of a composition with Pillow: an RGBA canvas filled with the
background color, then every eligible layer bottom to top. Each layer is
painted into its own transparent tile, transformed (scale, rotation,
opacity) around the tile center, and composited centered on its evaluated
position.
"""

import io
import logging
import os
import subprocess
import threading
from functools import lru_cache
from pathlib import Path
from typing import assert_never

from PIL import Image, ImageChops, ImageDraw, ImageFont, ImageOps

from thumbreel.exceptions import RasterizeError
from thumbreel.render.animation import Transform, evaluate
from thumbreel.schemas.composition import (
    Composition,
    Gradient,
    ImageLayer,
    Layer,
    ShapeLayer,
    TextLayer,
    VideoLayer,
)
from thumbreel.utils.colors import RGBA, hex_to_rgba

logger = logging.getLogger(__name__)

FRAME_FILENAME = "frame_{index:06d}.png"
FRAME_PATTERN = "frame_%06d.png"

PLACEHOLDER_FILL: RGBA = (204, 204, 204, 255)
PLACEHOLDER_TEXT: RGBA = (102, 102, 102, 255)
TRANSPARENT: RGBA = (0, 0, 0, 0)
FONT_EXTENSIONS = (".ttf", ".otf", ".ttc")
VIDEO_SAMPLE_TIMEOUT_S = 15


def frame_filename(frame_index: int) -> str:
    return FRAME_FILENAME.format(index=frame_index)


def _normalize_font_name(name: str) -> str:
    return "".join(ch for ch in name.lower() if ch.isalnum())


@lru_cache(maxsize=64)
def find_font_file(font_dir: str, family: str, bold: bool) -> str | None:
    """Locate a font file for ``family`` under ``font_dir``.

    Matches on the normalized file stem (case and separators ignored).
    Prefers a bold face when ``bold`` is set, otherwise a regular one.
    """
    root = Path(font_dir)
    if not root.is_dir():
        return None

    wanted = _normalize_font_name(family)
    matches: list[Path] = []
    for path in root.rglob("*"):
        if path.suffix.lower() in FONT_EXTENSIONS and _normalize_font_name(path.stem).startswith(wanted):
            matches.append(path)
    if not matches:
        return None

    def rank(path: Path) -> tuple[int, int]:
        stem = _normalize_font_name(path.stem)
        is_bold = "bold" in stem
        return (0 if is_bold == bold else 1, len(stem))

    return str(sorted(matches, key=rank)[0])


class FrameRasterizer:
    """Renders composition frames to PNG files in a scratch directory."""

    def __init__(self, font_dir: str | None = None, ffmpeg_path: str | None = None):
        """
        Args:
            font_dir: Directory searched for TrueType/OpenType fonts.
            ffmpeg_path: Encoder binary used to sample video layer frames.
                None disables sampling; video layers render as placeholders.
        """
        self.font_dir = font_dir
        self.ffmpeg_path = ffmpeg_path
        self._image_cache: dict[str, Image.Image | None] = {}
        self._image_lock = threading.Lock()

    # =========================================================================
    # Public API
    # =========================================================================

    def render_frame(
        self,
        composition: Composition,
        t: float,
        frame_index: int,
        scratch_dir: Path,
    ) -> Path:
        """Render the frame at global time ``t`` to ``frame_{index:06d}.png``.

        The file is written under a temporary name and renamed into place, so
        a frame path either does not exist or holds a complete image.

        Raises:
            RasterizeError: If painting or writing the frame fails.
        """
        scratch_dir = Path(scratch_dir)
        final_path = scratch_dir / frame_filename(frame_index)
        tmp_path = scratch_dir / f".{final_path.name}.part"
        try:
            canvas = self.render_canvas(composition, t)
            if canvas.size != composition.output_size:
                canvas = canvas.resize(composition.output_size, Image.Resampling.LANCZOS)
            canvas.convert("RGB").save(tmp_path, format="PNG")
            os.replace(tmp_path, final_path)
        except Exception as e:
            try:
                tmp_path.unlink(missing_ok=True)
            except OSError as cleanup_error:
                logger.warning(f"[RENDER] Failed to remove partial frame {tmp_path}: {cleanup_error}")
            raise RasterizeError(frame_index, str(e)) from e
        return final_path

    def render_canvas(self, composition: Composition, t: float) -> Image.Image:
        """Paint the composition at global time ``t`` at canvas resolution."""
        canvas = Image.new(
            "RGBA",
            composition.canvas_size,
            hex_to_rgba(composition.settings.background_color, fallback=(0, 0, 0, 255)),
        )
        for layer in composition.layers_visible_at(t):
            local_time = t - layer.start_time
            transform = evaluate(layer, local_time)
            if transform.opacity <= 0 or transform.scale <= 0:
                continue
            tile = self._paint_layer(layer, t)
            tile = self._apply_transform(tile, transform)
            if tile is None:
                continue
            self._composite(canvas, tile, transform.x, transform.y)
        return canvas

    # =========================================================================
    # Layer painting
    # =========================================================================

    def _paint_layer(self, layer: Layer, t: float) -> Image.Image:
        size = (max(1, round(layer.size.width)), max(1, round(layer.size.height)))
        match layer:
            case TextLayer():
                return self._paint_text(layer, size)
            case ShapeLayer():
                return self._paint_shape(layer, size)
            case ImageLayer():
                return self._paint_image(layer, size)
            case VideoLayer():
                return self._paint_video(layer, size, t)
            case _:
                assert_never(layer)

    def _load_font(self, family: str, size: int, bold: bool) -> ImageFont.FreeTypeFont | ImageFont.ImageFont:
        if self.font_dir:
            path = find_font_file(self.font_dir, family, bold)
            if path:
                try:
                    return ImageFont.truetype(path, size)
                except OSError as e:
                    logger.warning(f"[TEXT] Failed to load font {path}: {e}")
        return ImageFont.load_default(size=size)

    def _paint_text(self, layer: TextLayer, size: tuple[int, int]) -> Image.Image:
        props = layer.properties
        tile = Image.new("RGBA", size, TRANSPARENT)
        if not props.text:
            return tile

        font_size = max(1, round(props.font_size))
        bold = props.font_weight in ("bold", "bolder") or (
            props.font_weight.isdigit() and int(props.font_weight) >= 600
        )
        font = self._load_font(props.font_family, font_size, bold)
        draw = ImageDraw.Draw(tile)

        fill = hex_to_rgba(props.color)
        stroke_width = round(props.stroke_width)
        stroke_fill = hex_to_rgba(props.stroke_color) if props.stroke_color and stroke_width > 0 else None

        lines = props.text.split("\n")
        line_px = font_size * props.line_height
        block_height = line_px * len(lines)
        y = (size[1] - block_height) / 2

        for line in lines:
            bbox = draw.textbbox((0, 0), line or " ", font=font, stroke_width=stroke_width)
            line_width = bbox[2] - bbox[0]
            if props.text_align == "left":
                x = 0
            elif props.text_align == "right":
                x = size[0] - line_width
            else:
                x = (size[0] - line_width) / 2
            draw.text(
                (x - bbox[0], y),
                line,
                font=font,
                fill=fill,
                stroke_width=stroke_width if stroke_fill else 0,
                stroke_fill=stroke_fill,
            )
            y += line_px
        return tile

    def _paint_shape(self, layer: ShapeLayer, size: tuple[int, int]) -> Image.Image:
        props = layer.properties
        width, height = size
        tile = Image.new("RGBA", size, TRANSPARENT)
        stroke_width = round(props.stroke_width)
        stroke_rgba = hex_to_rgba(props.stroke_color) if props.stroke_color and stroke_width > 0 else None

        if props.shape == "line":
            draw = ImageDraw.Draw(tile)
            line_width = max(1, stroke_width, height)
            draw.line(
                [(0, height // 2), (width, height // 2)],
                fill=stroke_rgba or hex_to_rgba(props.color),
                width=line_width,
            )
            return tile

        mask = Image.new("L", size, 0)
        mask_draw = ImageDraw.Draw(mask)
        box = [(0, 0), (width - 1, height - 1)]
        if props.shape == "circle":
            mask_draw.ellipse(box, fill=255)
        else:
            mask_draw.rectangle(box, fill=255)

        if props.gradient is not None:
            fill_image = gradient_fill(props.gradient, size)
        else:
            fill_image = Image.new("RGBA", size, hex_to_rgba(props.color))
        tile.paste(fill_image, (0, 0), mask)

        if stroke_rgba:
            draw = ImageDraw.Draw(tile)
            if props.shape == "circle":
                draw.ellipse(box, outline=stroke_rgba, width=stroke_width)
            else:
                draw.rectangle(box, outline=stroke_rgba, width=stroke_width)
        return tile

    def _paint_image(self, layer: ImageLayer, size: tuple[int, int]) -> Image.Image:
        source = self._load_image(layer.properties.src)
        if source is None:
            return placeholder_tile(size, "IMAGE")
        return fit_image(source, size, layer.properties.fit)

    def _paint_video(self, layer: VideoLayer, size: tuple[int, int], t: float) -> Image.Image:
        props = layer.properties
        source_time = max(0.0, (t - layer.start_time) * props.playback_rate)
        frame = self._sample_video_frame(props.src, source_time)
        if frame is None:
            return placeholder_tile(size, "VIDEO")
        return fit_image(frame, size, props.fit)

    # =========================================================================
    # Sources
    # =========================================================================

    @staticmethod
    def _local_path(src: str) -> Path | None:
        if src.startswith("file://"):
            src = src[len("file://"):]
        elif "://" in src or src.startswith("data:"):
            return None
        path = Path(src)
        return path if path.is_file() else None

    def _load_image(self, src: str) -> Image.Image | None:
        with self._image_lock:
            if src in self._image_cache:
                return self._image_cache[src]

        image = None
        path = self._local_path(src)
        if path is None:
            logger.warning(f"[RENDER] Image source not available locally, using placeholder: {src}")
        else:
            try:
                with Image.open(path) as opened:
                    image = opened.convert("RGBA")
            except OSError as e:
                logger.warning(f"[RENDER] Failed to load image {src}, using placeholder: {e}")

        with self._image_lock:
            self._image_cache[src] = image
        return image

    def _sample_video_frame(self, src: str, source_time: float) -> Image.Image | None:
        """Grab the frame nearest ``source_time`` using the encoder binary.

        Seeks on the input side, so the sample is not frame-accurate.
        """
        path = self._local_path(src)
        if self.ffmpeg_path is None or path is None:
            logger.warning(f"[RENDER] Video source cannot be sampled, using placeholder: {src}")
            return None

        cmd = [
            self.ffmpeg_path,
            "-v", "error",
            "-ss", f"{source_time:.3f}",
            "-i", str(path),
            "-frames:v", "1",
            "-f", "image2pipe",
            "-vcodec", "png",
            "-",
        ]
        try:
            result = subprocess.run(cmd, capture_output=True, timeout=VIDEO_SAMPLE_TIMEOUT_S)
        except (OSError, subprocess.TimeoutExpired) as e:
            logger.warning(f"[RENDER] Video frame sampling failed for {src}: {e}")
            return None
        if result.returncode != 0 or not result.stdout:
            logger.warning(f"[RENDER] Video frame sampling returned no frame for {src} at {source_time:.3f}s")
            return None
        with Image.open(io.BytesIO(result.stdout)) as frame:
            return frame.convert("RGBA")

    # =========================================================================
    # Transform & composite
    # =========================================================================

    @staticmethod
    def _apply_transform(tile: Image.Image, transform: Transform) -> Image.Image | None:
        if abs(transform.scale - 1.0) > 1e-6:
            scaled = (round(tile.width * transform.scale), round(tile.height * transform.scale))
            if scaled[0] < 1 or scaled[1] < 1:
                return None
            tile = tile.resize(scaled, Image.Resampling.BICUBIC)

        if abs(transform.rotation) > 0.01:
            # PIL rotates counter-clockwise; layer rotation is clockwise
            tile = tile.rotate(
                -transform.rotation,
                resample=Image.Resampling.BICUBIC,
                expand=True,
                fillcolor=TRANSPARENT,
            )

        if transform.opacity < 1.0:
            alpha = tile.getchannel("A").point(lambda a: round(a * transform.opacity))
            tile.putalpha(alpha)
        return tile

    @staticmethod
    def _composite(canvas: Image.Image, tile: Image.Image, center_x: float, center_y: float) -> None:
        """Alpha-composite ``tile`` centered at (center_x, center_y), clipped to the canvas."""
        left = round(center_x - tile.width / 2)
        top = round(center_y - tile.height / 2)
        dst_left, dst_top = max(0, left), max(0, top)
        right = min(canvas.width, left + tile.width)
        bottom = min(canvas.height, top + tile.height)
        if right <= dst_left or bottom <= dst_top:
            return
        src_left, src_top = dst_left - left, dst_top - top
        canvas.alpha_composite(
            tile,
            dest=(dst_left, dst_top),
            source=(src_left, src_top, src_left + right - dst_left, src_top + bottom - dst_top),
        )


# =============================================================================
# Painting helpers
# =============================================================================


def placeholder_tile(size: tuple[int, int], label: str) -> Image.Image:
    """Grey box with a centered label, used for sources that cannot be loaded."""
    tile = Image.new("RGBA", size, PLACEHOLDER_FILL)
    draw = ImageDraw.Draw(tile)
    font = ImageFont.load_default(size=max(10, min(size) // 6))
    bbox = draw.textbbox((0, 0), label, font=font)
    x = (size[0] - (bbox[2] - bbox[0])) / 2 - bbox[0]
    y = (size[1] - (bbox[3] - bbox[1])) / 2 - bbox[1]
    draw.text((x, y), label, font=font, fill=PLACEHOLDER_TEXT)
    return tile


def fit_image(source: Image.Image, size: tuple[int, int], fit: str) -> Image.Image:
    """Fit ``source`` into a tile of ``size`` (contain, cover or fill)."""
    if fit == "fill":
        return source.resize(size, Image.Resampling.LANCZOS)
    if fit == "cover":
        return ImageOps.fit(source, size, Image.Resampling.LANCZOS)
    contained = ImageOps.contain(source, size, Image.Resampling.LANCZOS)
    tile = Image.new("RGBA", size, TRANSPARENT)
    tile.paste(contained, ((size[0] - contained.width) // 2, (size[1] - contained.height) // 2))
    return tile


def _color_ramp(colors: list[str]) -> list[RGBA]:
    """256-entry lookup table interpolating evenly spaced color stops."""
    stops = [hex_to_rgba(c) for c in colors]
    segments = len(stops) - 1
    ramp: list[RGBA] = []
    for i in range(256):
        pos = i / 255 * segments
        idx = min(int(pos), segments - 1)
        frac = pos - idx
        a, b = stops[idx], stops[idx + 1]
        ramp.append(tuple(round(a[c] + (b[c] - a[c]) * frac) for c in range(4)))
    return ramp


def gradient_fill(gradient: Gradient, size: tuple[int, int]) -> Image.Image:
    """RGBA image filled with a multi-stop gradient.

    Linear gradients run diagonally from the top-left to the bottom-right
    corner. Radial gradients start at the center and reach the last stop at
    the edge of the inscribed ellipse.
    """
    if gradient.type == "radial":
        param = Image.radial_gradient("L").resize(size, Image.Resampling.BILINEAR)
    else:
        vertical = Image.linear_gradient("L").resize(size, Image.Resampling.BILINEAR)
        horizontal = Image.linear_gradient("L").transpose(Image.Transpose.ROTATE_90)
        horizontal = horizontal.resize(size, Image.Resampling.BILINEAR)
        param = ImageChops.add(vertical, horizontal, scale=2.0)

    ramp = _color_ramp(gradient.colors)
    bands = [param.point([entry[channel] for entry in ramp]) for channel in range(4)]
    return Image.merge("RGBA", bands)
