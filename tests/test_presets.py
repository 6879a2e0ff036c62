"""Tests for the composition presets."""

import pytest

from thumbreel.exceptions import CompositionValidationError
from thumbreel.render.animation import evaluate
from thumbreel.services.presets import (
    AI_VIDEO_DEFAULT_DURATION,
    ANIMATED_THUMBNAIL_DEFAULT_DURATION,
    build_ai_video_template,
    build_animated_thumbnail,
    caption_set_for_prompt,
    thumbnail_animations,
)
class TestBuildAnimatedThumbnail:
    """Tests for the generated composition."""

    def test_defaults(self):
        composition = build_animated_thumbnail("https://example.com/thumb.png")

        assert composition.duration == ANIMATED_THUMBNAIL_DEFAULT_DURATION
        assert composition.output_size == (1280, 720)
        assert composition.export_settings.quality == "high"
        assert composition.fps == 30
        assert composition.template.name == "Animated Thumbnail"

        layer = composition.layers[0]
        assert layer.type == "image"
        assert layer.properties.fit == "cover"
        assert layer.properties.src == "https://example.com/thumb.png"
        assert layer.animations[0].type == "fade"

    def test_zoom_spans_duration(self):
        composition = build_animated_thumbnail("/tmp/t.png", animation_type="zoom", duration=2.0)
        layer = composition.layers[0]

        assert layer.animations[0].duration == 2.0
        assert evaluate(layer, 2.0).scale == pytest.approx(1.1)

    def test_slide_enters_from_left(self):
        composition = build_animated_thumbnail("/tmp/t.png", animation_type="slide")
        layer = composition.layers[0]

        start = evaluate(layer, 0.0)
        end = evaluate(layer, 1.0)

        assert start.x == -100
        assert end.x == 640

    def test_fade_in(self):
        composition = build_animated_thumbnail("/tmp/t.png", animation_type="fade")
        layer = composition.layers[0]

        assert evaluate(layer, 0.0).opacity == 0.0
        assert evaluate(layer, 0.5).opacity == 1.0

    def test_empty_image_url_rejected(self):
        with pytest.raises(CompositionValidationError):
            build_animated_thumbnail("")

    @pytest.mark.parametrize("animation_type", [None, "spin"])
    def test_unknown_type_fades(self, animation_type):
        assert thumbnail_animations(animation_type, 3.0)[0]["type"] == "fade"


class TestCaptionSet:
    @pytest.mark.parametrize("prompt", [
        "Motivational morning speech",
        "Something to INSPIRE my team",
        "How I achieved my goals",
    ])
    def test_motivational_keywords(self, prompt):
        assert caption_set_for_prompt(prompt) == "motivational"

    @pytest.mark.parametrize("prompt", ["Teach me chemistry", "cats"])
    def test_everything_else_is_educational(self, prompt):
        assert caption_set_for_prompt(prompt) == "educational"


class TestBuildAIVideoTemplate:
    """Tests for the prompt-driven composition."""

    def test_universal_defaults(self):
        composition = build_ai_video_template("Learn about volcanoes")

        assert composition.duration == AI_VIDEO_DEFAULT_DURATION
        assert composition.output_size == (1920, 1080)
        assert composition.template.name == "AI Generated Video"
        assert composition.template.aspect_ratio == "16:9"
        assert composition.export_settings.format == "mp4"
        assert composition.export_settings.quality == "high"
        assert composition.fps == 30
        assert composition.settings.audio_enabled is False

    def test_background_uses_style_palette(self):
        composition = build_ai_video_template("x", style="energetic")
        background = composition.layers[0]

        assert background.type == "shape"
        assert background.properties.gradient.colors == ["#EF4444", "#F59E0B", "#10B981"]
        assert background.size.width == 1920
        assert background.position.x == 960

    def test_color_scheme_leads_gradient(self):
        composition = build_ai_video_template("x", style="minimalist", color_scheme="#123456")

        assert composition.layers[0].properties.gradient.colors[0] == "#123456"

    def test_vertical_platform(self):
        composition = build_ai_video_template("x", platform="tiktok")

        assert composition.output_size == (1080, 1920)
        assert composition.template.aspect_ratio == "9:16"

    def test_motivational_captions(self):
        composition = build_ai_video_template(
            "Inspire me", platform="instagram", style="dramatic"
        )
        captions = composition.layers[1:]

        assert [c.properties.text for c in captions] == ["BELIEVE IN YOURSELF", "SUCCESS STARTS TODAY"]
        assert captions[0].properties.font_family == "Georgia"
        assert captions[0].z_index == 10
        assert captions[1].z_index == 11
        assert captions[0].start_time == 1
        assert captions[0].animations[0].type == "zoom"
        assert captions[0].animations[0].start_time == 0

    def test_captions_scaled_to_landscape(self):
        composition = build_ai_video_template("Learn geometry", platform="universal")
        caption = composition.layers[1]

        assert caption.position.x == pytest.approx(960)
        assert caption.position.y == pytest.approx(300 * 1080 / 1920)
        assert caption.properties.font_size == pytest.approx(80 * 1080 / 1920)

    def test_slide_keyframes_scaled(self):
        composition = build_ai_video_template("Learn geometry", platform="universal")
        caption = composition.layers[2]

        assert evaluate(caption, 0.0).x == pytest.approx(800 * 1920 / 1080)
        assert evaluate(caption, 1.0).x == pytest.approx(960)

    def test_captions_clipped_to_duration(self):
        composition = build_ai_video_template("Learn something", duration=4.0)
        captions = composition.layers[1:]

        assert len(captions) == 2
        assert captions[1].start_time == 3
        assert captions[1].end_time == pytest.approx(4.0)

    def test_captions_after_end_dropped(self):
        composition = build_ai_video_template("Learn something", duration=2.0)

        assert [layer.id for layer in composition.layers] == ["ai-bg", "ai-text-0"]

    def test_without_text(self):
        composition = build_ai_video_template("Learn something", include_text=False)

        assert [layer.id for layer in composition.layers] == ["ai-bg"]

    def test_deterministic(self):
        assert build_ai_video_template("Learn x") == build_ai_video_template("Learn x")

    @pytest.mark.parametrize("prompt", ["", "   "])
    def test_blank_prompt_rejected(self, prompt):
        with pytest.raises(CompositionValidationError, match="Prompt is required"):
            build_ai_video_template(prompt)
