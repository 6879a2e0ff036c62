from thumbreel.render.animation import Transform, evaluate
from thumbreel.render.encoder import EncodeResult, EncodingPipeline
from thumbreel.render.fallback import DegradedModeFallback
from thumbreel.render.rasterizer import FrameRasterizer

__all__ = [
    "Transform",
    "evaluate",
    "FrameRasterizer",
    "EncodingPipeline",
    "EncodeResult",
    "DegradedModeFallback",
]
