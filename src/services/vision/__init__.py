"""Image analysis collaborator."""

from src.services.vision.openai_vision import VisionAnalyzer

__all__ = ["VisionAnalyzer"]
