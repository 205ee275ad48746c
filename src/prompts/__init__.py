"""Prompt templates for the dispatcher session and image analysis."""

from src.prompts.dispatcher import (
    DISPATCHER_INSTRUCTIONS,
    IMAGE_ANALYSIS_PROMPT,
    image_context_message,
)

__all__ = [
    "DISPATCHER_INSTRUCTIONS",
    "IMAGE_ANALYSIS_PROMPT",
    "image_context_message",
]
