"""Image analysis via an OpenAI vision-capable chat model."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from src.config import Settings, get_settings
from src.logging_config import get_logger
from src.prompts.dispatcher import IMAGE_ANALYSIS_PROMPT

if TYPE_CHECKING:
    from openai import AsyncOpenAI

logger: Any = get_logger(__name__)

MAX_ANALYSIS_TOKENS = 300
UNABLE_TO_ANALYZE = "Unable to analyze image"


class VisionAnalyzer:
    """Describes caller-uploaded images for the voice conversation.

    Never raises: failures come back as a short textual fallback so the
    conversation can acknowledge the problem instead of stalling.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        model: str | None = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._model = model or self._settings.vision_model
        self._client: AsyncOpenAI | None = None

    @property
    def client(self) -> AsyncOpenAI:
        """Lazy initialization of the OpenAI client."""
        if self._client is None:
            from openai import AsyncOpenAI

            self._client = AsyncOpenAI(
                api_key=self._settings.openai_api_key.get_secret_value(),
            )
        return self._client

    async def analyze(
        self,
        image_data: str,
        mime_type: str,
        history: list[dict[str, str]] | None = None,
    ) -> str:
        """Analyze a base64 image with recent conversation turns as context.

        Args:
            image_data: Base64-encoded image bytes (no data-URL prefix)
            mime_type: Image MIME type, e.g. image/jpeg
            history: Recent `{role, content}` turns, oldest first

        Returns:
            Analysis text, or an error description on failure.
        """
        messages: list[dict[str, Any]] = list(history or [])
        messages.append(
            {
                "role": "user",
                "content": [
                    {"type": "text", "text": IMAGE_ANALYSIS_PROMPT},
                    {
                        "type": "image_url",
                        "image_url": {
                            "url": f"data:{mime_type};base64,{image_data}",
                            "detail": "high",
                        },
                    },
                ],
            }
        )

        try:
            response = await self.client.chat.completions.create(
                model=self._model,
                messages=messages,
                max_tokens=MAX_ANALYSIS_TOKENS,
            )
        except Exception as e:
            logger.error(f"Vision API error: {e}")
            return f"Error analyzing image: {str(e) or 'Unknown error'}"

        choices = response.choices or []
        content = choices[0].message.content if choices else None
        return content or UNABLE_TO_ANALYZE

    async def close(self) -> None:
        if self._client is not None:
            await self._client.close()
            self._client = None
