"""
Product description generation for handmade items.

Stateless proxy to the Groq chat completion API: one photo plus optional
user notes in, one Russian description out. Access control lives in the
gate; this module never looks at entitlements.
"""

import base64
import logging
from typing import Optional, Protocol

import groq

from starsgate.core.errors import ConfigurationError, GenerationFailedError


logger = logging.getLogger(__name__)

ALLOWED_MIME_TYPES = {"image/jpeg", "image/png", "image/webp", "image/gif"}
MAX_IMAGE_BYTES = 4 * 1024 * 1024  # Groq limit for base64 images

PROMPT_TEMPLATE = """Задание: Создай привлекательное и подробное товарное описание на русском языке для handmade-изделия, изображенного на фото.

Стиль: Дружелюбный, теплый, подчеркивающий уникальность и ценность ручной работы.

Структура описания:
1. Яркий заголовок.
2. Введение: кратко опиши изделие и эмоции, которые оно вызывает.
3. Детали и материалы.
4. Для кого это идеальный подарок или как его использовать.
5. Теплое завершение с призывом к покупке.

Дополнительная информация от пользователя: "{user_text}"

Сгенерируй только текст описания, без вступлений. Используй абзацы."""


def build_prompt(user_text: Optional[str]) -> str:
    text = (user_text or "").strip()
    return PROMPT_TEMPLATE.format(user_text=text or "Нет")


class DescriptionGenerator(Protocol):
    async def generate(self, image: bytes, mime_type: str, user_text: str = "") -> str:
        ...


class GroqDescriptionGenerator:
    """Vision chat completion via the Groq SDK."""

    def __init__(self, api_key: Optional[str], *, model: str, client: Optional[groq.AsyncGroq] = None):
        if client is None:
            if not api_key:
                raise ConfigurationError("GROQ_API_KEY not configured")
            client = groq.AsyncGroq(api_key=api_key)
        self._client = client
        self._model = model

    async def generate(self, image: bytes, mime_type: str, user_text: str = "") -> str:
        data_url = f"data:{mime_type};base64,{base64.b64encode(image).decode('ascii')}"
        try:
            completion = await self._client.chat.completions.create(
                model=self._model,
                messages=[
                    {
                        "role": "user",
                        "content": [
                            {"type": "text", "text": build_prompt(user_text)},
                            {"type": "image_url", "image_url": {"url": data_url}},
                        ],
                    }
                ],
                temperature=0.8,
            )
        except groq.GroqError as e:
            logger.error("generation.failed: %s", type(e).__name__, exc_info=True)
            raise GenerationFailedError() from e

        content = completion.choices[0].message.content if completion.choices else None
        if not content:
            raise GenerationFailedError()
        return content.strip()
