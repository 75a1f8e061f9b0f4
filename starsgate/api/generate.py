"""
Description generation API.

POST /generate (multipart): image + userText + initData.
Only identities with a paid entitlement get through; the check runs before
the upload is inspected.
"""
import logging
from typing import Optional

from fastapi import APIRouter, File, Form, Request, UploadFile

from starsgate.core.errors import GenerationFailedError, PaymentRequiredError, ValidationError
from starsgate.features.generation.service import ALLOWED_MIME_TYPES, MAX_IMAGE_BYTES


logger = logging.getLogger(__name__)

router = APIRouter(tags=["generation"])


@router.post("/generate")
async def generate_description(
    request: Request,
    init_data: str = Form(..., alias="initData"),
    user_text: str = Form("", alias="userText"),
    image: Optional[UploadFile] = File(None),
):
    """
    Generate a product description for an uploaded photo.

    Returns:
        {"description": "..."}

    Errors:
        401: initData invalid
        402: no paid entitlement
        400: image missing, too large or of an unsupported type
        502: generation failed
    """
    result = request.app.state.gate.check(init_data)
    if not result.has_paid:
        raise PaymentRequiredError()

    if image is None:
        raise ValidationError("Изображение не загружено")
    mime_type = (image.content_type or "").lower()
    if mime_type not in ALLOWED_MIME_TYPES:
        raise ValidationError("Неподдерживаемый формат изображения")
    data = await image.read()
    if not data:
        raise ValidationError("Изображение не загружено")
    if len(data) > MAX_IMAGE_BYTES:
        raise ValidationError("Изображение слишком большое")

    generator = request.app.state.generator
    if generator is None:
        logger.error("generation.unavailable", extra={"identity": result.identity, "error_code": "generation_failed"})
        raise GenerationFailedError()

    description = await generator.generate(data, mime_type, user_text)
    logger.info("generation.completed", extra={"identity": result.identity, "action": "generate"})
    return {"description": description}
