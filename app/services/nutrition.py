import logging
import os
from datetime import date
from typing import Any, Optional

from pydantic import BaseModel
from sqlalchemy.orm import Session

from app.core import quota
from app.core.errors import ExternalServiceError, QuotaExceededError, ValidationError
from app.core.json_repair import parse_nutrition_json
from app.core.numbers import to_number
from app.services.analysis_log import STATUS_ERROR, STATUS_SUCCESS, AnalysisLogEntry, AnalysisLogSink
from app.services.images import prepare_image
from app.services.llm import AI_MODEL, GenerativeClient
from app.services.templates import DIET_ANALYSIS_TEMPLATE, resolve_template

logger = logging.getLogger("uvicorn.error")

ANALYZE_IMAGE_MAX_BYTES = int(os.getenv("ANALYZE_IMAGE_MAX_BYTES", str(8 * 1024 * 1024)))

NUTRIENT_FIELDS = ("calories", "protein", "carbohydrates", "fat", "fiber", "sugar", "sodium")


class FoodItem(BaseModel):
    foodName: str
    description: str = ""
    servingSize: Optional[str] = None
    calories: float = 0
    protein: float = 0
    carbohydrates: float = 0
    fat: float = 0
    fiber: float = 0
    sugar: float = 0
    sodium: float = 0


class NutritionTotals(BaseModel):
    totalCalories: float = 0
    totalProtein: float = 0
    totalCarbohydrates: float = 0
    totalFat: float = 0
    totalFiber: float = 0
    totalSugar: float = 0
    totalSodium: float = 0


def normalize_food_items(raw_foods: Any) -> list[FoodItem]:
    if not isinstance(raw_foods, list):
        return []
    items: list[FoodItem] = []
    for raw in raw_foods:
        if not isinstance(raw, dict):
            continue
        name = raw.get("foodName") or raw.get("name")
        if not isinstance(name, str) or not name.strip():
            continue
        serving = raw.get("servingSize")
        items.append(
            FoodItem(
                foodName=name.strip(),
                description=str(raw.get("description") or ""),
                servingSize=str(serving) if serving is not None else None,
                **{key: to_number(raw.get(key)) for key in NUTRIENT_FIELDS},
            )
        )
    return items


def calculate_totals(foods: list[FoodItem]) -> NutritionTotals:
    totals = NutritionTotals()
    for food in foods:
        totals.totalCalories += food.calories
        totals.totalProtein += food.protein
        totals.totalCarbohydrates += food.carbohydrates
        totals.totalFat += food.fat
        totals.totalFiber += food.fiber
        totals.totalSugar += food.sugar
        totals.totalSodium += food.sodium
    return totals


def validate_upload(image_bytes: bytes, mime_type: Optional[str]) -> None:
    if not mime_type or not mime_type.startswith("image/"):
        raise ValidationError("Only image uploads are supported.")
    if not image_bytes:
        raise ValidationError("Uploaded image is empty.")
    if len(image_bytes) > ANALYZE_IMAGE_MAX_BYTES:
        raise ValidationError(f"Image too large. Max size is {ANALYZE_IMAGE_MAX_BYTES // (1024 * 1024)}MB.")


def analyze_nutrition_photo(
    db: Session,
    user_id: int,
    image_bytes: bytes,
    mime_type: Optional[str],
    llm_client: GenerativeClient,
    log_sink: AnalysisLogSink,
    source_ref: Optional[str] = None,
    today: Optional[date] = None,
) -> list[FoodItem]:
    """Estimate nutrition for a meal photo.

    Raises ``ValidationError`` for a bad upload and ``QuotaExceededError`` when the
    daily limit is used up; both happen before the AI is called. Any AI failure
    yields an empty list.
    """
    validate_upload(image_bytes, mime_type)
    limit = quota.AI_ANALYSIS_DAILY_LIMIT
    quota.check(db, user_id, quota.NUTRITION_PHOTO_FEATURE, limit, today=today).raise_if_denied()

    prepared = prepare_image(image_bytes, mime_type or "image/jpeg")
    template = resolve_template(db, DIET_ANALYSIS_TEMPLATE)
    logger.info("nutrition_analysis_start user_id=%s template=%s", user_id, template.version)

    base_entry = dict(
        user_id=user_id,
        feature=quota.NUTRITION_PHOTO_FEATURE,
        template_id=template.id,
        template_version=template.version,
        source_ref=source_ref,
    )
    try:
        result = llm_client.generate(template.text, image_bytes=prepared.data, image_mime_type=prepared.mime_type)
    except ExternalServiceError as exc:
        logger.exception("nutrition_llm_request_error user_id=%s detail=%s", user_id, str(exc))
        log_sink.record(
            AnalysisLogEntry(**base_entry, model=exc.model, status=STATUS_ERROR, error_message=str(exc))
        )
        return []
    except Exception as exc:
        logger.exception("nutrition_unhandled_error user_id=%s detail=%s", user_id, str(exc))
        log_sink.record(
            AnalysisLogEntry(**base_entry, model=AI_MODEL, status=STATUS_ERROR, error_message=str(exc))
        )
        return []

    parsed = parse_nutrition_json(result.text)
    foods = normalize_food_items(parsed.get("foods"))
    if "foods" not in parsed:
        logger.warning("nutrition_response_missing_foods user_id=%s", user_id)
    log_sink.record(
        AnalysisLogEntry(
            **base_entry,
            model=result.model,
            status=STATUS_SUCCESS,
            raw_response=result.text,
            parsed_result=parsed,
            tokens_in=result.tokens_in,
            tokens_out=result.tokens_out,
        )
    )
    try:
        quota.consume(db, user_id, quota.NUTRITION_PHOTO_FEATURE, limit, today=today)
    except QuotaExceededError:
        # A concurrent request took the last slot while this one was in flight.
        logger.warning("nutrition_quota_race user_id=%s", user_id)
    logger.info("nutrition_analysis_done user_id=%s foods=%s", user_id, len(foods))
    return foods
