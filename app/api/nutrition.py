from fastapi import APIRouter, Depends, File, UploadFile, status
from pydantic import BaseModel
from sqlalchemy.orm import Session

from app.api.auth import get_current_user
from app.api.errors import http_error
from app.core.errors import QuotaExceededError, ValidationError
from app.db.models import User
from app.db.session import get_db
from app.services.analysis_log import AnalysisLogSink, get_analysis_log_sink
from app.services.llm import GenerativeClient, get_llm_client
from app.services.nutrition import FoodItem, analyze_nutrition_photo

router = APIRouter(prefix="/diet-records", tags=["diet"])


class AnalyzePhotoResponse(BaseModel):
    foods: list[FoodItem]


@router.post("/analyze-photo", response_model=AnalyzePhotoResponse, status_code=status.HTTP_200_OK)
def analyze_photo(
    image: UploadFile = File(...),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    llm_client: GenerativeClient = Depends(get_llm_client),
    log_sink: AnalysisLogSink = Depends(get_analysis_log_sink),
) -> AnalyzePhotoResponse:
    image_bytes = image.file.read()
    try:
        foods = analyze_nutrition_photo(
            db=db,
            user_id=user.id,
            image_bytes=image_bytes,
            mime_type=image.content_type,
            llm_client=llm_client,
            log_sink=log_sink,
            source_ref=image.filename or None,
        )
    except (ValidationError, QuotaExceededError) as exc:
        raise http_error(exc)
    return AnalyzePhotoResponse(foods=foods)
