from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from app.api.auth import get_current_user
from app.api.errors import http_error
from app.core.errors import ValidationError
from app.core.plan_extraction import PlanProposal
from app.db.models import User
from app.db.session import get_db
from app.services.analysis_log import AnalysisLogSink, get_analysis_log_sink
from app.services.llm import GenerativeClient, get_llm_client
from app.services.training_plans import suggest_training_plans

router = APIRouter(prefix="/workout-plans", tags=["workout-plans"])


class SuggestPlansRequest(BaseModel):
    startDate: date
    endDate: date
    daysPerWeek: int = Field(default=3, ge=1, le=7)
    priorAdvice: Optional[str] = Field(default=None, max_length=4000)


class SuggestPlansResponse(BaseModel):
    plans: list[PlanProposal]
    source: str


@router.post("/suggest", response_model=SuggestPlansResponse, status_code=status.HTTP_200_OK)
def suggest_plans(
    payload: SuggestPlansRequest,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    llm_client: GenerativeClient = Depends(get_llm_client),
    log_sink: AnalysisLogSink = Depends(get_analysis_log_sink),
) -> SuggestPlansResponse:
    try:
        build = suggest_training_plans(
            db=db,
            user_id=user.id,
            start=payload.startDate,
            end=payload.endDate,
            days_per_week=payload.daysPerWeek,
            llm_client=llm_client,
            log_sink=log_sink,
            prior_advice=payload.priorAdvice,
        )
    except ValidationError as exc:
        raise http_error(exc)
    return SuggestPlansResponse(plans=build.plans, source=build.source)
