import json
import logging
import os
from datetime import date
from typing import Optional

from sqlalchemy.orm import Session

from app.core import quota
from app.core.errors import ExternalServiceError, QuotaExceededError, ValidationError
from app.core.plan_extraction import SOURCE_FALLBACK, PlanBuild, WhitelistEntry, build_plan_proposals
from app.services.analysis_log import STATUS_ERROR, STATUS_SUCCESS, AnalysisLogEntry, AnalysisLogSink
from app.services.exercises import list_whitelist
from app.services.llm import AI_MODEL, GenerativeClient
from app.services.templates import WORKOUT_PLAN_TEMPLATE, resolve_template

logger = logging.getLogger("uvicorn.error")

PLAN_WINDOW_MAX_DAYS = int(os.getenv("PLAN_WINDOW_MAX_DAYS", "31"))
PRIOR_ADVICE_MAX_CHARS = 2000


def validate_window(start: date, end: date, days_per_week: int, today: date) -> None:
    if start < today:
        raise ValidationError("startDate must be today or later")
    if end < start:
        raise ValidationError("endDate must not be before startDate")
    if (end - start).days + 1 > PLAN_WINDOW_MAX_DAYS:
        raise ValidationError(f"Plan window cannot exceed {PLAN_WINDOW_MAX_DAYS} days")
    if days_per_week < 1 or days_per_week > 7:
        raise ValidationError("daysPerWeek must be between 1 and 7")


def build_plan_prompt(
    template_text: str,
    whitelist: list[WhitelistEntry],
    start: date,
    end: date,
    days_per_week: int,
    prior_advice: Optional[str],
) -> str:
    request = {
        "window": {"startDate": start.isoformat(), "endDate": end.isoformat()},
        "sessions_requested": days_per_week,
        "available_exercises": [{"name": entry.name, "bodyPart": entry.body_part} for entry in whitelist],
        "prior_advice": (prior_advice or "").strip()[:PRIOR_ADVICE_MAX_CHARS] or None,
    }
    return f"{template_text}\n\n{json.dumps(request, ensure_ascii=False)}"


def suggest_training_plans(
    db: Session,
    user_id: int,
    start: date,
    end: date,
    days_per_week: int,
    llm_client: GenerativeClient,
    log_sink: AnalysisLogSink,
    prior_advice: Optional[str] = None,
    today: Optional[date] = None,
) -> PlanBuild:
    """Propose dated training sessions for ``[start, end]``.

    Only a malformed request raises. An exhausted quota, an AI failure or an
    unusable AI answer all end in the deterministic fallback plans.
    """
    current_day = today or date.today()
    validate_window(start, end, days_per_week, current_day)

    whitelist = list_whitelist(db, user_id)
    if not whitelist:
        logger.warning("plan_whitelist_empty user_id=%s", user_id)
        return PlanBuild(plans=[], source=SOURCE_FALLBACK)

    limit = quota.PLAN_SUGGESTION_DAILY_LIMIT
    decision = quota.check(db, user_id, quota.TRAINING_PLAN_FEATURE, limit, today=current_day)
    if not decision.allowed:
        return build_plan_proposals(None, whitelist, start, end, days_per_week)

    template = resolve_template(db, WORKOUT_PLAN_TEMPLATE)
    base_entry = dict(
        user_id=user_id,
        feature=quota.TRAINING_PLAN_FEATURE,
        template_id=template.id,
        template_version=template.version,
    )
    prompt = build_plan_prompt(template.text, whitelist, start, end, days_per_week, prior_advice)
    try:
        result = llm_client.generate(prompt)
    except ExternalServiceError as exc:
        logger.exception("plan_llm_request_error user_id=%s detail=%s", user_id, str(exc))
        log_sink.record(
            AnalysisLogEntry(**base_entry, model=exc.model, status=STATUS_ERROR, error_message=str(exc))
        )
        return build_plan_proposals(None, whitelist, start, end, days_per_week)
    except Exception as exc:
        logger.exception("plan_unhandled_error user_id=%s detail=%s", user_id, str(exc))
        log_sink.record(
            AnalysisLogEntry(**base_entry, model=AI_MODEL, status=STATUS_ERROR, error_message=str(exc))
        )
        return build_plan_proposals(None, whitelist, start, end, days_per_week)

    build = build_plan_proposals(result.text, whitelist, start, end, days_per_week)
    log_sink.record(
        AnalysisLogEntry(
            **base_entry,
            model=result.model,
            status=STATUS_SUCCESS,
            raw_response=result.text,
            parsed_result={
                "source": build.source,
                "plans": [plan.model_dump(mode="json") for plan in build.plans],
            },
            tokens_in=result.tokens_in,
            tokens_out=result.tokens_out,
        )
    )
    try:
        quota.consume(db, user_id, quota.TRAINING_PLAN_FEATURE, limit, today=current_day)
    except QuotaExceededError:
        logger.warning("plan_quota_race user_id=%s", user_id)
    logger.info("plan_suggestion_done user_id=%s source=%s plans=%s", user_id, build.source, len(build.plans))
    return build
