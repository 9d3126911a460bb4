import logging
import os
from dataclasses import dataclass
from datetime import date, datetime
from typing import Optional

from sqlalchemy import case, or_, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.core.errors import QuotaExceededError
from app.db.models import QuotaState

logger = logging.getLogger("uvicorn.error")

NUTRITION_PHOTO_FEATURE = "nutrition_photo"
TRAINING_PLAN_FEATURE = "training_plan"

AI_ANALYSIS_DAILY_LIMIT = int(os.getenv("AI_ANALYSIS_DAILY_LIMIT", "12"))
PLAN_SUGGESTION_DAILY_LIMIT = int(os.getenv("PLAN_SUGGESTION_DAILY_LIMIT", "5"))

FEATURE_LIMITS: dict[str, int] = {
    NUTRITION_PHOTO_FEATURE: AI_ANALYSIS_DAILY_LIMIT,
    TRAINING_PLAN_FEATURE: PLAN_SUGGESTION_DAILY_LIMIT,
}


@dataclass(frozen=True)
class QuotaDecision:
    feature: str
    allowed: bool
    effective_count: int
    limit: int

    @property
    def remaining(self) -> int:
        return max(0, self.limit - self.effective_count)

    def raise_if_denied(self) -> None:
        if not self.allowed:
            raise QuotaExceededError(self.feature, self.limit)


def _resolve_today(today: Optional[date]) -> date:
    # Quota windows follow the server's local calendar day.
    return today or date.today()


def _load_state(db: Session, user_id: int, feature: str) -> Optional[QuotaState]:
    return (
        db.query(QuotaState)
        .filter(QuotaState.user_id == user_id, QuotaState.feature == feature)
        .first()
    )


def effective_count(state: Optional[QuotaState], today: date) -> int:
    if state is None or state.last_reset_date is None or state.last_reset_date < today:
        return 0
    return max(0, int(state.count or 0))


def check(
    db: Session, user_id: int, feature: str, limit: int, today: Optional[date] = None
) -> QuotaDecision:
    """Evaluate the daily quota without mutating it.

    A stale ``last_reset_date`` counts as zero usage here; the reset itself is only
    written by :func:`consume`, together with the increment.
    """
    current_day = _resolve_today(today)
    count = effective_count(_load_state(db, user_id, feature), current_day)
    decision = QuotaDecision(feature=feature, allowed=count < limit, effective_count=count, limit=limit)
    if not decision.allowed:
        logger.warning("quota_denied user_id=%s feature=%s count=%s limit=%s", user_id, feature, count, limit)
    return decision


def _ensure_state(db: Session, user_id: int, feature: str) -> None:
    if _load_state(db, user_id, feature) is not None:
        return
    db.add(QuotaState(user_id=user_id, feature=feature, count=0, last_reset_date=None))
    try:
        db.commit()
    except IntegrityError:
        # Another request created the row first; the guarded update below still applies.
        db.rollback()


def consume(
    db: Session, user_id: int, feature: str, limit: int, today: Optional[date] = None
) -> int:
    """Record one successful invocation and return the new count for today.

    Reset-if-stale and increment happen in a single conditional UPDATE so
    concurrent requests cannot push the count past ``limit``.
    """
    current_day = _resolve_today(today)
    _ensure_state(db, user_id, feature)
    stale = or_(QuotaState.last_reset_date.is_(None), QuotaState.last_reset_date < current_day)
    stmt = (
        update(QuotaState)
        .where(
            QuotaState.user_id == user_id,
            QuotaState.feature == feature,
            or_(stale, QuotaState.count < limit),
        )
        .values(
            count=case((stale, 1), else_=QuotaState.count + 1),
            last_reset_date=current_day,
            updated_at=datetime.utcnow(),
        )
        .execution_options(synchronize_session=False)
    )
    result = db.execute(stmt)
    if result.rowcount == 0:
        db.rollback()
        logger.warning("quota_consume_rejected user_id=%s feature=%s limit=%s", user_id, feature, limit)
        raise QuotaExceededError(feature, limit)
    db.commit()
    state = _load_state(db, user_id, feature)
    return int(state.count) if state else 0


def quota_status(db: Session, user_id: int, today: Optional[date] = None) -> list[QuotaDecision]:
    current_day = _resolve_today(today)
    decisions = []
    for feature, limit in FEATURE_LIMITS.items():
        count = effective_count(_load_state(db, user_id, feature), current_day)
        decisions.append(QuotaDecision(feature=feature, allowed=count < limit, effective_count=count, limit=limit))
    return decisions
