from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.orm import Session

from app.api.auth import get_current_user
from app.core.quota import quota_status
from app.db.models import User
from app.db.session import get_db

router = APIRouter(prefix="/quota", tags=["quota"])


class QuotaItem(BaseModel):
    feature: str
    used: int
    limit: int
    remaining: int


class QuotaResponse(BaseModel):
    items: list[QuotaItem]


@router.get("", response_model=QuotaResponse)
def get_quota(user: User = Depends(get_current_user), db: Session = Depends(get_db)) -> QuotaResponse:
    return QuotaResponse(
        items=[
            QuotaItem(
                feature=decision.feature,
                used=decision.effective_count,
                limit=decision.limit,
                remaining=decision.remaining,
            )
            for decision in quota_status(db, user.id)
        ]
    )
