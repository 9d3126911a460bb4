from enum import Enum
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from app.api.auth import get_current_user
from app.db.models import User, UserExercise
from app.db.session import get_db
from app.services.exercises import list_whitelist, user_custom_exercise_id

router = APIRouter(prefix="/exercises", tags=["exercises"])


class BodyPart(str, Enum):
    chest = "chest"
    back = "back"
    legs = "legs"
    shoulders = "shoulders"
    arms = "arms"
    core = "core"
    fullbody = "fullbody"
    other = "other"


class ExerciseItem(BaseModel):
    exerciseId: str
    name: str
    bodyPart: Optional[str] = None


class ExerciseListResponse(BaseModel):
    items: list[ExerciseItem]


class CustomExerciseRequest(BaseModel):
    name: str = Field(min_length=1, max_length=128)
    bodyPart: BodyPart


@router.get("", response_model=ExerciseListResponse)
def list_exercises(user: User = Depends(get_current_user), db: Session = Depends(get_db)) -> ExerciseListResponse:
    return ExerciseListResponse(
        items=[
            ExerciseItem(exerciseId=entry.exercise_id, name=entry.name, bodyPart=entry.body_part)
            for entry in list_whitelist(db, user.id)
        ]
    )


@router.post("/custom", response_model=ExerciseItem, status_code=status.HTTP_201_CREATED)
def create_custom_exercise(
    payload: CustomExerciseRequest,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> ExerciseItem:
    name = payload.name.strip()
    existing = (
        db.query(UserExercise).filter(UserExercise.user_id == user.id, UserExercise.name == name).first()
    )
    if existing:
        raise HTTPException(status_code=409, detail="Exercise already exists")
    row = UserExercise(user_id=user.id, name=name, body_part=payload.bodyPart.value, is_active=True)
    db.add(row)
    db.commit()
    db.refresh(row)
    return ExerciseItem(exerciseId=user_custom_exercise_id(row), name=row.name, bodyPart=row.body_part)
