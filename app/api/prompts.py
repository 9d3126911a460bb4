import logging
from datetime import datetime

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from app.api.auth import get_current_user, require_prompt_admin
from app.api.errors import http_error
from app.core.errors import ConflictError, NotFoundError, ValidationError
from app.db.models import InstructionTemplate, User
from app.db.session import get_db
from app.services import templates

logger = logging.getLogger("uvicorn.error")

router = APIRouter(prefix="/ai-prompts", tags=["ai-prompts"])


class PromptItem(BaseModel):
    id: int
    name: str
    version: str
    text: str
    created_at: datetime


class PromptSeedRequest(BaseModel):
    name: str = Field(min_length=1, max_length=100)
    text: str = Field(min_length=10, max_length=10000)


class PromptSeedResponse(BaseModel):
    message: str
    prompt: PromptItem


class PromptVersionListResponse(BaseModel):
    items: list[PromptItem]


def _to_item(row: InstructionTemplate) -> PromptItem:
    return PromptItem(id=row.id, name=row.name, version=row.version, text=row.text, created_at=row.created_at)


@router.post("/seed", response_model=PromptSeedResponse, status_code=status.HTTP_200_OK)
def seed_prompt(
    payload: PromptSeedRequest,
    admin: User = Depends(require_prompt_admin),
    db: Session = Depends(get_db),
) -> PromptSeedResponse:
    try:
        row = templates.create_or_update(db, payload.name.strip(), payload.text)
    except (ConflictError, ValidationError) as exc:
        raise http_error(exc)
    logger.info("ai_prompt_seed_request name=%s version=%s admin_id=%s", row.name, row.version, admin.id)
    return PromptSeedResponse(
        message=f"Prompt '{row.name}' seeded. Version is now '{row.version}'.",
        prompt=_to_item(row),
    )


@router.get("/{name}", response_model=PromptItem)
def get_latest_prompt(
    name: str,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> PromptItem:
    _ = user
    try:
        return _to_item(templates.get_latest(db, name))
    except NotFoundError as exc:
        raise http_error(exc)


@router.get("/{name}/versions", response_model=PromptVersionListResponse)
def list_prompt_versions(
    name: str,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> PromptVersionListResponse:
    _ = user
    return PromptVersionListResponse(items=[_to_item(row) for row in templates.list_versions(db, name)])


@router.get("/{name}/versions/{version}", response_model=PromptItem)
def get_prompt_version(
    name: str,
    version: str,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> PromptItem:
    _ = user
    try:
        return _to_item(templates.get_by_version(db, name, version))
    except NotFoundError as exc:
        raise http_error(exc)
