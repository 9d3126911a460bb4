import logging
import re
from dataclasses import dataclass
from functools import cmp_to_key
from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.core.errors import ConflictError, NotFoundError, ValidationError
from app.db.models import InstructionTemplate

logger = logging.getLogger("uvicorn.error")

INITIAL_VERSION = "1.0.0"
DIET_ANALYSIS_TEMPLATE = "diet-analysis"
WORKOUT_PLAN_TEMPLATE = "workout-plan-suggestion"

_SEMVER = re.compile(r"^(\d+)\.(\d+)\.(\d+)$")

DEFAULT_TEMPLATES: dict[str, str] = {
    DIET_ANALYSIS_TEMPLATE: (
        "You are a nutrition analyst. Identify every food item visible in the photo and estimate its "
        "nutrition. Respond with JSON only, no markdown, in this shape: "
        '{"foods": [{"foodName": string, "description": string, "servingSize": string, '
        '"calories": number, "protein": number, "carbohydrates": number, "fat": number, '
        '"fiber": number, "sugar": number, "sodium": number}]}. '
        "Use kcal for calories, grams for macros and milligrams for sodium, as plain numbers without units. "
        'If no food is visible return {"foods": []}.'
    ),
    WORKOUT_PLAN_TEMPLATE: (
        "You are a strength coach. Build training sessions for the user using ONLY exercises from the "
        "provided list, spelled exactly as listed. Each session needs 3 to 6 exercises. Respond with JSON "
        'only, no markdown, in this shape: {"plans": [{"name": string, "plannedDate": "YYYY-MM-DD", '
        '"exercises": [{"exerciseName": string, "sets": [{"weight": number, "reps": number, '
        '"restSeconds": number}]}]}]}.'
    ),
}


def parse_semver(version: str) -> Optional[tuple[int, int, int]]:
    match = _SEMVER.match((version or "").strip())
    if not match:
        return None
    return int(match.group(1)), int(match.group(2)), int(match.group(3))


def compare_versions(left: str, right: str) -> int:
    """Semantic comparison; pairs with a malformed side fall back to plain string order."""
    left_parsed = parse_semver(left)
    right_parsed = parse_semver(right)
    if left_parsed is not None and right_parsed is not None:
        return (left_parsed > right_parsed) - (left_parsed < right_parsed)
    return (left > right) - (left < right)


def bump_patch(version: str) -> str:
    parts = (version or "").strip().split(".")
    if len(parts) > 3 or not all(part.isdigit() for part in parts):
        raise ValidationError(f"Cannot derive next version from '{version}'")
    numbers = [int(part) for part in parts] + [0] * (3 - len(parts))
    numbers[2] += 1
    return ".".join(str(number) for number in numbers)


def list_versions(db: Session, name: str) -> list[InstructionTemplate]:
    rows = db.query(InstructionTemplate).filter(InstructionTemplate.name == name).all()
    return sorted(rows, key=cmp_to_key(lambda a, b: compare_versions(b.version, a.version)))


def get_latest(db: Session, name: str) -> InstructionTemplate:
    rows = list_versions(db, name)
    if not rows:
        raise NotFoundError(f"No AI prompt named '{name}'")
    return rows[0]


def get_by_version(db: Session, name: str, version: str) -> InstructionTemplate:
    row = (
        db.query(InstructionTemplate)
        .filter(InstructionTemplate.name == name, InstructionTemplate.version == version)
        .first()
    )
    if not row:
        raise NotFoundError(f"No AI prompt named '{name}' with version '{version}'")
    return row


def _insert(db: Session, name: str, version: str, text: str) -> InstructionTemplate:
    row = InstructionTemplate(name=name, version=version, text=text)
    db.add(row)
    try:
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        raise ConflictError(
            f"AI prompt '{name}' version '{version}' already exists; another writer advanced it"
        ) from exc
    db.refresh(row)
    return row


def create_or_update(db: Session, name: str, text: str) -> InstructionTemplate:
    try:
        latest = get_latest(db, name)
    except NotFoundError:
        row = _insert(db, name, INITIAL_VERSION, text)
        logger.info("ai_prompt_created name=%s version=%s", name, row.version)
        return row

    if latest.text == text:
        logger.info("ai_prompt_unchanged name=%s version=%s", name, latest.version)
        return latest

    next_version = bump_patch(latest.version)
    row = _insert(db, name, next_version, text)
    logger.info("ai_prompt_versioned name=%s from=%s to=%s", name, latest.version, next_version)
    return row


def seed_default_templates(db: Session) -> None:
    for name, text in DEFAULT_TEMPLATES.items():
        try:
            get_latest(db, name)
        except NotFoundError:
            try:
                create_or_update(db, name, text)
            except ConflictError:
                logger.warning("ai_prompt_seed_conflict name=%s", name)


@dataclass(frozen=True)
class ResolvedTemplate:
    id: Optional[int]
    version: Optional[str]
    text: str


def resolve_template(db: Session, name: str) -> ResolvedTemplate:
    """Latest stored version, or the built-in text when the name was never seeded."""
    try:
        row = get_latest(db, name)
    except NotFoundError:
        logger.warning("ai_prompt_missing name=%s using_builtin=true", name)
        return ResolvedTemplate(id=None, version=None, text=DEFAULT_TEMPLATES.get(name, ""))
    return ResolvedTemplate(id=row.id, version=row.version, text=row.text)
