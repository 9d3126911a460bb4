"""Turn arbitrary AI plan output into schedulable, whitelist-checked plan proposals.

The model is free to answer in several shapes, so extraction walks an ordered
list of shape matchers and takes the first that fits. Whatever survives
whitelist filtering is re-dated across the requested window; when nothing
survives, a deterministic push/pull/legs/upper split is generated instead.
"""

import logging
import math
from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Any, Callable, Optional

from pydantic import BaseModel

from app.core.errors import ValidationError
from app.core.json_repair import parse_lenient_json
from app.core.numbers import to_number

logger = logging.getLogger("uvicorn.error")

MIN_EXERCISES_PER_PLAN = 3
MAX_EXERCISES_PER_PLAN = 6
DEFAULT_SET_COUNT = 3
DEFAULT_REPS = 10
DEFAULT_REST_SECONDS = 90
MAX_PLAN_NAME_LENGTH = 100

PLAN_COLLECTION_KEYS = (
    "workoutPlans",
    "workout_plans",
    "trainingPlans",
    "training_plans",
    "schedule",
    "sessions",
    "days",
)

FALLBACK_SPLIT: tuple[tuple[str, tuple[str, ...]], ...] = (
    ("Push", ("chest", "shoulders", "arms")),
    ("Pull", ("back", "arms")),
    ("Legs", ("legs", "core")),
    ("Upper", ("chest", "back", "shoulders")),
)

SOURCE_AI = "ai"
SOURCE_FALLBACK = "fallback"


class PlanSet(BaseModel):
    weight: float
    reps: int
    restSeconds: int


class PlanExercise(BaseModel):
    exerciseName: str
    exerciseId: str
    bodyPart: Optional[str] = None
    sets: list[PlanSet]


class PlanProposal(BaseModel):
    name: str
    plannedDate: date
    exercises: list[PlanExercise]


@dataclass(frozen=True)
class WhitelistEntry:
    exercise_id: str
    name: str
    body_part: Optional[str] = None


@dataclass
class PlanCandidate:
    name: str
    exercises: list[PlanExercise]
    date_hint: Optional[date] = None


@dataclass
class PlanBuild:
    plans: list[PlanProposal] = field(default_factory=list)
    source: str = SOURCE_AI


def _is_plan_shaped(value: Any) -> bool:
    return isinstance(value, dict) and "exercises" in value


def _plan_items(values: list) -> list[dict]:
    return [item for item in values if _is_plan_shaped(item)]


def _match_plans_key(value: Any) -> Optional[list[dict]]:
    if isinstance(value, dict) and isinstance(value.get("plans"), list):
        return _plan_items(value["plans"])
    return None


def _match_single_plan(value: Any) -> Optional[list[dict]]:
    if _is_plan_shaped(value):
        return [value]
    return None


def _match_plan_list(value: Any) -> Optional[list[dict]]:
    if not isinstance(value, list):
        return None
    plans: list[dict] = []
    for item in value:
        if _is_plan_shaped(item):
            plans.append(item)
        elif isinstance(item, dict) and isinstance(item.get("plans"), list):
            plans.extend(_plan_items(item["plans"]))
    return plans


def _match_alternate_key(value: Any) -> Optional[list[dict]]:
    if not isinstance(value, dict):
        return None
    for key in PLAN_COLLECTION_KEYS:
        nested = value.get(key)
        if isinstance(nested, list):
            return _plan_items(nested)
    return None


SHAPE_MATCHERS: tuple[tuple[str, Callable[[Any], Optional[list[dict]]]], ...] = (
    ("plans_key", _match_plans_key),
    ("single_plan", _match_single_plan),
    ("plan_list", _match_plan_list),
    ("alternate_key", _match_alternate_key),
)


def extract_plan_candidates(value: Any) -> list[dict]:
    for shape, matcher in SHAPE_MATCHERS:
        plans = matcher(value)
        if plans is not None:
            logger.info("plan_shape_matched shape=%s plans=%s", shape, len(plans))
            return plans
    return []


def default_sets() -> list[PlanSet]:
    return [
        PlanSet(weight=0, reps=DEFAULT_REPS, restSeconds=DEFAULT_REST_SECONDS)
        for _ in range(DEFAULT_SET_COUNT)
    ]


def normalize_set(raw: Any) -> PlanSet:
    data = raw if isinstance(raw, dict) else {}
    weight = max(0.0, float(to_number(data.get("weight"))))
    reps = int(to_number(data.get("reps")))
    if reps < 1:
        reps = DEFAULT_REPS
    rest_raw = data.get("restSeconds", data.get("rest_seconds"))
    rest_seconds = DEFAULT_REST_SECONDS if rest_raw is None else max(0, int(to_number(rest_raw)))
    return PlanSet(weight=weight, reps=reps, restSeconds=rest_seconds)


def _exercise_name(raw: Any) -> str:
    if isinstance(raw, str):
        return raw.strip()
    if isinstance(raw, dict):
        name = raw.get("exerciseName") or raw.get("name")
        if isinstance(name, str):
            return name.strip()
    return ""


def normalize_exercise(raw: Any, index: dict[str, WhitelistEntry]) -> Optional[PlanExercise]:
    entry = index.get(_exercise_name(raw))
    if entry is None:
        return None
    raw_sets = raw.get("sets") if isinstance(raw, dict) else None
    if isinstance(raw_sets, list) and raw_sets:
        sets = [normalize_set(item) for item in raw_sets]
    else:
        sets = default_sets()
    return PlanExercise(
        exerciseName=entry.name,
        exerciseId=entry.exercise_id,
        bodyPart=entry.body_part,
        sets=sets,
    )


def _parse_date_hint(raw: Any) -> Optional[date]:
    if isinstance(raw, date):
        return raw
    if not isinstance(raw, str) or len(raw) < 10:
        return None
    try:
        return date.fromisoformat(raw[:10])
    except ValueError:
        return None


def _clamp(day: date, start: date, end: date) -> date:
    return min(max(day, start), end)


def normalize_plan(
    raw: dict, index: dict[str, WhitelistEntry], position: int, start: date, end: date
) -> Optional[PlanCandidate]:
    raw_exercises = raw.get("exercises")
    if not isinstance(raw_exercises, list):
        return None
    exercises = [
        exercise
        for exercise in (normalize_exercise(item, index) for item in raw_exercises)
        if exercise is not None
    ]
    if len(exercises) < MIN_EXERCISES_PER_PLAN:
        return None
    name = raw.get("name")
    if not isinstance(name, str) or not name.strip():
        name = f"Workout {position + 1}"
    hint = _parse_date_hint(raw.get("plannedDate") or raw.get("date"))
    return PlanCandidate(
        name=name.strip()[:MAX_PLAN_NAME_LENGTH],
        exercises=exercises[:MAX_EXERCISES_PER_PLAN],
        date_hint=_clamp(hint, start, end) if hint else None,
    )


def generate_fallback_plans(whitelist: list[WhitelistEntry], count: int) -> list[PlanCandidate]:
    if not whitelist or count <= 0:
        return []
    plans: list[PlanCandidate] = []
    for i in range(count):
        label, body_parts = FALLBACK_SPLIT[i % len(FALLBACK_SPLIT)]
        cycle = i // len(FALLBACK_SPLIT)
        primary = [entry for entry in whitelist if (entry.body_part or "").lower() in body_parts]
        if primary:
            # Later cycles through the split start further into the pool for some variety.
            offset = (cycle * MIN_EXERCISES_PER_PLAN) % len(primary)
            primary = primary[offset:] + primary[:offset]
        chosen = primary[:MAX_EXERCISES_PER_PLAN]
        if len(chosen) < MIN_EXERCISES_PER_PLAN:
            chosen_ids = {entry.exercise_id for entry in chosen}
            others = [entry for entry in whitelist if entry.exercise_id not in chosen_ids]
            chosen = chosen + others[: MIN_EXERCISES_PER_PLAN - len(chosen)]
        plans.append(
            PlanCandidate(
                name=f"{label} Day" if cycle == 0 else f"{label} Day {cycle + 1}",
                exercises=[
                    PlanExercise(
                        exerciseName=entry.name,
                        exerciseId=entry.exercise_id,
                        bodyPart=entry.body_part,
                        sets=default_sets(),
                    )
                    for entry in chosen
                ],
            )
        )
    return plans


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def redistribute_dates(candidates: list[PlanCandidate], start: date, end: date) -> list[PlanProposal]:
    """Spread plans evenly over ``[start, end]``; suggested dates only decide the order."""
    window_days = (end - start).days
    ordered = sorted(
        candidates,
        key=lambda candidate: (candidate.date_hint is None, candidate.date_hint or start),
    )
    total = len(ordered)
    proposals: list[PlanProposal] = []
    for i, candidate in enumerate(ordered):
        offset = _round_half_up(i / max(total - 1, 1) * window_days)
        offset = min(max(offset, 0), window_days)
        proposals.append(
            PlanProposal(
                name=candidate.name,
                plannedDate=start + timedelta(days=offset),
                exercises=candidate.exercises,
            )
        )
    return proposals


def target_plan_count(days: int, start: date, end: date) -> int:
    return max(1, min(days, (end - start).days + 1))


def build_plan_proposals(
    raw: Any, whitelist: list[WhitelistEntry], start: date, end: date, days: int
) -> PlanBuild:
    if end < start:
        raise ValidationError("Plan window end must not be before its start")
    if not whitelist:
        return PlanBuild(plans=[], source=SOURCE_FALLBACK)

    value = parse_lenient_json(raw, default=None) if isinstance(raw, str) else raw
    index: dict[str, WhitelistEntry] = {}
    for entry in whitelist:
        index.setdefault(entry.name.strip(), entry)

    target = target_plan_count(days, start, end)
    candidates = [
        candidate
        for candidate in (
            normalize_plan(item, index, position, start, end)
            for position, item in enumerate(extract_plan_candidates(value))
        )
        if candidate is not None
    ]
    source = SOURCE_AI
    if not candidates:
        logger.info("plan_fallback_generated target=%s whitelist=%s", target, len(whitelist))
        candidates = generate_fallback_plans(whitelist, target)
        source = SOURCE_FALLBACK
    return PlanBuild(plans=redistribute_dates(candidates[:target], start, end), source=source)
