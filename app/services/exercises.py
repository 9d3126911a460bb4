import logging

from sqlalchemy.orm import Session

from app.core.plan_extraction import WhitelistEntry
from app.db.models import Exercise, UserExercise

logger = logging.getLogger("uvicorn.error")

EXERCISE_SEEDS: list[tuple[str, str]] = [
    ("Bench Press", "chest"),
    ("Incline Dumbbell Press", "chest"),
    ("Dumbbell Flyes", "chest"),
    ("Push-ups", "chest"),
    ("Squat", "legs"),
    ("Romanian Deadlift", "legs"),
    ("Hip Thrust", "legs"),
    ("Lunges", "legs"),
    ("Leg Press", "legs"),
    ("Calf Raises", "legs"),
    ("Deadlift", "back"),
    ("Barbell Row", "back"),
    ("Pull-up", "back"),
    ("Lat Pulldown", "back"),
    ("T-Bar Row", "back"),
    ("Overhead Press", "shoulders"),
    ("Lateral Raise", "shoulders"),
    ("Rear Delt Flyes", "shoulders"),
    ("Front Raise", "shoulders"),
    ("Shrugs", "shoulders"),
    ("Biceps Curl", "arms"),
    ("Hammer Curl", "arms"),
    ("Preacher Curl", "arms"),
    ("Triceps Pushdown", "arms"),
    ("Overhead Triceps Extension", "arms"),
    ("Close-Grip Bench Press", "arms"),
    ("Dips", "arms"),
    ("Plank", "core"),
    ("Crunches", "core"),
    ("Russian Twists", "core"),
    ("Leg Raises", "core"),
    ("Mountain Climbers", "core"),
    ("Burpees", "fullbody"),
    ("Thrusters", "fullbody"),
    ("Clean and Press", "fullbody"),
]


def seed_exercises(db: Session) -> int:
    existing = {name for (name,) in db.query(Exercise.name).all()}
    created = 0
    for name, body_part in EXERCISE_SEEDS:
        if name in existing:
            continue
        db.add(Exercise(name=name, body_part=body_part, is_active=True))
        created += 1
    if created:
        db.commit()
        logger.info("exercise_seed_created count=%s", created)
    return created


def user_custom_exercise_id(row: UserExercise) -> str:
    return f"user-{row.id}"


def list_whitelist(db: Session, user_id: int) -> list[WhitelistEntry]:
    """Active catalogue exercises followed by the user's own active exercises."""
    catalogue = (
        db.query(Exercise).filter(Exercise.is_active.is_(True)).order_by(Exercise.id.asc()).all()
    )
    custom = (
        db.query(UserExercise)
        .filter(UserExercise.user_id == user_id, UserExercise.is_active.is_(True))
        .order_by(UserExercise.id.asc())
        .all()
    )
    entries = [WhitelistEntry(exercise_id=str(row.id), name=row.name, body_part=row.body_part) for row in catalogue]
    entries.extend(
        WhitelistEntry(exercise_id=user_custom_exercise_id(row), name=row.name, body_part=row.body_part)
        for row in custom
    )
    return entries
