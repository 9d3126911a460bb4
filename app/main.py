from fastapi import FastAPI

from app.api.auth import router as auth_router
from app.api.exercises import router as exercises_router
from app.api.nutrition import router as nutrition_router
from app.api.prompts import router as prompts_router
from app.api.quota import router as quota_router
from app.api.workout_plans import router as workout_plans_router
from app.db.session import SessionLocal, create_tables
from app.services.exercises import seed_exercises
from app.services.templates import seed_default_templates

app = FastAPI(title="FitLog AI Analysis")


@app.on_event("startup")
def on_startup() -> None:
    create_tables()
    db = SessionLocal()
    try:
        seed_exercises(db)
        seed_default_templates(db)
    finally:
        db.close()


@app.get("/health")
def health() -> dict[str, str]:
    return {"status": "ok"}


@app.get("/api")
def api_root() -> dict[str, str]:
    return {"service": "FitLog AI Analysis API", "status": "ok"}


app.include_router(auth_router)
app.include_router(nutrition_router)
app.include_router(workout_plans_router)
app.include_router(prompts_router)
app.include_router(quota_router)
app.include_router(exercises_router)
