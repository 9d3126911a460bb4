from datetime import date, timedelta

import pytest
from conftest import FakeScenario

from app.core import quota
from app.core.errors import ValidationError
from app.core.plan_extraction import SOURCE_AI, SOURCE_FALLBACK, WhitelistEntry
from app.db.models import QuotaState
from app.services.analysis_log import STATUS_ERROR, STATUS_SUCCESS
from app.services.training_plans import build_plan_prompt, suggest_training_plans, validate_window

TODAY = date(2026, 6, 1)
END = TODAY + timedelta(days=6)


def _suggest(db_session, user, fake, log_sink, days_per_week=3, start=TODAY, end=END, prior_advice=None):
    return suggest_training_plans(
        db=db_session,
        user_id=user.id,
        start=start,
        end=end,
        days_per_week=days_per_week,
        llm_client=fake,
        log_sink=log_sink,
        prior_advice=prior_advice,
        today=TODAY,
    )


def _used(db_session, user) -> int:
    return quota.check(
        db_session, user.id, quota.TRAINING_PLAN_FEATURE, quota.PLAN_SUGGESTION_DAILY_LIMIT, today=TODAY
    ).effective_count


def test_ai_plans_are_whitelisted_and_dated(db_session, create_user, fake_llm_factory, log_sink) -> None:
    user = create_user()
    fake = fake_llm_factory(FakeScenario.PLANS_OK)

    build = _suggest(db_session, user, fake, log_sink, prior_advice="Go easy on the lower back.")

    assert build.source == SOURCE_AI
    assert [plan.name for plan in build.plans] == ["Push Strength", "Pull Strength"]
    assert [plan.plannedDate for plan in build.plans] == [TODAY, END]
    pull = build.plans[1]
    assert [exercise.exerciseName for exercise in pull.exercises] == [
        "Deadlift",
        "Barbell Row",
        "Pull-up",
        "Lat Pulldown",
    ]
    deadlift_sets = pull.exercises[0].sets
    assert [(s.weight, s.reps, s.restSeconds) for s in deadlift_sets] == [(100, 5, 180), (105, 5, 180)]
    assert [(s.weight, s.reps, s.restSeconds) for s in pull.exercises[2].sets] == [(0, 10, 90)]
    assert "Go easy on the lower back." in fake.calls[0]["prompt"]
    assert log_sink.entries[0].status == STATUS_SUCCESS
    assert log_sink.entries[0].parsed_result["source"] == SOURCE_AI
    assert _used(db_session, user) == 1


def test_alternate_shape_with_repairs(db_session, create_user, fake_llm_factory, log_sink) -> None:
    user = create_user()
    build = _suggest(db_session, user, fake_llm_factory(FakeScenario.PLANS_ALTERNATE_KEY), log_sink, days_per_week=2)
    assert build.source == SOURCE_AI
    assert [plan.name for plan in build.plans] == ["Leg Day", "Workout 2"]
    assert len(build.plans[0].exercises) == 4


def test_unusable_answer_falls_back(db_session, create_user, fake_llm_factory, log_sink) -> None:
    user = create_user()
    build = _suggest(db_session, user, fake_llm_factory(FakeScenario.PLANS_UNKNOWN_EXERCISES), log_sink)
    assert build.source == SOURCE_FALLBACK
    assert [plan.name for plan in build.plans] == ["Push Day", "Pull Day", "Legs Day"]
    assert [plan.plannedDate for plan in build.plans] == [TODAY, TODAY + timedelta(days=3), END]
    assert log_sink.entries[0].parsed_result["source"] == SOURCE_FALLBACK
    assert _used(db_session, user) == 1


def test_ai_failure_falls_back_without_consuming_quota(
    db_session, create_user, fake_llm_factory, log_sink
) -> None:
    user = create_user()
    build = _suggest(db_session, user, fake_llm_factory(FakeScenario.TIMEOUT), log_sink)
    assert build.source == SOURCE_FALLBACK
    assert len(build.plans) == 3
    assert log_sink.entries[0].status == STATUS_ERROR
    assert _used(db_session, user) == 0


def test_exhausted_quota_skips_ai(db_session, create_user, fake_llm_factory, log_sink) -> None:
    user = create_user()
    db_session.add(
        QuotaState(
            user_id=user.id,
            feature=quota.TRAINING_PLAN_FEATURE,
            count=quota.PLAN_SUGGESTION_DAILY_LIMIT,
            last_reset_date=TODAY,
        )
    )
    db_session.commit()
    fake = fake_llm_factory(FakeScenario.PLANS_OK)

    build = _suggest(db_session, user, fake, log_sink)

    assert build.source == SOURCE_FALLBACK
    assert len(build.plans) == 3
    assert fake.calls == []
    assert log_sink.entries == []


@pytest.mark.parametrize(
    ("start", "end", "days_per_week"),
    [
        (TODAY - timedelta(days=1), END, 3),
        (TODAY, TODAY - timedelta(days=1), 3),
        (TODAY, TODAY + timedelta(days=31), 3),
        (TODAY, END, 0),
        (TODAY, END, 8),
    ],
)
def test_invalid_window_is_rejected(start, end, days_per_week) -> None:
    with pytest.raises(ValidationError):
        validate_window(start, end, days_per_week, TODAY)


def test_prompt_lists_only_whitelisted_exercises() -> None:
    prompt = build_plan_prompt(
        "Plan template.",
        [WhitelistEntry("1", "Squat", "legs")],
        TODAY,
        END,
        3,
        None,
    )
    assert prompt.startswith("Plan template.")
    assert '"name": "Squat"' in prompt
    assert '"prior_advice": null' in prompt
