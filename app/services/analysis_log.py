import json
import logging
from dataclasses import dataclass
from typing import Any, Optional

from fastapi import BackgroundTasks

from app.db.models import AnalysisLog
from app.db.session import SessionLocal

logger = logging.getLogger("uvicorn.error")

STATUS_SUCCESS = "success"
STATUS_ERROR = "error"


@dataclass
class AnalysisLogEntry:
    user_id: int
    feature: str
    model: str
    status: str
    template_id: Optional[int] = None
    template_version: Optional[str] = None
    raw_response: Optional[str] = None
    parsed_result: Any = None
    tokens_in: Optional[int] = None
    tokens_out: Optional[int] = None
    source_ref: Optional[str] = None
    error_message: Optional[str] = None


def write_analysis_log(entry: AnalysisLogEntry) -> None:
    """Persist one entry in its own session. Failures are logged and dropped."""
    db = SessionLocal()
    try:
        db.add(
            AnalysisLog(
                user_id=entry.user_id,
                template_id=entry.template_id,
                template_version=entry.template_version,
                feature=entry.feature,
                model=entry.model,
                raw_response=entry.raw_response,
                parsed_result_json=(
                    json.dumps(entry.parsed_result, default=str) if entry.parsed_result is not None else None
                ),
                tokens_in=entry.tokens_in,
                tokens_out=entry.tokens_out,
                source_ref=entry.source_ref,
                status=entry.status,
                error_message=entry.error_message[:2000] if entry.error_message else None,
            )
        )
        db.commit()
    except Exception as exc:
        db.rollback()
        logger.exception("analysis_log_write_failed user_id=%s detail=%s", entry.user_id, str(exc))
    finally:
        db.close()


class AnalysisLogSink:
    """Fire-and-forget recorder for AI invocation outcomes.

    With ``BackgroundTasks`` the write runs after the response is sent;
    without, it runs inline but still never raises.
    """

    def __init__(self, background_tasks: Optional[BackgroundTasks] = None) -> None:
        self.background_tasks = background_tasks

    def record(self, entry: AnalysisLogEntry) -> None:
        try:
            if self.background_tasks is not None:
                self.background_tasks.add_task(write_analysis_log, entry)
            else:
                write_analysis_log(entry)
        except Exception as exc:
            logger.exception("analysis_log_schedule_failed user_id=%s detail=%s", entry.user_id, str(exc))


def get_analysis_log_sink(background_tasks: BackgroundTasks) -> AnalysisLogSink:
    return AnalysisLogSink(background_tasks)
