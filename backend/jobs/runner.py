"""
Batch jobs, runnable from cron or the command line:

    python -m backend.jobs.runner process-feedback
    python -m backend.jobs.runner weekly-digest
    python -m backend.jobs.runner detect-themes

The same run_job() backs the /api/cron/<job> endpoints.
"""
import argparse
import logging
import sys
import time
from typing import Callable, Dict, List

from dotenv import load_dotenv
from sqlmodel import select, col

from backend import config
from backend.persistence.database import get_db_session, init_db
from backend.persistence.models import Post, SentimentAnalysis
from backend.services.board_service import get_board_service
from backend.services.briefing_service import get_briefing_service
from backend.services.digest_service import get_digest_service
from backend.services.feedback_processor import get_feedback_processor
from backend.services.priority_service import get_priority_service
from backend.services.roadmap_service import get_roadmap_service
from backend.services.sentiment_service import get_sentiment_service
from backend.services.theme_service import get_theme_service
from shared.schemas import JobResult

logger = logging.getLogger(__name__)


def unanalyzed_post_ids(project_id: str) -> List[str]:
    """Posts of a project that have no sentiment row yet."""
    session = get_db_session()
    try:
        analyzed = select(SentimentAnalysis.post_id)
        return list(session.exec(
            select(Post.id)
            .where(Post.project_id == project_id)
            .where(col(Post.id).not_in(analyzed))
        ).all())
    finally:
        session.close()


def _for_each_project(job: str, fn: Callable[[str], bool]) -> JobResult:
    """
    Run fn(project_id) for every project with a pause in between.
    fn returns True when the project was processed, False when skipped.
    """
    start = time.time()
    processed = 0
    skipped = 0
    failed = 0
    errors = []

    for project in get_board_service().list_projects():
        try:
            if fn(project.id):
                processed += 1
            else:
                skipped += 1
        except Exception as e:
            logger.error(f"[JobRunner] {job} failed for project {project.id}: {e}", exc_info=True)
            failed += 1
            errors.append({"project_id": project.id, "error": str(e)})
        time.sleep(config.BATCH_SLEEP_SECONDS)

    duration = int((time.time() - start) * 1000)
    logger.info(f"[JobRunner] {job}: {processed} processed, {skipped} skipped, {failed} failed in {duration}ms")
    return JobResult(
        success=failed == 0,
        job=job,
        message=f"Processed {processed} projects",
        processed=processed,
        failed=failed,
        duration_ms=duration,
        details={"skipped": skipped, "errors": errors},
    )


# ============================================================
# PER-PROJECT JOBS
# ============================================================

def _detect_themes(project_id: str) -> bool:
    return get_theme_service().detect_themes(project_id).success


def _sentiment_backfill(project_id: str) -> bool:
    post_ids = unanalyzed_post_ids(project_id)
    if not post_ids:
        return False
    get_sentiment_service().analyze_posts(project_id, post_ids)
    return True


def _priority_scoring(project_id: str) -> bool:
    return bool(get_priority_service().score_posts(project_id))


def _roadmap_suggestions(project_id: str) -> bool:
    return bool(get_roadmap_service().generate_suggestions(project_id))


def _daily_briefing(project_id: str) -> bool:
    get_briefing_service().get_today_briefing(project_id, refresh=True)
    return True


JOBS: Dict[str, Callable[[], JobResult]] = {
    "process-feedback": lambda: get_feedback_processor().run(),
    "weekly-digest": lambda: get_digest_service().run(),
    "detect-themes": lambda: _for_each_project("detect-themes", _detect_themes),
    "sentiment-backfill": lambda: _for_each_project("sentiment-backfill", _sentiment_backfill),
    "priority-scoring": lambda: _for_each_project("priority-scoring", _priority_scoring),
    "roadmap-suggestions": lambda: _for_each_project("roadmap-suggestions", _roadmap_suggestions),
    "daily-briefing": lambda: _for_each_project("daily-briefing", _daily_briefing),
}


def run_job(name: str) -> JobResult:
    """Run one job by name. Unknown names raise ValueError."""
    job = JOBS.get(name)
    if job is None:
        raise ValueError(f"Unknown job: {name}")
    logger.info(f"[JobRunner] Starting {name}")
    return job()


def main(argv=None) -> int:
    load_dotenv()
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    parser = argparse.ArgumentParser(description="Run a SignalsLoop batch job")
    parser.add_argument("job", choices=sorted(JOBS.keys()))
    args = parser.parse_args(argv)

    init_db()
    result = run_job(args.job)
    print(result.model_dump_json(indent=2))
    return 0 if result.success else 1


if __name__ == "__main__":
    sys.exit(main())
