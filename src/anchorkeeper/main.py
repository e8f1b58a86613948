import logging
from apscheduler.schedulers.blocking import BlockingScheduler
from anchorkeeper.config import Settings, settings
from anchorkeeper.database import Base, SessionLocal, engine
from anchorkeeper.dao.request_dao import RequestRepository
from anchorkeeper.exceptions import AnchorKeeperError
from anchorkeeper.models.metadata import Metadata  # noqa: F401  ensure tables created
from anchorkeeper.models.request import Request

logging.basicConfig(level=settings.log_level)
logger = logging.getLogger(__name__)


def mark_ready_job(repository: RequestRepository, stream_limit: int) -> list[Request]:
    """Admit the next batch. A failed attempt is retried on the next tick."""
    try:
        batch = repository.find_and_mark_ready(stream_limit)
    except AnchorKeeperError as e:
        logger.error("[Scheduler] Admission failed (%s): %s", e.error_code, e.detail)
        return []
    if batch:
        logger.info("[Scheduler] Batch of %d requests is READY", len(batch))
    return batch


def garbage_collect_job(repository: RequestRepository) -> int:
    """Delete terminal requests whose stream history is past retention."""
    try:
        expired = repository.find_requests_to_garbage_collect()
        deleted = repository.delete_expired_requests(expired)
    except AnchorKeeperError as e:
        logger.error("[Scheduler] Garbage collection failed (%s): %s", e.error_code, e.detail)
        return 0
    if deleted:
        logger.info("[Scheduler] Garbage collected %d requests", deleted)
    return deleted


def build_scheduler(repository: RequestRepository, app_settings: Settings = settings) -> BlockingScheduler:
    scheduler = BlockingScheduler()
    scheduler.add_job(
        mark_ready_job,
        trigger="interval",
        seconds=app_settings.mark_ready_interval_seconds,
        id="mark_ready",
        name="Mark pending requests ready",
        args=[repository, repository.policy.stream_limit],
        max_instances=1,
        coalesce=True,
        replace_existing=True,
    )
    if app_settings.gc_enabled:
        scheduler.add_job(
            garbage_collect_job,
            trigger="interval",
            minutes=app_settings.gc_interval_minutes,
            id="garbage_collect",
            name="Garbage collect expired requests",
            args=[repository],
            max_instances=1,
            coalesce=True,
            replace_existing=True,
        )
    return scheduler


def start():
    """Entry point for the `anchorkeeper` console script."""
    Base.metadata.create_all(bind=engine)
    logger.info("Database tables created/verified")

    repository = RequestRepository(SessionLocal, settings.request_policy())
    scheduler = build_scheduler(repository)
    logger.info("APScheduler starting with %d jobs registered", len(scheduler.get_jobs()))
    try:
        scheduler.start()
    except (KeyboardInterrupt, SystemExit):
        logger.info("APScheduler stopped")


if __name__ == "__main__":
    start()
