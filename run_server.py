import os

import uvicorn

from utils.logging_utils import get_tagged_logger, setup_logging

logger = get_tagged_logger(__name__, tag="server")


def maybe_start_idle_worker():
    """
    Start the idle refresh worker unless disabled. Controlled by:
    - SHUTTLE_DISABLE_IDLE_REFRESH=true to skip it (useful in dev/tests)
    - SHUTTLE_IDLE_REFRESH_SECONDS to change the idle period.
    """
    if os.getenv("SHUTTLE_DISABLE_IDLE_REFRESH", "false").lower() in ("1", "true", "yes"):
        logger.info("Idle refresh disabled (SHUTTLE_DISABLE_IDLE_REFRESH=true)")
        return None

    from shuttlepass.api import COORDINATOR
    from shuttlepass.config import settings
    from shuttlepass.refresh import IdleRefreshWorker

    worker = IdleRefreshWorker(COORDINATOR, idle_seconds=settings.idle_refresh_seconds)
    worker.start()
    return worker


if __name__ == "__main__":
    setup_logging(level=os.getenv("LOG_LEVEL", "INFO"))
    worker = maybe_start_idle_worker()

    try:
        uvicorn.run(
            "shuttlepass.main:app",
            host="0.0.0.0",
            port=int(os.getenv("PORT", 8000)),
            reload=False,
        )
    finally:
        if worker is not None:
            worker.stop()
