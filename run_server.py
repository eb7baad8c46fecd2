import os

import uvicorn

from airwatch.config import settings
from utils.logging_utils import get_tagged_logger, setup_logging

logger = get_tagged_logger(__name__, tag="server")


if __name__ == "__main__":
    setup_logging(level=settings.log_level)
    logger.info("Starting AirWatch API", extra={
        "repository_backend": settings.repository_backend,
        "refresh_interval_minutes": settings.refresh_interval_minutes,
    })

    uvicorn.run(
        "airwatch.main:app",
        host="0.0.0.0",
        port=int(os.getenv("PORT", 8000)),
        reload=False,
    )
