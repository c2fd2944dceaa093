"""
Entry point for the offline control plane.
"""
import structlog
import uvicorn

from ..shared.config import get_settings, validate_configuration
from ..shared.logging_config import initialize_logging
from .app import create_app

settings = get_settings()
initialize_logging(
    level=settings.logging.log_level.value,
    format_type=settings.logging.log_format,
    log_file=settings.logging.log_file,
)

app = create_app()
logger = structlog.get_logger(__name__)


def main() -> None:
    for problem in validate_configuration(settings):
        logger.warning("Configuration problem", problem=problem)

    uvicorn.run(
        "src.runtime.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.is_development(),
        log_level=settings.logging.log_level.value.lower(),
    )


if __name__ == "__main__":
    main()
