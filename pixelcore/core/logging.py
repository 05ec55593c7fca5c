"""
Structured Logging for the Pixel Pipelines

structlog on top of the stdlib logging module. Production renders one JSON
object per line; development renders colored console output.

Each processing operation runs inside a LogContext, so every event it emits
carries the job id, the pipeline name and the current stage without the
call sites passing them.
"""

import sys
import logging
import structlog
from typing import Optional, Any, Dict
from contextvars import ContextVar

from pixelcore import __version__

job_id_var: ContextVar[Optional[str]] = ContextVar("job_id", default=None)
pipeline_var: ContextVar[Optional[str]] = ContextVar("pipeline", default=None)
stage_var: ContextVar[Optional[str]] = ContextVar("stage", default=None)

# Third-party loggers that flood the output at INFO
QUIET_LOGGERS = ("PIL", "asyncio", "multipart", "uvicorn.access")


def add_operation_context(
    logger: logging.Logger,
    method_name: str,
    event_dict: Dict[str, Any]
) -> Dict[str, Any]:
    """Stamp the engine version and the active operation onto an event."""
    event_dict["version"] = __version__

    for key, var in (("job_id", job_id_var), ("pipeline", pipeline_var), ("stage", stage_var)):
        value = var.get()
        if value:
            event_dict.setdefault(key, value)

    return event_dict


def setup_logging(
    log_level: str = "INFO",
    json_format: bool = True,
):
    """
    Configure structlog and the root stdlib logger.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        json_format: JSON lines when True, colored console output otherwise
    """
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, log_level.upper()),
    )
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    if json_format:
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=True)

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True, key="timestamp"),
            add_operation_context,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str = __name__) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)


class LogContext:
    """
    Binds job id, pipeline and stage for the duration of one operation.

    Usage:
        with LogContext(job_id=job_id, pipeline="upscale") as ctx:
            ctx.set_stage("load")
            logger.info("image_loaded")

    Errors raised inside the block pick up the same job id and stage.
    """

    def __init__(
        self,
        job_id: Optional[str] = None,
        pipeline: Optional[str] = None,
        stage: Optional[str] = None,
    ):
        self.job_id = job_id
        self.pipeline = pipeline
        self.stage = stage
        self._tokens = []
        self._stage_token = None

    def __enter__(self):
        for var, value in ((job_id_var, self.job_id), (pipeline_var, self.pipeline)):
            if value:
                self._tokens.append((var, var.set(value)))
        if self.stage:
            self._stage_token = stage_var.set(self.stage)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if self._stage_token is not None:
            stage_var.reset(self._stage_token)
            self._stage_token = None
        for var, token in reversed(self._tokens):
            var.reset(token)
        self._tokens.clear()
        return False

    def set_stage(self, stage: str):
        """Move to the next stage; the stage from before entry comes back on exit."""
        token = stage_var.set(stage)
        if self._stage_token is None:
            self._stage_token = token


# Example event:
# {
#   "timestamp": "2026-03-02T10:00:00.120Z",
#   "level": "info",
#   "event": "upscale_completed",
#   "pipeline": "upscale",
#   "job_id": "550e8400-e29b-41d4-a716-446655440000",
#   "version": "1.0.0",
#   "duration_ms": 840,
#   "algorithm": "esrgan"
# }
