"""
Centralized logging configuration using Loguru.
Routes standard library logging (uvicorn, asyncpg) through the same sinks.
"""

import logging
import sys
from pathlib import Path
from typing import TYPE_CHECKING, Optional

from loguru import logger

if TYPE_CHECKING:
    from types import FrameType

    from docbuilder.utils.config_loader import LoggingConfig


class InterceptHandler(logging.Handler):
    """Forward standard logging records to loguru, keeping the caller's frame."""

    def emit(self, record: logging.LogRecord) -> None:
        level: str
        try:
            level = logger.level(record.levelname).name
        except ValueError:
            level = str(record.levelno)

        depth: int = 1
        frame: Optional[FrameType] = sys._getframe(depth)
        while frame and (frame.f_code.co_filename == logging.__file__ or frame.f_code.co_filename == __file__):
            depth += 1
            try:
                frame = sys._getframe(depth)
            except ValueError:
                break

        logger.opt(depth=depth, exception=record.exc_info).log(level, record.getMessage())


class LoggerSetup:
    """Centralized logger setup with configuration-driven sinks."""

    _initialized: bool = False

    @classmethod
    def setup_logger(cls, logging_config: Optional["LoggingConfig"]) -> None:
        """Setup logger with configuration-driven settings."""
        if cls._initialized:
            return

        logger.remove()

        if logging_config:
            try:
                log_file_path = Path(logging_config.file)
                log_file_path.parent.mkdir(parents=True, exist_ok=True)

                logger.add(
                    logging_config.file,
                    level=logging_config.level,
                    format=logging_config.format,
                    rotation=logging_config.rotation,
                    compression=logging_config.compression,
                    retention=logging_config.retention,
                    enqueue=True,
                    backtrace=False,
                    diagnose=False,
                    catch=True,
                    serialize=False,
                )
            except Exception as e:
                logger.opt(raw=True).error(
                    f"CRITICAL: Failed to set up file logger: {e}\nLogging will proceed to console only."
                )

            logger.add(
                sys.stderr,
                level=logging_config.level,
                format=logging_config.format,
                colorize=True,
                enqueue=True,
                backtrace=False,
                diagnose=False,
                catch=True,
            )
            logging.basicConfig(handlers=[InterceptHandler()], level=getattr(logging, logging_config.level), force=True)
        else:
            logger.add(sys.stderr, level="INFO", colorize=True, enqueue=True, catch=True)
            logging.basicConfig(handlers=[InterceptHandler()], level=logging.INFO, force=True)

        # Access logs are already covered by the route metrics middleware
        logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
        logging.getLogger("asyncio").setLevel(logging.WARNING)

        cls._initialized = True
        logger.info("Centralized logging initialized successfully")


LOGGER = logger
__all__ = ["logger", "LOGGER", "LoggerSetup", "InterceptHandler"]
