import logging
import sys
import os
from pathlib import Path
from loguru import logger
import json
from datetime import date

from reminder_scheduler.utils.context import get_run_id

DEFAULT_RUN_ID = "scheduler"

DEFAULT_LOGGING_CONFIG = {
    "log_dir": "logs",
    "filename": "reminder-scheduler.log",
    "level": "info",
    "rotation": "20 MB",
    "retention": "14 days",
    "console_format": "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | {extra[run_id]} | {name}:{function}:{line} - {message}",
    "file_format": "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | {extra[run_id]} | {name}:{function}:{line} - {message} | {extra}",
    "use_json_logs": False,
}


class InterceptHandler(logging.Handler):
    loglevel_mapping = {
        50: "CRITICAL",
        40: "ERROR",
        30: "WARNING",
        20: "INFO",
        10: "DEBUG",
        0: "NOTSET",
    }

    def emit(self, record):
        try:
            level = logger.level(record.levelname).name
        except (AttributeError, ValueError):
            level = self.loglevel_mapping[record.levelno]

        frame, depth = logging.currentframe(), 2
        while frame and frame.f_code.co_filename == logging.__file__:
            frame = frame.f_back
            depth += 1

        run_id = get_run_id() or DEFAULT_RUN_ID
        log = logger.bind(run_id=run_id)
        log.opt(depth=depth, exception=record.exc_info).log(level, record.getMessage())


class CustomizeLogger:
    @classmethod
    def make_logger(cls, config_path: Path, environment: str = "logger"):
        config = cls.load_logging_config(config_path)
        logging_config = {
            **DEFAULT_LOGGING_CONFIG,
            **config.get(environment, config.get("logger", {})),
        }
        level = os.getenv("LOG_LEVEL") or logging_config.get("level")

        return cls.customize_logging(
            log_dir=logging_config.get("log_dir"),
            filename=f"{date.today().strftime('%Y-%m-%d')}-{logging_config.get('filename')}",
            level=level,
            rotation=logging_config.get("rotation"),
            retention=logging_config.get("retention"),
            console_format=logging_config.get("console_format"),
            file_format=logging_config.get("file_format"),
            use_json_logs=logging_config.get("use_json_logs", False),
        )

    @classmethod
    def customize_logging(
        cls,
        log_dir: Path,
        filename: str,
        level: str,
        rotation: str,
        retention: str,
        console_format: str,
        file_format: str,
        use_json_logs: bool = False,
    ):
        logger.remove()
        logger.configure(extra={"run_id": DEFAULT_RUN_ID})
        level = level.upper()

        # Console sink with colors
        logger.add(
            sys.stdout,
            level=level,
            format=console_format,
            colorize=True,
            enqueue=True,
            backtrace=True,
        )

        # File sink: plain text, or one JSON object per line in production
        if use_json_logs and file_format == "json":
            file_options = {"serialize": True}
        else:
            file_options = {"format": file_format}
        logger.add(
            str(Path(log_dir) / filename),
            level=level,
            rotation=rotation,
            retention=retention,
            colorize=False,
            enqueue=True,
            backtrace=True,
            **file_options,
        )

        # Redirect standard logging to loguru
        cls._setup_intercept_handlers()

        return logger

    @staticmethod
    def _setup_intercept_handlers():
        logging.basicConfig(handlers=[InterceptHandler()], level=0, force=True)

        # SQLAlchemy and asyncio report through stdlib logging
        for log_name in ["sqlalchemy", "aiosqlite", "asyncio"]:
            _logger = logging.getLogger(log_name)
            _logger.handlers = [InterceptHandler()]
            _logger.propagate = False

        logging.getLogger("aiosqlite").setLevel(logging.WARNING)

    @staticmethod
    def load_logging_config(config_path: Path):
        if not config_path.is_file():
            return {}
        with open(config_path) as config_file:
            return json.load(config_file)


# Initialize logger
config_path = Path(os.getenv("LOGGING_CONFIG_PATH", "logging_config.json"))
environment = (
    "production"
    if os.getenv("ENVIRONMENT", "development") == "production"
    else "logger"
)
custom_logger = CustomizeLogger.make_logger(config_path, environment)


def get_logger():
    """Get the custom logger instance with run ID binding."""
    run_id = get_run_id() or DEFAULT_RUN_ID
    return custom_logger.bind(run_id=run_id)
