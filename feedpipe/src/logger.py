import logging
import os
from dataclasses import dataclass, field
from datetime import date
from pathlib import Path

from .constants import EnvVars, LocalPaths

AWS_ENV_VARS = (
    "AWS_EXECUTION_ENV",
    "AWS_LAMBDA_FUNCTION_NAME",
    "AWS_BATCH_JOB_ID",
    "ECS_CONTAINER_METADATA_URI",
)
DEFAULT_LOGS_DIR = Path(__file__).resolve().parent.parent.parent / LocalPaths.LOGS_DIR.value


def is_running_in_aws() -> bool:
    return any(env_var in os.environ for env_var in AWS_ENV_VARS)


@dataclass
class LoggerConfig:
    name: str = "feedpipe"
    level: int = logging.INFO
    log_format: str = "%(asctime)s - %(levelname)s - %(name)s - %(message)s"
    file_logging_enabled: bool = True
    logs_dir: Path = field(default=DEFAULT_LOGS_DIR)

    @classmethod
    def from_env(cls, name: str = "feedpipe") -> "LoggerConfig":
        """Level from ``LOG_LEVEL``; file output unless disabled or running in AWS."""
        level_name = os.getenv(EnvVars.LOG_LEVEL.value, "INFO").upper()
        file_logging = os.getenv(EnvVars.FILE_LOGGING.value, "1") != "0"
        return cls(
            name=name,
            level=getattr(logging, level_name, logging.INFO),
            file_logging_enabled=file_logging and not is_running_in_aws(),
        )


def daily_log_path(logs_dir: Path, day: date | None = None) -> Path:
    log_file = Path(LocalPaths.LOGS_FILE.value)
    day = day or date.today()
    return logs_dir / f"{log_file.stem}_{day.isoformat()}{log_file.suffix}"


def configure_logger(config: LoggerConfig) -> logging.Logger:
    logger_obj = logging.getLogger(config.name)
    logger_obj.setLevel(config.level)
    logger_obj.propagate = False
    for handler in logger_obj.handlers:
        handler.close()
    logger_obj.handlers.clear()

    handlers: list[logging.Handler] = [logging.StreamHandler()]
    if config.file_logging_enabled:
        config.logs_dir.mkdir(parents=True, exist_ok=True)
        handlers.append(
            logging.FileHandler(daily_log_path(config.logs_dir), encoding="utf-8")
        )
    formatter = logging.Formatter(config.log_format)
    for handler in handlers:
        handler.setFormatter(formatter)
        logger_obj.addHandler(handler)
    return logger_obj


logger = configure_logger(LoggerConfig.from_env())
