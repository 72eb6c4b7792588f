# app/config/logging_config.py
# =============================================================================
# File: app/config/logging_config.py
# Description: Logging configuration using the Rich framework
# =============================================================================

import json
import logging
import logging.handlers
import os
import sys
from datetime import datetime
from typing import Optional

from rich.console import Console
from rich.logging import RichHandler
from rich.rule import Rule
from rich.theme import Theme

CAMPUS_THEME = Theme({
    "logging.level.debug": "dim cyan",
    "logging.level.info": "green",
    "logging.level.warning": "yellow",
    "logging.level.error": "bold red",
    "logging.level.critical": "bold white on red",
    "log.time": "dim white",
    "log.path": "dim blue",
    "repr.number": "cyan",
})

PLAIN_FORMAT = "[%(asctime)s] [%(levelname)-8s] [%(name)-40s] %(message)s"
PLAIN_DATEFMT = "%Y-%m-%d %H:%M:%S"

# Noisy third-party loggers and their default levels
DEFAULT_NOISE_CONFIG = {
    "asyncio": logging.WARNING,
    "asyncpg": logging.WARNING,
    "redis": logging.WARNING,
    "httpx": logging.WARNING,
    "httpcore": logging.WARNING,
    "websockets": logging.WARNING,
    "botocore": logging.WARNING,
    "aiobotocore": logging.WARNING,
    "prometheus_client": logging.WARNING,
    "campus.retry": logging.WARNING,
}


def get_env_bool(key: str, default: bool = False) -> bool:
    """Get boolean value from environment variable."""
    value = os.getenv(key, '').lower()
    return value in ('true', '1', 'yes', 'on') if value else default


def get_env_int(key: str, default: int) -> int:
    """Get integer value from environment variable."""
    try:
        return int(os.getenv(key, str(default)))
    except ValueError:
        return default


class ProductionFormatter(logging.Formatter):
    """JSON formatter for production environments"""

    def format(self, record: logging.LogRecord) -> str:
        log_obj = {
            "timestamp": datetime.fromtimestamp(record.created).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        for extra in ("user_id", "scope_id", "request_id"):
            if hasattr(record, extra):
                log_obj[extra] = getattr(record, extra)

        if record.exc_info:
            log_obj["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_obj)


def get_logger_level_from_env(logger_name: str, default_level: int) -> int:
    """
    Get logger level from environment variable.

    "campus.messaging.store" -> "LOGLEVEL_CAMPUS_MESSAGING_STORE"
    """
    env_name = f"LOGLEVEL_{logger_name.replace('.', '_').upper()}"
    level_str = os.getenv(env_name, '').upper()
    if not level_str:
        return default_level
    if level_str == 'WARN':
        level_str = 'WARNING'
    return logging.getLevelName(level_str) if level_str in (
        'DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL'
    ) else default_level


def setup_logging(
        service_name: str = "campus",
        log_level: Optional[str] = None,
        log_file: Optional[str] = None,
        enable_json: Optional[bool] = None,
        rich_tracebacks: bool = True,
) -> None:
    """
    Configure logging with the Rich framework.

    Args:
        service_name: Name of the service (e.g., "api")
        log_level: Override log level
        log_file: Optional log file path
        enable_json: Enable JSON formatting for production
        rich_tracebacks: Enable rich tracebacks (pretty exceptions)
    """
    level = (log_level or os.getenv("LOG_LEVEL", "INFO")).upper()
    log_file = log_file or os.getenv("LOG_FILE")

    if enable_json is None:
        enable_json = get_env_bool('LOG_JSON_FORMAT', False)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers.clear()

    use_rich = not enable_json and (sys.stdout.isatty() or get_env_bool("FORCE_COLOR", False))

    if use_rich:
        console = Console(
            theme=CAMPUS_THEME,
            force_terminal=get_env_bool("FORCE_COLOR", False),
            width=get_env_int('LOG_CONSOLE_WIDTH', 0) or None,
        )
        root_logger.addHandler(RichHandler(
            console=console,
            rich_tracebacks=rich_tracebacks,
            show_path=get_env_bool('LOG_SHOW_PATH', False),
            markup=False,
        ))
    elif enable_json:
        json_handler = logging.StreamHandler(sys.stdout)
        json_handler.setFormatter(ProductionFormatter())
        root_logger.addHandler(json_handler)
    else:
        plain_handler = logging.StreamHandler(sys.stdout)
        plain_handler.setFormatter(logging.Formatter(PLAIN_FORMAT, datefmt=PLAIN_DATEFMT))
        root_logger.addHandler(plain_handler)

    if log_file:
        file_handler = logging.handlers.RotatingFileHandler(
            log_file,
            maxBytes=get_env_int('LOG_MAX_SIZE_MB', 100) * 1024 * 1024,
            backupCount=get_env_int('LOG_BACKUP_COUNT', 5),
            encoding=os.getenv('LOG_FILE_ENCODING', 'utf-8'),
        )
        # Always use plain formatter for files
        file_handler.setFormatter(logging.Formatter(PLAIN_FORMAT, datefmt=PLAIN_DATEFMT))
        root_logger.addHandler(file_handler)

    for logger_name, default_level in DEFAULT_NOISE_CONFIG.items():
        logging.getLogger(logger_name).setLevel(get_logger_level_from_env(logger_name, default_level))

    # Explicit LOGLEVEL_* overrides for any other logger
    for key, value in os.environ.items():
        if key.startswith('LOGLEVEL_'):
            logger_name = key[len('LOGLEVEL_'):].lower().replace('_', '.')
            if logger_name in DEFAULT_NOISE_CONFIG:
                continue
            level_value = logging.getLevelName(value.upper())
            if isinstance(level_value, int):
                logging.getLogger(logger_name).setLevel(level_value)

    logging.getLogger(f"{service_name}.startup").info(f"Logging configured for {service_name} service")


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger instance with the given name.

    Args:
        name: Logger name

    Returns:
        Configured logger instance
    """
    return logging.getLogger(name)


def log_section(logger: logging.Logger, title: str) -> None:
    """Log a section separator (rich rule on a terminal, plain banner elsewhere)"""
    if sys.stdout.isatty():
        Console(theme=CAMPUS_THEME).print(Rule(title.upper(), style="green"))
        return
    logger.info("=" * 60)
    logger.info(f"  {title.upper()}")
    logger.info("=" * 60)
