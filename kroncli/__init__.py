import os
import logging
from logging.handlers import RotatingFileHandler


__version__ = '0.3.0'


def configure_logging(config=None, log_dir=None, level=None):
    """
    Configure process-wide logging for kroncli.

    Console output always; a rotating file log in ``log_dir`` (or
    ``config.LOG_DIR``) when one is available.

    Args:
        config: Config class or instance (see kroncli.config)
        log_dir: Override for the log directory
        level: Override for the log level name ('DEBUG', 'INFO', ...)

    Returns:
        The configured 'kroncli' logger
    """
    if config is None:
        from kroncli.config import get_config
        config = get_config()

    level_name = level or getattr(config, 'LOG_LEVEL', None)
    if not level_name:
        level_name = 'DEBUG' if getattr(config, 'DEBUG', False) else 'INFO'
    log_level = logging.getLevelName(level_name.upper())
    if not isinstance(log_level, int):
        log_level = logging.INFO

    handlers = []

    # Console handler
    console_handler = logging.StreamHandler()
    console_handler.setLevel(log_level)
    console_formatter = logging.Formatter(
        '[%(asctime)s] %(levelname)s in %(module)s: %(message)s'
    )
    console_handler.setFormatter(console_formatter)
    handlers.append(console_handler)

    # File handler
    log_dir = log_dir or getattr(config, 'LOG_DIR', None)
    file_error = None
    if log_dir:
        try:
            os.makedirs(log_dir, exist_ok=True)
            file_handler = RotatingFileHandler(
                os.path.join(log_dir, 'kroncli.log'),
                maxBytes=10485760,  # 10MB
                backupCount=10
            )
        except OSError as e:
            file_error = e
        else:
            file_handler.setLevel(log_level)
            file_formatter = logging.Formatter(
                '[%(asctime)s] %(levelname)s [%(name)s.%(funcName)s:%(lineno)d] %(message)s'
            )
            file_handler.setFormatter(file_formatter)
            handlers.append(file_handler)

    logger = logging.getLogger('kroncli')
    logger.setLevel(log_level)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()
    for handler in handlers:
        logger.addHandler(handler)
    logger.propagate = False

    if file_error is not None:
        logger.warning(f"File logging disabled, cannot write to {log_dir}: {file_error}")
    logger.info(f"Logging configured (level: {logging.getLevelName(log_level)})")
    return logger
