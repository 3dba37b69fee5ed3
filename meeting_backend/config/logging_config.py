import logging

from meeting_backend.config.config import settings


class ColorFormatter(logging.Formatter):
    """Custom formatter that colors messages by level."""
    COLORS = {
        logging.DEBUG: "\033[36m",   # Cyan
        logging.INFO: "\033[32m",    # Green
        logging.WARNING: "\033[33m", # Yellow
        logging.ERROR: "\033[31m",   # Red
        logging.CRITICAL: "\033[41m" # Red background
    }

    RESET = "\033[0m"

    def format(self, record):
        color = self.COLORS.get(record.levelno, self.RESET)
        message = super().format(record)
        return f"{color}{message}{self.RESET}"

def setup_logging(log_level: str | None = None) -> logging.Logger:
    log_level = (log_level or settings.LOG_LEVEL).upper()

    app_logger = logging.getLogger("meeting_backend")
    app_logger.setLevel(log_level)
    app_logger.propagate = False

    # setup may run once per create_app() call
    if not app_logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(
            ColorFormatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s")
        )
        app_logger.addHandler(handler)

    for handler in app_logger.handlers:
        handler.setLevel(log_level)

    return app_logger
