# logger.py - Centralized logging configuration
import os
import logging
from logging.handlers import RotatingFileHandler

app_logger = logging.getLogger("copyboss")
payouts_logger = logging.getLogger("copyboss.payouts")


def setup_logger(name, log_dir=None, level=logging.INFO, console=True):
    """Set up a logger with file rotation"""
    logger = logging.getLogger(name)

    # Avoid adding handlers multiple times
    if logger.handlers:
        return logger

    logger.setLevel(level)

    if log_dir:
        if not os.path.exists(log_dir):
            os.makedirs(log_dir)

        file_handler = RotatingFileHandler(
            os.path.join(log_dir, f"{name.split('.')[-1]}.log"),
            maxBytes=10240,
            backupCount=10
        )
        file_handler.setFormatter(logging.Formatter(
            "%(asctime)s %(levelname)s: %(message)s [in %(pathname)s:%(lineno)d]"
        ))
        file_handler.setLevel(level)
        logger.addHandler(file_handler)

    # Console handler for development
    if console and os.environ.get("FLASK_ENV") != "production":
        console_handler = logging.StreamHandler()
        console_handler.setLevel(logging.DEBUG)
        console_handler.setFormatter(logging.Formatter(
            "%(name)s - %(levelname)s - %(message)s"
        ))
        logger.addHandler(console_handler)

    return logger


def init_logging(app):
    level = getattr(logging, str(app.config.get('LOG_LEVEL', 'INFO')).upper(), logging.INFO)
    log_dir = app.config.get('LOG_DIR')
    console = not app.config.get('TESTING', False)

    setup_logger("copyboss", log_dir=log_dir, level=level, console=console)
    # payouts also propagates to the app logger; only give it its own file
    setup_logger("copyboss.payouts", log_dir=log_dir, level=level, console=False)
