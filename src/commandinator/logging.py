"""Privacy-safe logging configuration for Commandinator bots.

By default, sensitive identifiers (UUIDs, phone numbers) are redacted.
Set LOG_SENSITIVE=true to enable full logging for debugging.

Message content is NEVER logged regardless of settings.
"""

import logging
import os
import re

import colorlog


def anonymize_id(identifier: str) -> str:
    """Shorten an identifier to its first 4 characters.

    Args:
        identifier: Full user, channel or guild identifier

    Returns:
        First 4 characters followed by "..." (e.g., "a3f2...")
    """
    if not identifier:
        return "none"
    return f"{identifier[:4]}..."


def anonymize_phone(phone: str) -> str:
    """Anonymize phone number to last 4 digits.

    Args:
        phone: Full phone number

    Returns:
        "***" followed by last 4 digits (e.g., "***1234")
    """
    if not phone:
        return "none"
    digits = re.sub(r'\D', '', phone)
    if len(digits) >= 4:
        return f"***{digits[-4:]}"
    return "***"


class PrivacyFilter(logging.Filter):
    """Logging filter that redacts identifiers unless LOG_SENSITIVE=true.

    Redacts UUIDs (including those inside <@...> mention markup) and
    phone numbers found in the format string of a record.
    """

    UUID_PATTERN = re.compile(r'[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{12}')
    PHONE_PATTERN = re.compile(r'\+?[0-9]{10,15}')

    def __init__(self, sensitive_logging: bool = False):
        super().__init__()
        self.sensitive_logging = sensitive_logging

    def filter(self, record: logging.LogRecord) -> bool:
        """Filter log record, redacting identifiers if needed."""
        if self.sensitive_logging:
            return True

        if isinstance(record.msg, str):
            msg = self.UUID_PATTERN.sub(lambda m: anonymize_id(m.group(0)), record.msg)
            msg = self.PHONE_PATTERN.sub(lambda m: anonymize_phone(m.group(0)), msg)
            record.msg = msg

        return True


def setup_logging(
    level: str = None,
    sensitive: bool = None,
    suppress_noisy: bool = True
) -> None:
    """Configure logging with colorlog and the privacy filter.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR). Default from LOG_LEVEL env or INFO.
        sensitive: Enable identifier logging. Default from LOG_SENSITIVE env or False.
        suppress_noisy: Quiet the HTTP/SSE libraries. Default True.
    """
    if level is None:
        level = os.getenv('LOG_LEVEL', 'INFO').upper()
    if sensitive is None:
        sensitive = os.getenv('LOG_SENSITIVE', 'false').lower() in ('true', '1', 'yes')

    handler = colorlog.StreamHandler()
    handler.setFormatter(colorlog.ColoredFormatter(
        '%(log_color)s%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S',
        log_colors={
            'DEBUG': 'cyan',
            'INFO': 'green',
            'WARNING': 'yellow',
            'ERROR': 'red',
            'CRITICAL': 'red,bg_white',
        }
    ))
    handler.addFilter(PrivacyFilter(sensitive_logging=sensitive))

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(getattr(logging, level, logging.INFO))

    if suppress_noisy:
        logging.getLogger('urllib3').setLevel(logging.WARNING)
        logging.getLogger('requests').setLevel(logging.WARNING)
        logging.getLogger('sseclient').setLevel(logging.WARNING)

    logging.getLogger(__name__).info(f"Logging configured: level={level}, sensitive={sensitive}")


def get_logger(name: str) -> logging.Logger:
    """Get a logger with the given name (typically __name__)."""
    return logging.getLogger(name)
