import json
import logging
import os

from colorama import Fore, Style
from colorama import init as colorama_init

# Early .env load to check DISABLE_CLOUD_TELEMETRY before importing any OTel
try:
    from dotenv import load_dotenv

    if os.path.isfile(".env"):
        load_dotenv(override=False)
except ImportError:
    pass

_telemetry_disabled = os.getenv("DISABLE_CLOUD_TELEMETRY", "false").lower() == "true"

if not _telemetry_disabled:
    from opentelemetry import trace
else:
    trace = None

colorama_init(autoreset=True)

# Lifecycle milestones (mount complete, call connected) log at KEYINFO
KEYINFO_LEVEL_NUM = 25
logging.addLevelName(KEYINFO_LEVEL_NUM, "KEYINFO")


def keyinfo(self: logging.Logger, message, *args, **kws):
    if self.isEnabledFor(KEYINFO_LEVEL_NUM):
        self._log(KEYINFO_LEVEL_NUM, message, args, **kws)


logging.Logger.keyinfo = keyinfo


class JsonFormatter(logging.Formatter):
    """JSON formatter for production log shipping."""

    def format(self, record: logging.LogRecord) -> str:
        log_record = {
            "timestamp": self.formatTime(record, self.datefmt),
            "name": record.name,
            "level": record.levelname,
            "trace_id": getattr(record, "trace_id", "-"),
            "span_id": getattr(record, "span_id", "-"),
            "call_id": getattr(record, "call_id", "-"),
            "subject_id": getattr(record, "subject_id", "-"),
            "message": record.getMessage(),
            "file": record.filename,
            "function": record.funcName,
            "line": record.lineno,
        }
        if record.exc_info:
            log_record["exception"] = self.formatException(record.exc_info)
        return json.dumps(log_record)


class PrettyFormatter(logging.Formatter):
    LEVEL_COLORS = {
        "DEBUG": Fore.CYAN,
        "INFO": Fore.GREEN,
        "WARNING": Fore.YELLOW,
        "ERROR": Fore.RED,
        "CRITICAL": Fore.MAGENTA,
        "KEYINFO": Fore.BLUE,
    }

    def format(self, record: logging.LogRecord) -> str:
        timestamp = self.formatTime(record, self.datefmt)
        level = record.levelname
        call_id = getattr(record, "call_id", "-")
        prefix = f"[{call_id[-8:]}] " if call_id and call_id != "-" else ""
        msg = record.getMessage()
        if record.exc_info:
            msg = f"{msg}\n{self.formatException(record.exc_info)}"

        color = self.LEVEL_COLORS.get(level, "")
        return (
            f"{Fore.WHITE}[{timestamp}]{Style.RESET_ALL} {color}{level}{Style.RESET_ALL} - "
            f"{Fore.BLUE}{record.name}{Style.RESET_ALL}: {prefix}{msg}"
        )


class PIIScrubbingFilter(logging.Filter):
    """
    Logging filter that redacts phone numbers, user tokens and access keys.

    See utils/pii_filter.py for the environment switches.
    """

    def __init__(self, name: str = ""):
        super().__init__(name)
        from utils.pii_filter import get_pii_scrubber

        self._scrubber = get_pii_scrubber()

    def filter(self, record: logging.LogRecord) -> bool:
        if not self._scrubber.config.enabled:
            return True

        if record.msg and isinstance(record.msg, str):
            record.msg = self._scrubber.scrub_string(record.msg)

        if record.args:
            if isinstance(record.args, dict):
                record.args = {
                    k: self._scrubber.scrub_string(v) if isinstance(v, str) else v
                    for k, v in record.args.items()
                }
            elif isinstance(record.args, tuple):
                record.args = tuple(
                    self._scrubber.scrub_string(a) if isinstance(a, str) else a
                    for a in record.args
                )
        return True


class TraceLogFilter(logging.Filter):
    """
    Enriches log records with call correlation and trace context.

    Correlation comes from utils.session_context (set by the controller around
    each call operation and notification); trace ids come from the current
    OpenTelemetry span when telemetry is enabled.
    """

    def filter(self, record):
        from utils.session_context import get_call_correlation

        ctx = get_call_correlation()
        if ctx:
            for key, value in ctx.to_log_record().items():
                setattr(record, key, value)
        else:
            record.call_id = "-"
            record.subject_id = "-"
            record.address_kind = "-"

        if _telemetry_disabled or trace is None:
            record.trace_id = "-"
            record.span_id = "-"
            return True

        span = trace.get_current_span()
        context = span.get_span_context() if span else None
        record.trace_id = f"{context.trace_id:032x}" if context and context.trace_id else "-"
        record.span_id = f"{context.span_id:016x}" if context and context.span_id else "-"
        return True


def get_logger(
    name: str = "calling",
    level: int | None = None,
    include_stream_handler: bool = True,
) -> logging.Logger:
    """
    Get or create a logger with correlation and PII filters attached.

    Args:
        name: Logger name (hierarchical, e.g., "calling.controller")
        level: Optional logging level; defaults to INFO if logger has no level set
        include_stream_handler: Whether to add a console StreamHandler

    Returns:
        Configured logger instance
    """
    logger = logging.getLogger(name)

    if level is not None or logger.level == 0:
        logger.setLevel(level or logging.INFO)

    is_production = os.environ.get("ENV", "dev").lower() == "prod"

    if not any(isinstance(f, TraceLogFilter) for f in logger.filters):
        logger.addFilter(TraceLogFilter())

    if not any(isinstance(f, PIIScrubbingFilter) for f in logger.filters):
        logger.addFilter(PIIScrubbingFilter())

    if include_stream_handler and not any(
        isinstance(h, logging.StreamHandler) for h in logger.handlers
    ):
        sh = logging.StreamHandler()
        sh.setFormatter(JsonFormatter() if is_production else PrettyFormatter())
        logger.addHandler(sh)

    return logger
