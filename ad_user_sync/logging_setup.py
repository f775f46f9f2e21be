"""
Logging configuration for AD User Sync.

Everything is routed through the root logger: one file handler writing
app.log (rotated at midnight unless rotation is 'none') and an optional
console handler. Both handlers share a SensitiveDataFilter so bind/SMTP
passwords and database URL credentials never reach a log line.

Directory writes are additionally recorded on the 'security' logger by
SecurityAuditLogger.

When logging.sentry_dsn is set, ERROR records are also reported to Sentry
through sentry_sdk's LoggingIntegration.
"""

import os
import re
import glob
import logging
import logging.handlers
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

import sentry_sdk
from sentry_sdk.integrations.logging import LoggingIntegration

LOG_FILE_NAME = 'app.log'

FILE_FORMAT = '%(asctime)s [%(levelname)s] %(name)s:%(lineno)d - %(message)s'
CONSOLE_FORMAT = '%(asctime)s [%(levelname)s] %(message)s'


def _level(name: Any, default: int) -> int:
    return getattr(logging, str(name).upper(), default)


class SensitiveDataFilter(logging.Filter):
    """Masks credentials in log messages before any handler formats them."""

    SENSITIVE_KEYWORDS = [
        'password', 'bind_password', 'smtp_password', 'token', 'secret',
        'credential', 'pwd', 'api_key', 'client_secret', 'access_token'
    ]

    def __init__(self, name: str = ''):
        super().__init__(name)
        keywords = '|'.join(re.escape(k) for k in self.SENSITIVE_KEYWORDS)
        self._patterns = [
            # key=value
            (re.compile(rf'(\b(?:{keywords})\s*=\s*)[^\s,}}\]]+', re.IGNORECASE), r'\1****'),
            # "key": "value"
            (re.compile(rf'("(?:{keywords})"\s*:\s*")[^"]*(")', re.IGNORECASE), r'\1****\2'),
            # "key": value
            (re.compile(rf'("(?:{keywords})"\s*:\s*)([^",}}\s]+)', re.IGNORECASE), r'\1****'),
            # 'key': 'value' (repr of a dict)
            (re.compile(rf"('(?:{keywords})'\s*:\s*')[^']*(')", re.IGNORECASE), r'\1****\2'),
            # user:password@ in database URLs
            (re.compile(r'(://[^:/@\s]+:)[^@\s]+(@)'), r'\1****\2'),
        ]

    def scrub(self, message: str) -> str:
        for pattern, replacement in self._patterns:
            message = pattern.sub(replacement, message)
        return message

    def filter(self, record):
        # Merge args first so a secret passed as a %-argument is masked too
        try:
            message = record.getMessage()
        except (TypeError, ValueError):
            message = str(record.msg)

        record.msg = self.scrub(message)
        record.args = None
        return True


class LoggingManager:
    """
    Owns the root logger configuration for the lifetime of the process.

    Configuration keys (the 'logging' section): level, log_dir, rotation
    ('daily'/'midnight' or 'none'), retention_days, console_output and
    console_level.
    """

    def __init__(self):
        self.configured = False
        self.log_dir = None
        self.retention_days = 7
        self.sentry_enabled = False

    def setup_logging(self, config: Optional[Dict[str, Any]]) -> None:
        """Install the file and console handlers. Later calls are ignored."""
        if self.configured:
            return

        settings = config or {}
        level = _level(settings.get('level', 'INFO'), logging.INFO)
        self.log_dir = settings.get('log_dir', 'logs')
        self.retention_days = int(settings.get('retention_days', 7))
        with_console = bool(settings.get('console_output', True))

        self._prepare_log_dir()

        handlers = [self._file_handler(settings.get('rotation', 'daily'), level)]
        if with_console:
            handlers.append(self._console_handler(
                _level(settings.get('console_level', 'WARNING'), logging.WARNING)))

        secrets_filter = SensitiveDataFilter()
        root = logging.getLogger()
        root.handlers.clear()
        root.setLevel(level)
        for handler in handlers:
            handler.addFilter(secrets_filter)
            root.addHandler(handler)

        self._init_sentry(settings)
        self._prune_rotated_logs()
        self.configured = True

        logging.getLogger(__name__).info(
            f"Logging to {os.path.join(self.log_dir, LOG_FILE_NAME)} at "
            f"{logging.getLevelName(level)} (keeping {self.retention_days} days, "
            f"console {'on' if with_console else 'off'})"
        )

    def _init_sentry(self, settings: Dict[str, Any]) -> None:
        """Report ERROR records to Sentry when a DSN is configured."""
        dsn = settings.get('sentry_dsn')
        if not dsn:
            return

        log = logging.getLogger(__name__)
        environment = settings.get('sentry_environment') or 'production'
        event_level = _level(settings.get('sentry_level', 'ERROR'), logging.ERROR)

        try:
            sentry_sdk.init(
                dsn=dsn,
                environment=environment,
                debug=bool(settings.get('sentry_debug', False)),
                integrations=[LoggingIntegration(level=logging.INFO, event_level=event_level)],
                before_send=scrub_sentry_event,
                send_default_pii=False,
            )
        except Exception as e:
            log.warning(f"Sentry reporting disabled, initialization failed: {e}")
            return

        self.sentry_enabled = True
        log.info(f"Reporting errors to Sentry (environment {environment})")

    def _prepare_log_dir(self) -> None:
        if not self.log_dir or os.path.isdir(self.log_dir):
            return
        try:
            os.makedirs(self.log_dir, exist_ok=True)
        except OSError as e:
            # No handler is installed yet, so stdout is the only place to report this
            print(f"Warning: cannot create log directory {self.log_dir} ({e}), using current directory")
            self.log_dir = '.'

    def _file_handler(self, rotation: str, level: int) -> logging.Handler:
        """Build the app.log handler; 'daily' and 'midnight' rotate, anything else appends."""
        path = os.path.join(self.log_dir, LOG_FILE_NAME)

        if str(rotation).lower() in ('daily', 'midnight'):
            handler = logging.handlers.TimedRotatingFileHandler(
                path, when='midnight', backupCount=self.retention_days, encoding='utf-8')
            handler.suffix = '%Y-%m-%d'
        else:
            handler = logging.FileHandler(path, encoding='utf-8')

        handler.setLevel(level)
        handler.setFormatter(logging.Formatter(FILE_FORMAT, datefmt='%Y-%m-%d %H:%M:%S'))
        return handler

    def _console_handler(self, level: int) -> logging.Handler:
        handler = logging.StreamHandler()
        handler.setLevel(level)
        handler.setFormatter(logging.Formatter(CONSOLE_FORMAT, datefmt='%H:%M:%S'))
        return handler

    def _prune_rotated_logs(self) -> None:
        """Delete rotated app.log.* files whose mtime is past the retention period."""
        if not self.log_dir or self.retention_days <= 0:
            return

        log = logging.getLogger(__name__)
        oldest_kept = datetime.now() - timedelta(days=self.retention_days)
        current = os.path.join(self.log_dir, LOG_FILE_NAME)

        for path in self.get_log_files():
            if path == current:
                continue
            try:
                if datetime.fromtimestamp(os.path.getmtime(path)) < oldest_kept:
                    os.remove(path)
                    log.debug(f"Removed expired log file {path}")
            except OSError as e:
                log.warning(f"Could not remove expired log file {path}: {e}")

    def get_log_files(self) -> List[str]:
        """Return app.log and its rotated copies, sorted by name."""
        if not self.log_dir:
            return []
        return sorted(glob.glob(os.path.join(self.log_dir, LOG_FILE_NAME + '*')))

    def get_log_stats(self) -> Dict[str, Any]:
        """Summarise the log directory for the health check."""
        files = self.get_log_files()
        size = 0
        for path in files:
            try:
                size += os.path.getsize(path)
            except OSError:
                continue

        return {
            'configured': self.configured,
            'log_directory': self.log_dir,
            'retention_days': self.retention_days,
            'log_files_count': len(files),
            'total_size_bytes': size,
            'sentry_enabled': self.sentry_enabled
        }


_sentry_scrubber = SensitiveDataFilter()


def scrub_sentry_event(event, hint):
    """before_send hook: mask credentials in the log message of a Sentry event."""
    logentry = event.get('logentry')
    if isinstance(logentry, dict):
        for key in ('message', 'formatted'):
            if isinstance(logentry.get(key), str):
                logentry[key] = _sentry_scrubber.scrub(logentry[key])
        logentry.pop('params', None)
    return event


_logging_manager = LoggingManager()


def setup_logging(config: Optional[Dict[str, Any]]) -> None:
    """Configure process-wide logging from the 'logging' config section."""
    _logging_manager.setup_logging(config)


def get_logging_stats() -> Dict[str, Any]:
    return _logging_manager.get_log_stats()


class SecurityAuditLogger:
    """Audit trail for changes written to the directory."""

    def __init__(self, logger: Optional[logging.Logger] = None):
        self.logger = logger or logging.getLogger('security')

    def log_directory_update(self, identifier: str, attributes: List[str], success: bool):
        """Record an attempted write of user attributes to the directory."""
        outcome = "SUCCESS" if success else "FAILURE"
        self.logger.info(f"Directory update {outcome}: user={identifier} "
                         f"attributes={','.join(sorted(attributes))}")

    def log_configuration_access(self, config_file: str):
        self.logger.info(f"Configuration read from {config_file}")


security_logger = SecurityAuditLogger()
