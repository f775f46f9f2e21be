"""
Email alerts for AD User Sync.

The worker reports failed sync cycles and fatal errors through an
EmailNotifier. Alerts go out over SMTP (STARTTLS or implicit TLS on port 465)
and are only sent when enabled in the 'notifications' config section.
"""

import socket
import smtplib
import logging
from datetime import datetime
from email.mime.text import MIMEText
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)

SMTP_SSL_PORT = 465
SUBJECT_PREFIX = "AD User Sync"


class EmailNotifier:
    """
    Sends sync failure alerts by email.

    Instances are callable with (title, message) so they can be handed to
    SyncWorker as its notifier.
    """

    def __init__(self, config: Dict[str, Any], log: Optional[logging.Logger] = None):
        """
        Initialize the notifier.

        Args:
            config: The 'notifications' configuration section
            log: Logger to use (defaults to the module logger)
        """
        self.logger = log or logger
        self.enabled = bool(config.get('enable_email', False))
        self.on_failure = bool(config.get('email_on_failure', True))

        self.smtp_server = config.get('smtp_server')
        self.smtp_port = int(config.get('smtp_port', 587))
        self.smtp_tls = bool(config.get('smtp_tls', True))
        self.smtp_username = config.get('smtp_username')
        self.smtp_password = config.get('smtp_password')

        self.sender = config.get('email_from') or self.smtp_username
        self.recipients = self._recipient_list(config.get('email_to'))

    @staticmethod
    def _recipient_list(value) -> List[str]:
        if not value:
            return []
        if isinstance(value, str):
            return [value]
        return list(value)

    def send(self, subject: str, body: str) -> bool:
        """
        Send a plain-text message to all configured recipients.

        Returns:
            True if the SMTP server accepted the message, False otherwise
        """
        if not self.enabled:
            self.logger.debug(f"Email disabled, not sending: {subject}")
            return False
        if not self.smtp_server:
            self.logger.error("Cannot send email: notifications.smtp_server is not set")
            return False
        if not self.recipients:
            self.logger.error("Cannot send email: notifications.email_to is empty")
            return False

        message = MIMEText(body, 'plain')
        message['Subject'] = subject
        message['From'] = self.sender or ''
        message['To'] = ', '.join(self.recipients)

        try:
            with self._open_connection() as smtp:
                if self.smtp_username and self.smtp_password:
                    smtp.login(self.smtp_username, self.smtp_password)
                smtp.sendmail(self.sender, self.recipients, message.as_string())
        except (smtplib.SMTPException, OSError) as e:
            self.logger.error(f"Sending '{subject}' via {self.smtp_server}:{self.smtp_port} failed: {e}")
            return False

        self.logger.info(f"Sent '{subject}' to {len(self.recipients)} recipient(s)")
        return True

    def _open_connection(self) -> smtplib.SMTP:
        if self.smtp_port == SMTP_SSL_PORT:
            return smtplib.SMTP_SSL(self.smtp_server, self.smtp_port)

        smtp = smtplib.SMTP(self.smtp_server, self.smtp_port)
        if self.smtp_tls:
            try:
                smtp.starttls()
            except (smtplib.SMTPException, OSError):
                smtp.close()
                raise
        return smtp

    def notify_failure(self, title: str, message: str,
                       details: Optional[Dict[str, Any]] = None) -> bool:
        """
        Send an alert about a failed sync run.

        Args:
            title: Short description of what failed (e.g. 'Sync Cycle Failed')
            message: Error text
            details: Extra key/value pairs to include in the body

        Returns:
            True if the alert was sent
        """
        if not self.on_failure:
            self.logger.debug(f"Failure alerts disabled, not sending: {title}")
            return False

        lines = [
            f"AD User Sync reported a failure on {socket.gethostname()}.",
            "",
            f"What failed: {title}",
            f"When: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}",
            f"Error: {message}",
        ]
        for key, value in (details or {}).items():
            lines.append(f"{key}: {value}")
        lines.extend([
            "",
            "The service keeps running in continuous mode; see app.log in the "
            "configured log directory for the full traceback.",
        ])

        return self.send(f"{SUBJECT_PREFIX} Alert: {title}", '\n'.join(lines))

    def __call__(self, title: str, message: str) -> bool:
        return self.notify_failure(title, message)

    def send_test_message(self) -> bool:
        """Send a message that only confirms the SMTP settings work."""
        body = (
            "This message confirms that AD User Sync can deliver email alerts.\n\n"
            f"SMTP server: {self.smtp_server}:{self.smtp_port}\n"
            f"Sender: {self.sender}\n"
            f"Recipients: {', '.join(self.recipients)}\n"
        )
        sent = self.send(f"{SUBJECT_PREFIX}: Configuration Test", body)
        if sent:
            self.logger.info("Test email delivered to the SMTP server")
        else:
            self.logger.error("Test email could not be sent")
        return sent
