"""
Main entry point for AD User Sync.

This module wires configuration, logging, the source and target repositories,
the SyncService and the SyncWorker together, and provides the command line
interface used to run the service.
"""

import sys
import json
import signal
import logging
import argparse
import threading
from datetime import datetime
from typing import Dict, Any, Optional

from ad_user_sync.config import load_config, ConfigurationError
from ad_user_sync.ldap_client import LDAPClient
from ad_user_sync.logging_setup import setup_logging, get_logging_stats, security_logger
from ad_user_sync.notifications import EmailNotifier
from ad_user_sync.repositories.database import SqlSourceRepository
from ad_user_sync.repositories.directory import LdapTargetRepository
from ad_user_sync.sync import SyncService
from ad_user_sync.worker import SyncWorker

logger = logging.getLogger(__name__)

EXIT_SUCCESS = 0
EXIT_SYNC_FAILED = 1
EXIT_CONFIGURATION_ERROR = 2
EXIT_UNEXPECTED_ERROR = 4


class SyncApplication:
    """
    Hosts the sync worker for the lifetime of the process.

    Builds all components from configuration, handles termination signals
    and maps the outcome to a process exit code.
    """

    def __init__(self, config_path: Optional[str] = None,
                 run_once: bool = False, dry_run: bool = False):
        """
        Initialize the application.

        Args:
            config_path: Path to configuration file
            run_once: Perform a single reconciliation run and exit
            dry_run: Report decisions without writing to the directory
        """
        self.config_path = config_path
        self.run_once = run_once
        self.dry_run = dry_run
        self.config = None
        self.source = None
        self.worker = None
        self.shutdown_requested = threading.Event()

    def run(self) -> int:
        """
        Run the synchronization service.

        Returns:
            One of the EXIT_* codes
        """
        try:
            self._load_configuration()
            setup_logging(self.config.get('logging', {}))
            security_logger.log_configuration_access(self.config_path or 'config.yaml')

            logger.info("Starting AD User Sync")
            self.worker = self._build_worker()

            previous_handlers = self._install_signal_handlers()
            try:
                success = self.worker.run()
            finally:
                self._restore_signal_handlers(previous_handlers)

            return EXIT_SUCCESS if success else EXIT_SYNC_FAILED

        except ConfigurationError as e:
            logger.error(f"Configuration error: {e}")
            return EXIT_CONFIGURATION_ERROR
        except Exception as e:
            # Errors escaping worker.run() were already logged as critical by the worker
            if self.worker is None:
                logger.critical(f"Failed to start sync service: {e}", exc_info=True)
            return EXIT_UNEXPECTED_ERROR
        finally:
            self._cleanup()

    def stop(self):
        """Ask the worker to stop after its current cycle."""
        if self.worker:
            self.worker.stop()

    def request_shutdown(self):
        """Called by the worker when a single run has completed."""
        logger.info("Shutdown requested by sync worker")
        self.shutdown_requested.set()

    def _load_configuration(self):
        """Read the config file; any failure becomes a ConfigurationError."""
        try:
            self.config = load_config(self.config_path)
        except ConfigurationError:
            raise
        except Exception as e:
            raise ConfigurationError(f"Failed to load configuration: {e}")

    def _build_worker(self) -> SyncWorker:
        """Create repositories, the sync service and the worker from configuration."""
        sync_config = self.config['sync']
        field_mappings = sync_config['field_mappings']

        self.source = SqlSourceRepository.from_config(
            self.config['source'],
            logger=logging.getLogger('ad_user_sync.repositories.database')
        )
        target = LdapTargetRepository(
            self.config['ldap'],
            field_mappings,
            identity_field=sync_config['search_by'],
            logger=logging.getLogger('ad_user_sync.repositories.directory')
        )
        service = SyncService(
            self.source,
            target,
            field_mappings,
            search_by=sync_config['search_by'],
            logger=logging.getLogger('ad_user_sync.sync')
        )

        return SyncWorker(
            service,
            dry_run=self.dry_run,
            run_once=self.run_once,
            sync_interval=sync_config['interval_seconds'],
            request_shutdown=self.request_shutdown,
            notifier=EmailNotifier(self.config.get('notifications', {})),
            logger=logging.getLogger('ad_user_sync.worker')
        )

    def _install_signal_handlers(self) -> Dict[int, Any]:
        """Route SIGINT/SIGTERM to a graceful stop. Only possible on the main thread."""
        previous = {}
        if threading.current_thread() is not threading.main_thread():
            return previous

        def handle_signal(signum, frame):
            logger.info(f"Received signal {signum}, stopping")
            self.stop()

        for signum in (signal.SIGINT, signal.SIGTERM):
            previous[signum] = signal.signal(signum, handle_signal)
        return previous

    def _restore_signal_handlers(self, previous: Dict[int, Any]):
        for signum, handler in previous.items():
            signal.signal(signum, handler if handler is not None else signal.SIG_DFL)

    def health_check(self) -> Dict[str, Any]:
        """
        Check that the configuration loads and both stores are reachable.

        Returns:
            Overall status plus a pass/fail entry per check
        """
        health_status = {
            'status': 'healthy',
            'timestamp': datetime.now().isoformat(),
            'checks': {}
        }

        try:
            self._load_configuration()
            health_status['checks']['configuration'] = {
                'status': 'pass',
                'message': 'Configuration loaded successfully'
            }
        except ConfigurationError as e:
            health_status['checks']['configuration'] = {
                'status': 'fail',
                'message': f'Configuration error: {e}'
            }
            health_status['status'] = 'unhealthy'
            return health_status

        try:
            source = SqlSourceRepository.from_config(self.config['source'])
            try:
                source_ok = source.test_connection()
            finally:
                source.close()
        except Exception as e:
            logger.debug(f"Source database health check failed: {e}")
            source_ok = False

        health_status['checks']['source_database'] = {
            'status': 'pass' if source_ok else 'fail',
            'message': 'Source database reachable' if source_ok else 'Source database connection failed'
        }

        ldap_client = LDAPClient(self.config['ldap'])
        try:
            ldap_ok = ldap_client.test_connection()
        finally:
            ldap_client.disconnect()

        health_status['checks']['ldap'] = {
            'status': 'pass' if ldap_ok else 'fail',
            'message': 'LDAP connection successful' if ldap_ok else 'LDAP connection failed'
        }

        if not (source_ok and ldap_ok):
            health_status['status'] = 'unhealthy'

        health_status['checks']['logging'] = get_logging_stats()
        return health_status

    def _cleanup(self):
        """Release the source database connection pool."""
        if self.source:
            self.source.close()
            self.source = None


def main():
    """Console script entry point: parse flags, run, exit with the run's code."""
    parser = argparse.ArgumentParser(description='Synchronize user attributes from the HR database into Active Directory')
    parser.add_argument('--config', '-c', help='Path to configuration file')
    parser.add_argument('--once', action='store_true',
                        help='Run a single synchronization and exit')
    parser.add_argument('--dry-run', action='store_true',
                        help='Report required changes without writing to the directory')
    parser.add_argument('--health-check', action='store_true',
                        help='Print a JSON health report and exit')
    parser.add_argument('--test-email', action='store_true',
                        help='Send a test alert email and exit')

    args = parser.parse_args()

    app = SyncApplication(config_path=args.config, run_once=args.once, dry_run=args.dry_run)

    if args.health_check:
        health_status = app.health_check()
        print(json.dumps(health_status, indent=2))
        sys.exit(0 if health_status['status'] == 'healthy' else 1)

    elif args.test_email:
        try:
            app._load_configuration()
        except ConfigurationError as e:
            print(f"Test email could not be sent: {e}")
            sys.exit(EXIT_CONFIGURATION_ERROR)

        if EmailNotifier(app.config.get('notifications', {})).send_test_message():
            print("Test email sent")
            sys.exit(0)
        print("Test email not sent, check the notifications section and the log")
        sys.exit(1)

    else:
        sys.exit(app.run())


if __name__ == "__main__":
    main()
