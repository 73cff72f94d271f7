"""
Main orchestrator for the grade notifier.

Coordinates one check:
1. Resolve the portal password
2. Log in to the portal
3. Fetch the current grades
4. Compare them with the last committed snapshot
5. Email the new grades
6. Commit the fetched snapshot

The snapshot is only committed after the email went out, or when there was
nothing to send, so a failed run is retried from the same baseline.
"""

import logging
import sys
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional

import click

from grade_notifier.auth import CredentialResolver, PortalSession
from grade_notifier.config import Settings, load_settings, setup_logging
from grade_notifier.db import JsonSnapshotStore
from grade_notifier.diff import diff_snapshots
from grade_notifier.exceptions import (
    ConfigError,
    GradeNotifierError,
    ParseError,
    SessionExpiredError,
)
from grade_notifier.models import GradeOverview, GradeSnapshot
from grade_notifier.notify import MailTransport, Notifier, SmtpTransport
from grade_notifier.scrapers import GradeFetcher

logger = logging.getLogger(__name__)

MIN_INTERVAL_MINUTES = 10.0


@dataclass
class RunResult:
    """Outcome of one successful check."""
    total_grades: int
    new_grades: int
    notified: bool


class GradeMonitor:
    """
    Runs grade checks for one student.

    Keep one instance per process: it holds the credential resolver, so
    password commands run once however many checks are made.
    """

    def __init__(
        self,
        settings: Settings,
        store: Optional[JsonSnapshotStore] = None,
        transport: Optional[MailTransport] = None,
        resolver: Optional[CredentialResolver] = None,
        session_factory: Callable[[Settings], PortalSession] = PortalSession,
    ):
        """
        Initialize the monitor with all components.

        Args:
            settings: Validated settings
            store: Snapshot store, defaults to a JSON file at settings.snapshot_path
            transport: Mail transport, defaults to SMTP built from settings
            resolver: Credential resolver shared by every check
            session_factory: Builds a fresh portal session per check
        """
        self.settings = settings
        self.store = store or JsonSnapshotStore(settings.snapshot_path)
        self.resolver = resolver or CredentialResolver()
        self.session_factory = session_factory
        self.notifier = Notifier(settings.recipient_emails)
        self._transport = transport

    @property
    def transport(self) -> MailTransport:
        """SMTP transport, built on first use so its password is resolved lazily."""
        if self._transport is None:
            credential = self.settings.smtp_credential
            self._transport = SmtpTransport(
                host=self.settings.smtp_host,
                port=self.settings.effective_smtp_port,
                sender=self.settings.sender_address,
                username=self.settings.smtp_username,
                password=self.resolver.resolve(credential) if credential else None,
                security=self.settings.smtp_security,
                timeout=self.settings.smtp_timeout,
            )
        return self._transport

    def run(self) -> RunResult:
        """
        Execute one check.

        Returns:
            RunResult: What the check found and did

        Raises:
            GradeNotifierError: Any failure; the stored snapshot is then
                left as it was
        """
        logger.info("=" * 50)
        logger.info("Starting grade check")
        logger.info("=" * 50)

        try:
            result = self._run()
        except GradeNotifierError as e:
            logger.error(f"Grade check failed ({e.kind}): {e}")
            if self.settings.notify_errors:
                self._report_error(e)
            raise

        self._log_summary(result)
        return result

    def _run(self) -> RunResult:
        password = self.resolver.resolve(self.settings.portal_credential)

        with self.session_factory(self.settings) as session:
            fetcher = GradeFetcher(session)
            current = self._fetch(session, fetcher, password)

            first_run = not self.store.exists()
            previous = self.store.load()
            if len(current) == 0 and len(previous) > 0:
                raise ParseError(
                    f"Portal returned no grades but {len(previous)} are on record; "
                    "keeping the stored snapshot"
                )
            delta = diff_snapshots(previous, current)

            notified = False
            if first_run and not self.settings.notify_on_first_run:
                logger.info("First run: recording baseline without notification")
            elif not delta.is_empty:
                overview = self._fetch_overview(fetcher)
                self.notifier.notify(delta, self.transport, overview)
                notified = True

        self.store.save(current)
        return RunResult(
            total_grades=len(current),
            new_grades=len(delta),
            notified=notified,
        )

    def _fetch(
        self,
        session: PortalSession,
        fetcher: GradeFetcher,
        password: str,
    ) -> GradeSnapshot:
        """
        Log in and fetch the current snapshot.

        On session expiry, logs in again and retries exactly once if
        relogin_on_expiry is set. A second expiry is final.
        """
        username = self.settings.portal_username
        session.login(username, password)
        try:
            return fetcher.fetch_snapshot()
        except SessionExpiredError:
            if not self.settings.relogin_on_expiry:
                raise
            logger.warning("Session expired during fetch; logging in again once")
            session.login(username, password)
            return fetcher.fetch_snapshot()

    def _fetch_overview(self, fetcher: GradeFetcher) -> Optional[GradeOverview]:
        """GPA overview for the email. A failure here never blocks the grades."""
        if not self.settings.include_overview:
            return None
        try:
            return fetcher.scrape_overview()
        except GradeNotifierError as e:
            logger.warning(f"Sending without GPA overview ({e.kind}): {e}")
            return None

    def _report_error(self, error: GradeNotifierError) -> None:
        try:
            self.notifier.notify_error(error, self.transport)
        except GradeNotifierError as e:
            logger.error(f"Could not send error report ({e.kind}): {e}")

    def _log_summary(self, result: RunResult) -> None:
        """Log execution summary."""
        logger.info("=" * 50)
        logger.info("Grade Check Complete - Summary")
        logger.info("=" * 50)
        logger.info(f"Grades fetched:   {result.total_grades}")
        logger.info(f"New grades:       {result.new_grades}")
        logger.info(f"Email sent:       {'yes' if result.notified else 'no'}")
        logger.info("=" * 50)


def watch(monitor: GradeMonitor, interval_minutes: float) -> None:
    """Run checks forever, sleeping between them. Failed checks are logged and retried."""
    while True:
        try:
            monitor.run()
        except GradeNotifierError:
            # already logged by the monitor
            pass
        logger.info(f"Sleep for {interval_minutes:.1f} minutes")
        time.sleep(60 * interval_minutes)


@click.command()
@click.option(
    "-c", "--config", "config_file",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="TOML config file (default: ./config.toml if present)",
)
@click.option(
    "--interval",
    type=float,
    default=None,
    help=f"Keep running, checking every N minutes (at least {MIN_INTERVAL_MINUTES:g}).",
)
def cli(config_file: Optional[Path], interval: Optional[float]) -> None:
    """Check the academic-records portal and email newly published grades."""
    if interval is not None and interval < MIN_INTERVAL_MINUTES:
        raise click.BadParameter(
            f"Interval {interval} is too small, should be >= {MIN_INTERVAL_MINUTES:g}.",
            param_hint="--interval",
        )

    try:
        settings = load_settings(config_file)
    except ConfigError as e:
        click.echo(f"Configuration error: {e}", err=True)
        sys.exit(1)

    setup_logging(settings)
    logger.debug(f"Loaded configuration for {settings.portal_base_url}")

    monitor = GradeMonitor(settings)
    if interval is not None:
        watch(monitor, interval)
        return

    try:
        monitor.run()
    except GradeNotifierError as e:
        click.echo(f"{e.kind}: {e}", err=True)
        sys.exit(1)


if __name__ == "__main__":
    cli()
