"""
Main application controller for Mirror Watcher.

Ties together configuration, logging, the folder watcher, the transfer
orchestrator and process-level signal handling, and runs them on one
asyncio event loop until the operator asks it to stop.

Cross-platform: Windows, macOS, and Linux.
"""

import asyncio
import contextlib
import logging
import logging.handlers
import signal
import sys
import threading
from pathlib import Path

from mirror_sync import __app_name__, __version__
from mirror_sync.comparator import Comparator
from mirror_sync.config import Config, get_log_path
from mirror_sync.copier import TransferCopier
from mirror_sync.debounce import EventDebouncer
from mirror_sync.outstanding import OutstandingCountFilter, OutstandingTracker
from mirror_sync.retry import RetryPolicy
from mirror_sync.transfer import TransferOrchestrator
from mirror_sync.watcher import WatchManager

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s [%(levelname)s] [%(outstanding)d] %(name)s: %(message)s"


class MirrorApp:
    """
    Central orchestrator.

    Builds every component from *config*, then ``run()`` blocks until a
    confirmed interrupt or a termination signal.  On the way out the
    outstanding transfers are printed so an operator can audit them.
    """

    def __init__(
        self,
        source: Path,
        destination: Path,
        config: Config,
        observer=None,
    ) -> None:
        self.config = config
        self.source = Path(source)
        self.destination = Path(destination)

        retry = RetryPolicy(
            delay=config.retry_delay,
            max_attempts=config.retry_max_attempts,
            warn_every=config.retry_warn_every,
        )
        self.outstanding = OutstandingTracker()
        self.debouncer = EventDebouncer(config.debounce_timeout, config.debounce_sweep)
        self.watches = WatchManager(
            root=self.source,
            debouncer=self.debouncer,
            observer=observer,
            trash_names=config.trash_names,
            ignored_dirs=config.ignored_dirs,
            scan_delay=config.scan_delay,
            purge_delay=config.purge_delay,
        )
        self.transfers = TransferOrchestrator(
            source_root=self.source,
            destination_root=self.destination,
            copier=TransferCopier(retry),
            comparator=Comparator(config.verify_policy, retry, config.hash_algorithm),
            outstanding=self.outstanding,
            watches=self.watches,
            settle_delay=config.settle_delay,
            purge_delay=config.purge_delay,
            mismatch_recopy_attempts=config.mismatch_recopy_attempts,
        )
        self.watches.on_file = self.transfers.submit

        self._stop_event: asyncio.Event | None = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._confirming = False

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def run(self) -> None:
        """Set up logging and run the daemon until it is stopped."""
        self.setup_logging()
        logger.info("%s %s starting.", __app_name__, __version__)
        logger.info("Mirroring '%s' -> '%s'", self.source, self.destination)
        asyncio.run(self.serve())

    async def serve(self) -> None:
        """Start watching, wait for a stop request, then shut down and report."""
        self._loop = asyncio.get_running_loop()
        self._stop_event = asyncio.Event()
        self._loop.set_exception_handler(self._on_loop_exception)
        self._install_signal_handlers()

        self.debouncer.start(self._loop)
        self.watches.start(self._loop)
        try:
            await self._stop_event.wait()
        finally:
            self.shutdown()

    def request_stop(self) -> None:
        """Ask the event loop to stop (thread-safe)."""
        if self._loop is None or self._stop_event is None:
            return
        self._loop.call_soon_threadsafe(self._stop_event.set)

    def shutdown(self) -> None:
        """Stop watching, abandon in-flight jobs and print what is left."""
        logger.info("Shutting down…")
        self.watches.stop()
        self.debouncer.stop()
        self.transfers.cancel_all()
        logger.info("Transfers: %s", self.transfers.stats.summary())
        print(self.outstanding.report())

    # ------------------------------------------------------------------
    # Signals and faults
    # ------------------------------------------------------------------

    def _install_signal_handlers(self) -> None:
        loop = self._loop
        try:
            loop.add_signal_handler(signal.SIGINT, self._on_interrupt)
            loop.add_signal_handler(signal.SIGTERM, self._stop_event.set)
        except (NotImplementedError, RuntimeError, AttributeError):
            # Windows event loops have no add_signal_handler
            signal.signal(
                signal.SIGINT,
                lambda sig, frame: loop.call_soon_threadsafe(self._on_interrupt),
            )
            signal.signal(signal.SIGTERM, lambda sig, frame: self.request_stop())

        # Faults on the watchdog observer thread are logged, not fatal
        original = threading.excepthook

        def _thread_excepthook(args: threading.ExceptHookArgs) -> None:
            if args.exc_type is SystemExit:
                original(args)
                return
            logger.error(
                "Unhandled fault in thread %s",
                args.thread.name if args.thread else "?",
                exc_info=(args.exc_type, args.exc_value, args.exc_traceback),
            )

        threading.excepthook = _thread_excepthook

    def _on_interrupt(self) -> None:
        """Ctrl-C: ask for confirmation on a console, stop at once otherwise."""
        if self._confirming or not sys.stdin or not sys.stdin.isatty():
            self._stop_event.set()
            return
        self._confirming = True
        self._loop.create_task(self._confirm_exit())

    async def _confirm_exit(self) -> None:
        print()
        print(self.outstanding.report())
        loop = self._loop
        reply: asyncio.Future[str] = loop.create_future()

        def _ask() -> None:
            try:
                answer = input("Really exit? [y/N] ")
            except EOFError:
                answer = "y"
            # The loop may have closed while waiting for the answer
            with contextlib.suppress(RuntimeError):
                loop.call_soon_threadsafe(
                    lambda: reply.done() or reply.set_result(answer)
                )

        # Daemon thread so a pending prompt never blocks interpreter exit
        threading.Thread(target=_ask, daemon=True, name="ConfirmExit").start()
        try:
            answer = await reply
        finally:
            self._confirming = False
        if answer.strip().lower() in ("y", "yes"):
            self._stop_event.set()
        else:
            logger.info("Exit cancelled; still watching.")

    def _on_loop_exception(self, loop: asyncio.AbstractEventLoop, context: dict) -> None:
        exc = context.get("exception")
        logger.error(
            "Unhandled fault: %s",
            context.get("message", "unknown error"),
            exc_info=(type(exc), exc, exc.__traceback__) if exc else None,
        )

    # ------------------------------------------------------------------
    # Logging
    # ------------------------------------------------------------------

    def setup_logging(self) -> None:
        """Configure rotating file log and stderr handler."""
        level = getattr(logging, self.config.log_level.upper(), logging.INFO)
        root_logger = logging.getLogger()
        root_logger.setLevel(level)

        fmt = logging.Formatter(LOG_FORMAT)
        count_filter = OutstandingCountFilter(self.outstanding)

        if self.config.log_to_file:
            # Rotating file handler
            max_bytes = self.config.max_log_size_mb * 1024 * 1024
            fh = logging.handlers.RotatingFileHandler(
                str(get_log_path()),
                maxBytes=max_bytes,
                backupCount=self.config.log_backup_count,
                encoding="utf-8",
            )
            fh.setLevel(level)
            fh.setFormatter(fmt)
            fh.addFilter(count_filter)
            root_logger.addHandler(fh)

        sh = logging.StreamHandler(sys.stderr)
        sh.setLevel(level)
        sh.setFormatter(fmt)
        sh.addFilter(count_filter)
        root_logger.addHandler(sh)
