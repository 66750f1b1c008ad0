import logging
import uuid
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Callable, Optional

from .digest import Book
from .events import FLUSH_SYNC
from .kosync_client import KoSyncClient
from .positions import LocalProgress, encode
from .push_scheduler import PushScheduler
from .reconcile import Conflict, EngineHooks, ReconciliationEngine, SyncContext, Synced
from .settings import SyncSettings

logger = logging.getLogger(__name__)


class SyncSession:
    """
    Progress sync for one open document, from open to close.

    Reconciliation runs once per session on a single worker thread, as soon as
    the reader has reported a position. After that, every local progress change
    goes through the debounced push scheduler. Debounced pushes fire on the
    scheduler's ticker thread and flushes run on the worker, but both go
    through the scheduler's run lock, so two pushes never overlap.
    """

    def __init__(self, book: Book,
                 settings_provider: Callable[[], SyncSettings],
                 progress_provider: Callable[[], Optional[LocalProgress]],
                 view=None, bus=None,
                 client_factory: Callable[[SyncSettings], KoSyncClient] = KoSyncClient,
                 book_key: Optional[str] = None,
                 autostart: bool = True):
        self.book = book
        self.book_key = book_key or book.hash or book.title
        self.session_id = uuid.uuid4().hex
        self.view = view
        self.bus = bus
        self.last_pushed: Optional[str] = None

        self._settings = settings_provider
        self._progress = progress_provider
        self._client_factory = client_factory
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix=f"kosync-{self.session_id[:8]}")
        self._open_future: Optional[Future] = None
        # Set once reconciliation has run against a real local position
        self._checked = False
        self._closed = False

        self.engine = ReconciliationEngine(
            None, book, view, bus,
            hooks=EngineHooks(push=self._push_requested, mark_baseline=self.mark_baseline),
        )
        self.scheduler = PushScheduler(self._push, wait=settings_provider().push_delay, autostart=autostart)
        if bus is not None:
            bus.on(FLUSH_SYNC, self._handle_flush)

    @property
    def state(self):
        return self.engine.state

    @property
    def conflict(self):
        return self.engine.conflict

    def _translator(self):
        if self.view is None:
            return None
        try:
            return self.view.translator()
        except Exception as e:
            logger.debug(f"No pointer translator for {self.book.title}: {e}")
            return None

    def _context(self) -> Optional[SyncContext]:
        settings = self._settings()
        local = self._progress()
        if local is None:
            return None
        return SyncContext(
            strategy=settings.strategy,
            has_credentials=settings.has_credentials,
            local=local,
            local_wire=encode(local.position, self._translator()),
            fixed_layout=self.book.is_fixed_layout,
            tolerance=settings.percentage_tolerance,
        )

    def _submit(self, fn, *args) -> Future:
        if self._closed:
            done = Future()
            done.set_result(None)
            return done
        return self._executor.submit(fn, *args)

    # Reconciliation

    def open(self) -> Future:
        if self._open_future is not None and (self._checked or not self._open_future.done()):
            return self._open_future
        self._open_future = self._submit(self._reconcile)
        return self._open_future

    def _reconcile(self):
        ctx = self._context()
        if ctx is None:
            logger.debug(f"[{self.book.title}] No local progress yet, sync check deferred")
            return self.engine.state
        self._checked = True
        self.engine.client = self._client_factory(self._settings())
        return self.engine.run(ctx)

    def resolve_conflict(self, choice: str) -> Future:
        if choice not in ("local", "remote"):
            raise ValueError(f"Unknown conflict choice: {choice}")
        return self._submit(self._resolve, choice)

    def _resolve(self, choice: str):
        if not isinstance(self.engine.state, Conflict):
            return self.engine.state
        ctx = self._context()
        if ctx is None:
            return self.engine.state
        if choice == "local":
            return self.engine.resolve_local(ctx)
        return self.engine.resolve_remote(ctx)

    # Pushing

    def mark_baseline(self) -> None:
        local = self._progress()
        if local is None:
            return
        baseline = encode(local.position, self._translator()).progress
        with self.scheduler.run_lock:
            self.last_pushed = baseline

    def _push_requested(self, immediate: bool) -> None:
        self.scheduler.schedule()
        if immediate:
            self.scheduler.flush()

    def on_progress_changed(self) -> None:
        if self._closed:
            return
        if not self._checked and self._open_future is not None and self._open_future.done():
            # Opened before the reader had a position; run the deferred check now
            self.open()
            return
        if not isinstance(self.engine.state, Synced):
            return
        if not self._settings().can_push:
            return
        self.scheduler.schedule()

    def _push(self) -> None:
        settings = self._settings()
        if not settings.can_push:
            return
        local = self._progress()
        if local is None:
            return
        wire = encode(local.position, self._translator())
        if wire.progress == self.last_pushed:
            logger.debug(f"[{self.book.title}] Progress unchanged since last push, skipping")
            return
        client = self._client_factory(settings)
        if client.update_progress(self.book, wire.progress, wire.percentage):
            self.last_pushed = wire.progress

    def _handle_flush(self, event) -> None:
        if event.get("book_key") == self.book_key:
            self.flush()

    def flush(self) -> Future:
        return self._submit(self.scheduler.flush)

    def close(self) -> Future:
        if self._closed:
            return self._submit(lambda: None)
        if self.bus is not None:
            self.bus.off(FLUSH_SYNC, self._handle_flush)
        final = self._submit(self.scheduler.flush)
        self._submit(self.scheduler.close)
        self._closed = True
        self._executor.shutdown(wait=False)
        return final
