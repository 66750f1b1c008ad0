"""
One-shot reconciliation of local and remote progress when a document opens.

The decision logic is a pure function, transition(state, event, ctx), that
returns the next state plus a list of actions. ReconciliationEngine owns the
current state and carries the actions out against the client, the view and the
event bus.

    idle --opened--> checking --remote fetched--> synced | conflict
    idle --opened (send)--> synced
    checking --fetch failed--> error
    conflict --resolve local|remote--> synced
"""

import logging
import math
from dataclasses import dataclass
from typing import Callable, Optional, Protocol, Tuple, Union

from .events import CONFLICT_DETECTED, TOAST
from .kosync_client import ProgressRecord
from .positions import (
    FixedPage, LocalProgress, PointerTranslator, WireProgress,
    decode_fixed, decode_flowing, local_identifier, positions_equal, remote_identifier,
)
from .settings import STRATEGY_DISABLED, STRATEGY_PROMPT, STRATEGY_RECEIVE, STRATEGY_SEND, STRATEGY_SILENT

logger = logging.getLogger(__name__)

SYNCED_MESSAGE = "Reading Progress Synced"


# States

@dataclass(frozen=True)
class Idle:
    name = "idle"


@dataclass(frozen=True)
class Checking:
    name = "checking"


@dataclass(frozen=True)
class Synced:
    name = "synced"


@dataclass(frozen=True)
class ConflictDetails:
    local_preview: str
    remote_preview: str
    local_pointer: Optional[str]
    remote: ProgressRecord


@dataclass(frozen=True)
class Conflict:
    details: ConflictDetails
    name = "conflict"


@dataclass(frozen=True)
class Error:
    message: str
    name = "error"


State = Union[Idle, Checking, Synced, Conflict, Error]


# Events

@dataclass(frozen=True)
class Opened:
    pass


@dataclass(frozen=True)
class RemoteFetched:
    record: Optional[ProgressRecord]


@dataclass(frozen=True)
class FetchFailed:
    message: str


@dataclass(frozen=True)
class ResolveLocal:
    pass


@dataclass(frozen=True)
class ResolveRemote:
    pass


# Actions

@dataclass(frozen=True)
class Fetch:
    pass


@dataclass(frozen=True)
class MarkBaseline:
    pass


@dataclass(frozen=True)
class Push:
    immediate: bool = False


@dataclass(frozen=True)
class Navigate:
    record: ProgressRecord
    resolving_conflict: bool = False


@dataclass(frozen=True)
class Notify:
    message: str = SYNCED_MESSAGE


@dataclass(frozen=True)
class RaiseConflict:
    details: ConflictDetails


@dataclass(frozen=True)
class SyncContext:
    """Everything transition() needs to know about the world, captured up front."""
    strategy: str
    has_credentials: bool
    local: LocalProgress
    local_wire: WireProgress
    fixed_layout: bool = False
    tolerance: float = 1e-4


def _round(value: float) -> int:
    return int(math.floor(value + 0.5))


def _page_preview(page: int, total: int, percentage: int, approximate: bool = False) -> str:
    prefix = "Approximately page" if approximate else "Page"
    return f"{prefix} {page} of {total} ({percentage}%)"


def remote_page_total(record: ProgressRecord) -> int:
    """The remote side's page count, inferred from its page and percentage."""
    page = decode_fixed(record.progress)
    if page is None or not record.percentage:
        return 0
    return _round((page.index + 1) / record.percentage)


def build_previews(ctx: SyncContext, record: ProgressRecord) -> Tuple[str, str]:
    remote_pct = record.percentage or 0
    position = ctx.local.position

    if ctx.fixed_layout:
        if isinstance(position, FixedPage):
            local_pct = _round((position.index + 1) / position.total * 100) if position.total > 0 else 0
            local_preview = _page_preview(position.index + 1, position.total, local_pct)
            local_total = position.total
        else:
            local_preview = "Current position"
            local_total = 0

        remote_page = decode_fixed(record.progress)
        if remote_page is not None and remote_pct > 0:
            remote_total = remote_page_total(record)
            remote_preview = _page_preview(
                remote_page.index + 1, remote_total, _round(remote_pct * 100),
                approximate=abs(local_total - remote_total) > 1,
            )
        else:
            remote_preview = f"Approximately {_round(remote_pct * 100)}%"
        return local_preview, remote_preview

    local_pct = _round(ctx.local_wire.percentage * 100)
    local_preview = f"{ctx.local.label or 'Current position'} ({local_pct}%)"
    remote_preview = f"Approximately {_round(remote_pct * 100)}%"
    return local_preview, remote_preview


def _is_first_sync(record: Optional[ProgressRecord]) -> bool:
    return record is None or not record.progress or record.timestamp is None


def _remote_is_newer(record: ProgressRecord, local: LocalProgress) -> bool:
    return record.timestamp * 1000 > (local.updated_at or 0)


def transition(state: State, event, ctx: SyncContext) -> Tuple[State, list]:
    if isinstance(state, Idle) and isinstance(event, Opened):
        if not ctx.has_credentials or ctx.strategy == STRATEGY_DISABLED:
            return state, []
        if ctx.strategy == STRATEGY_SEND:
            return Synced(), [MarkBaseline()]
        return Checking(), [Fetch()]

    if isinstance(state, Checking) and isinstance(event, FetchFailed):
        return Error(event.message), []

    if isinstance(state, Checking) and isinstance(event, RemoteFetched):
        record = event.record
        if _is_first_sync(record):
            if ctx.strategy == STRATEGY_RECEIVE:
                return Synced(), [MarkBaseline()]
            return Synced(), [Push(immediate=True)]

        equal = positions_equal(
            local_identifier(ctx.local.position),
            remote_identifier(record.progress, ctx.fixed_layout),
            ctx.local_wire.percentage,
            record.percentage,
            ctx.tolerance,
        )
        if equal:
            return Synced(), [MarkBaseline()]

        if ctx.strategy == STRATEGY_RECEIVE or (
                ctx.strategy == STRATEGY_SILENT and _remote_is_newer(record, ctx.local)):
            return Synced(), [Navigate(record), Notify()]

        if ctx.strategy == STRATEGY_PROMPT:
            local_preview, remote_preview = build_previews(ctx, record)
            details = ConflictDetails(
                local_preview=local_preview,
                remote_preview=remote_preview,
                local_pointer=local_identifier(ctx.local.position),
                remote=record,
            )
            return Conflict(details), [RaiseConflict(details)]

        # Local wins
        return Synced(), [Push()]

    if isinstance(state, Conflict) and isinstance(event, ResolveLocal):
        return Synced(), [Push(immediate=True)]

    if isinstance(state, Conflict) and isinstance(event, ResolveRemote):
        return Synced(), [Navigate(state.details.remote, resolving_conflict=True), Notify()]

    return state, []


class ReaderView(Protocol):
    def select_page(self, index: int) -> None: ...

    def goto(self, pointer: str) -> None: ...

    def goto_fraction(self, fraction: float) -> None: ...

    def translator(self) -> Optional[PointerTranslator]: ...


@dataclass
class EngineHooks:
    push: Callable[[bool], None] = lambda immediate: None
    mark_baseline: Callable[[], None] = lambda: None


class ReconciliationEngine:
    def __init__(self, client, book, view: Optional[ReaderView] = None, bus=None,
                 hooks: Optional[EngineHooks] = None):
        self.client = client
        self.book = book
        self.view = view
        self.bus = bus
        self.hooks = hooks or EngineHooks()
        self.state: State = Idle()

    @property
    def conflict(self) -> Optional[ConflictDetails]:
        return self.state.details if isinstance(self.state, Conflict) else None

    def handle(self, event, ctx: SyncContext) -> State:
        new_state, actions = transition(self.state, event, ctx)
        if new_state != self.state:
            logger.debug(f"[{self.book.title}] kosync {self.state.name} -> {new_state.name} on {type(event).__name__}")
        self.state = new_state
        for action in actions:
            self._execute(action, ctx)
        return self.state

    def run(self, ctx: SyncContext) -> State:
        self.handle(Opened(), ctx)
        if not isinstance(self.state, Checking):
            return self.state
        try:
            record = self.client.get_progress(self.book)
        except Exception as e:
            logger.error(f"[{self.book.title}] Could not fetch remote progress: {e}")
            return self.handle(FetchFailed(str(e)), ctx)
        return self.handle(RemoteFetched(record), ctx)

    def resolve_local(self, ctx: SyncContext) -> State:
        return self.handle(ResolveLocal(), ctx)

    def resolve_remote(self, ctx: SyncContext) -> State:
        return self.handle(ResolveRemote(), ctx)

    def _execute(self, action, ctx: SyncContext) -> None:
        if isinstance(action, Push):
            self.hooks.push(action.immediate)
        elif isinstance(action, MarkBaseline):
            self.hooks.mark_baseline()
        elif isinstance(action, Navigate):
            self.apply_remote(action.record, ctx, action.resolving_conflict)
        elif isinstance(action, Notify):
            if self.view is not None and self.bus is not None:
                self.bus.dispatch(TOAST, {"message": action.message, "type": "info"})
        elif isinstance(action, RaiseConflict):
            logger.info(f"[{self.book.title}] Progress conflict: local {action.details.local_preview}, "
                        f"remote {action.details.remote_preview}")
            if self.bus is not None:
                self.bus.dispatch(CONFLICT_DETECTED, {"book": self.book, "details": action.details})

    def apply_remote(self, record: ProgressRecord, ctx: SyncContext, resolving_conflict: bool = False) -> bool:
        view = self.view
        if view is None or not record.progress:
            return False

        if ctx.fixed_layout:
            page = decode_fixed(record.progress)
            if not resolving_conflict:
                if page is None:
                    return False
                view.select_page(page.index)
                return True
            position = ctx.local.position
            local_total = position.total if isinstance(position, FixedPage) else 0
            if page is not None and abs(local_total - remote_page_total(record)) <= 1:
                logger.debug(f"Going to remote page {page.index + 1}")
                view.select_page(page.index)
                return True
            if record.percentage is not None:
                logger.debug(f"Going to remote percentage {record.percentage}")
                view.goto_fraction(record.percentage)
                return True
            return False

        target = decode_flowing(record.progress, record.percentage, view.translator())
        if target is None:
            return False
        if target.pointer:
            view.goto(target.pointer)
        else:
            view.goto_fraction(target.fraction)
        return True
