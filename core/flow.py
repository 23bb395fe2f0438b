"""
Generative radar intake: the state machine behind "type a topic, review the
proposal, create the radar".

States
──────
input         user is typing; no interpretation is active
interpreting  one live interpretation request; partial results may arrive
review        final interpretation received; fields editable
creating      confirmation issued; one creation call in flight
complete      creation succeeded (terminal)

Every transition is triggered by an event taken from a single asyncio queue
and handled synchronously, so no transition can interleave with another.
Events come from the debouncer (settled input), from the per-request pump
task (partial / final / failure), from the creation task, and from user
actions (restart, confirm, retry). Events tagged with a request ID that is
no longer live are dropped.
"""

from __future__ import annotations

import asyncio
import copy
import logging
from collections.abc import Callable, Coroutine
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Optional

from config.settings import Settings
from core.creator import HttpRadarCreator, RadarCreator
from core.debouncer import Debouncer
from core.errors import CreationFailed, InterpretationCancelled, InterpretationFailed
from core.interpreter import InterpretationCall, InterpretationClient
from core.models import (
    Cadence,
    CadenceOption,
    CreatedRadar,
    Interpretation,
    RadarDraft,
    cadence_label,
)

if TYPE_CHECKING:
    from core.models import InterpretationRequest

logger = logging.getLogger(__name__)


class FlowState(str, Enum):
    INPUT = "input"
    INTERPRETING = "interpreting"
    REVIEW = "review"
    CREATING = "creating"
    COMPLETE = "complete"


# ── Editable fields ────────────────────────────────────────────────────────


@dataclass
class EditableField:
    """One reviewable value: the model's suggestion plus the user's override."""

    name: str
    suggested: str = ""
    override: Optional[str] = None
    required: bool = False

    @property
    def value(self) -> str:
        return self.override if self.override is not None else self.suggested

    @property
    def edited(self) -> bool:
        return self.override is not None

    def edit(self, value: str) -> None:
        self.override = value

    def reset(self) -> None:
        self.override = None


@dataclass
class ReviewFields:
    """The editable projection of an interpretation.

    ``speculative`` fields are built from partial snapshots while the flow is
    still interpreting; they are for display only.
    """

    topic: EditableField
    description: EditableField
    cadence: EditableField
    cadence_options: list[CadenceOption] = field(default_factory=list)
    schedule_description: str = ""
    intent: str = ""
    insights: list[str] = field(default_factory=list)
    speculative: bool = False

    @classmethod
    def from_interpretation(
        cls,
        interpretation: Interpretation,
        speculative: bool = False,
    ) -> ReviewFields:
        return cls(
            topic=EditableField("topic", interpretation.what.topic or "", required=True),
            description=EditableField("description", interpretation.what.description or ""),
            cadence=EditableField(
                "cadence", interpretation.recommended_cadence(), required=True
            ),
            cadence_options=list(interpretation.when.options),
            schedule_description=interpretation.when.schedule_description or "",
            intent=interpretation.why.intent or "",
            insights=list(interpretation.why.insights),
            speculative=speculative,
        )

    @property
    def schedule_label(self) -> str:
        """What to show under "when": the chosen option, else the model's schedule."""
        if self.cadence.edited or not self.schedule_description:
            for option in self.cadence_options:
                if option.value == self.cadence.value and option.label:
                    return option.label
            return cadence_label(self.cadence.value)
        return self.schedule_description

    def allowed_cadences(self) -> set[str]:
        return {o.value for o in self.cadence_options if o.value} | {c.value for c in Cadence}

    def missing(self) -> list[str]:
        """Names of required fields whose current value is blank."""
        return [
            f.name
            for f in (self.topic, self.description, self.cadence)
            if f.required and not f.value.strip()
        ]

    def to_draft(self) -> RadarDraft:
        return RadarDraft(
            topic=self.topic.value.strip(),
            description=self.description.value.strip() or None,
            cadence=self.cadence.value.strip(),
        )


# ── Events ─────────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class InputSettled:
    text: str


@dataclass(frozen=True)
class PartialReceived:
    request_id: str
    interpretation: Interpretation


@dataclass(frozen=True)
class InterpretationCompleted:
    request_id: str
    interpretation: Interpretation


@dataclass(frozen=True)
class InterpretationErrored:
    request_id: str
    error: InterpretationFailed


@dataclass(frozen=True)
class RestartRequested:
    pass


@dataclass(frozen=True)
class RetryRequested:
    pass


@dataclass(frozen=True)
class ConfirmRequested:
    pass


@dataclass(frozen=True)
class CreationSucceeded:
    radar: CreatedRadar


@dataclass(frozen=True)
class CreationErrored:
    error: CreationFailed


FlowEvent = (
    InputSettled
    | PartialReceived
    | InterpretationCompleted
    | InterpretationErrored
    | RestartRequested
    | RetryRequested
    | ConfirmRequested
    | CreationSucceeded
    | CreationErrored
)


@dataclass(frozen=True)
class FlowSnapshot:
    """Read-only view of the flow handed to subscribers."""

    state: FlowState
    raw_input: str
    debounced_input: str
    interpretation: Optional[Interpretation]
    fields: Optional[ReviewFields]
    error: Optional[str]
    created: Optional[CreatedRadar]


# ── State machine ──────────────────────────────────────────────────────────


class RadarIntakeFlow:
    """Drives one radar creation from free text to a stored radar.

    Use as an async context manager, or call :meth:`start` / :meth:`close`.
    One instance creates at most one radar; start a new flow for another.
    """

    def __init__(
        self,
        client: InterpretationClient,
        creator: RadarCreator,
        settings: Optional[Settings] = None,
    ) -> None:
        """Initialise the flow.

        Args:
            client: Interpretation client used for every request.
            creator: Creation adapter called on confirmation.
            settings: Supplies ``debounce_ms`` and ``min_input_length``.
        """
        self.settings = settings or Settings()
        self.client = client
        self.creator = creator

        self.state = FlowState.INPUT
        self.raw_input = ""
        self.last_interpreted: Optional[str] = None
        self.interpretation: Optional[Interpretation] = None
        self.created: Optional[CreatedRadar] = None
        self.error: Optional[str] = None

        self._fields: Optional[ReviewFields] = None
        self._held_fields: Optional[ReviewFields] = None
        self._call: Optional[InterpretationCall] = None
        self._debouncer = Debouncer(self.settings.debounce_seconds, on_settle=self._on_settle)
        self._queue: asyncio.Queue[FlowEvent] = asyncio.Queue()
        self._worker: Optional[asyncio.Task] = None
        self._tasks: set[asyncio.Task] = set()
        self._listeners: list[Callable[[FlowSnapshot], None]] = []
        self._waiters: list[tuple[frozenset[FlowState], asyncio.Future]] = []
        self._handlers: dict[type, Callable[[Any], None]] = {
            InputSettled: self._on_input_settled,
            PartialReceived: self._on_partial,
            InterpretationCompleted: self._on_completed,
            InterpretationErrored: self._on_interpretation_error,
            RestartRequested: self._on_restart,
            RetryRequested: self._on_retry,
            ConfirmRequested: self._on_confirm,
            CreationSucceeded: self._on_created,
            CreationErrored: self._on_creation_error,
        }

    @classmethod
    def from_settings(cls, settings: Settings) -> RadarIntakeFlow:
        """Build a flow wired to the HTTP interpretation and storage services."""
        return cls(
            client=InterpretationClient(settings),
            creator=HttpRadarCreator(settings),
            settings=settings,
        )

    # ── Lifecycle ──────────────────────────────────────────────────────────

    async def __aenter__(self) -> RadarIntakeFlow:
        self.start()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    def start(self) -> None:
        """Start the event worker on the running loop (idempotent)."""
        if self._worker is None or self._worker.done():
            self._worker = asyncio.get_running_loop().create_task(self._run())

    async def close(self) -> None:
        """Cancel pending input, the live request and any background task."""
        self._debouncer.cancel()
        if self._call is not None:
            self._call.cancel()
        tasks = list(self._tasks)
        if self._worker is not None:
            tasks.append(self._worker)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._worker = None
        for _, waiter in self._waiters:
            if not waiter.done():
                waiter.cancel()
        self._waiters.clear()

    # ── Read side ──────────────────────────────────────────────────────────

    @property
    def debounced_input(self) -> str:
        return self._debouncer.value

    @property
    def fields(self) -> Optional[ReviewFields]:
        """Review fields; speculative while interpreting, None otherwise."""
        return self._fields

    @property
    def live_request(self) -> Optional[InterpretationRequest]:
        if self._call is None or self._call.cancelled:
            return None
        return self._call.request

    @property
    def can_confirm(self) -> bool:
        return (
            self.state is FlowState.REVIEW
            and self._fields is not None
            and not self._fields.missing()
            and self.debounced_input.strip() == self.last_interpreted
        )

    def snapshot(self) -> FlowSnapshot:
        return FlowSnapshot(
            state=self.state,
            raw_input=self.raw_input,
            debounced_input=self.debounced_input,
            interpretation=self.interpretation,
            fields=copy.deepcopy(self._fields),
            error=self.error,
            created=self.created,
        )

    def subscribe(self, listener: Callable[[FlowSnapshot], None]) -> Callable[[], None]:
        """Call *listener* with a snapshot after every handled event.

        Returns:
            A function that removes the listener.
        """
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    async def wait_for(self, *states: FlowState, timeout: Optional[float] = None) -> FlowState:
        """Wait until the flow enters one of *states* and return it."""
        if self.state in states:
            return self.state
        waiter = asyncio.get_running_loop().create_future()
        entry = (frozenset(states), waiter)
        self._waiters.append(entry)
        try:
            return await asyncio.wait_for(waiter, timeout)
        finally:
            if entry in self._waiters:
                self._waiters.remove(entry)

    async def drain(self) -> None:
        """Wait until every event posted so far has been handled."""
        await self._queue.join()

    # ── User actions ───────────────────────────────────────────────────────

    def type(self, text: str) -> None:
        """Record a keystroke; the debouncer decides when it counts."""
        self.raw_input = text
        self._debouncer.observe(text)

    def choose_suggestion(self, text: str) -> None:
        """Fill the input with a suggestion and interpret it without waiting."""
        self.type(text)
        self._debouncer.flush()

    def restart(self) -> None:
        self.post(RestartRequested())

    def retry(self) -> None:
        """Re-run a failed interpretation for the current input."""
        self.post(RetryRequested())

    def confirm(self) -> None:
        self.post(ConfirmRequested())

    def edit_topic(self, value: str) -> bool:
        return self._edit("topic", value)

    def edit_description(self, value: str) -> bool:
        return self._edit("description", value)

    def select_cadence(self, value: str) -> bool:
        """Override the suggested cadence.

        Raises:
            ValueError: If *value* is neither an offered option nor a known
                cadence.
        """
        if self.state is FlowState.REVIEW and self._fields is not None:
            value = value.strip()
            if value not in self._fields.allowed_cadences():
                raise ValueError(f"Unknown cadence {value!r}.")
        return self._edit("cadence", value)

    def reset_field(self, name: str) -> bool:
        """Drop the user's override so the suggestion applies again."""
        if not self._editable():
            return False
        getattr(self._fields, name).reset()
        self._notify()
        return True

    # ── Event plumbing ─────────────────────────────────────────────────────

    def post(self, event: FlowEvent) -> None:
        self.start()
        self._queue.put_nowait(event)

    async def _run(self) -> None:
        while True:
            event = await self._queue.get()
            try:
                self._handlers[type(event)](event)
                self._notify()
            except Exception:
                logger.exception(
                    "Error handling %s in state %s", type(event).__name__, self.state.value
                )
            finally:
                self._queue.task_done()

    def _spawn(self, coro: Coroutine[Any, Any, None]) -> None:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def _on_settle(self, value: str) -> None:
        self.post(InputSettled(value))

    def _set_state(self, state: FlowState) -> None:
        if state is self.state:
            return
        logger.info("Intake flow %s -> %s", self.state.value, state.value)
        self.state = state
        for states, waiter in list(self._waiters):
            if state in states and not waiter.done():
                waiter.set_result(state)

    def _notify(self) -> None:
        if not self._listeners:
            return
        snap = self.snapshot()
        for listener in list(self._listeners):
            listener(snap)

    def _is_live(self, request_id: str) -> bool:
        return self._call is not None and not self._call.cancelled and self._call.request_id == request_id

    def _editable(self) -> bool:
        if self.state is not FlowState.REVIEW or self._fields is None:
            logger.debug("Ignoring edit in state %s", self.state.value)
            return False
        return True

    def _edit(self, name: str, value: str) -> bool:
        if not self._editable():
            return False
        getattr(self._fields, name).edit(value)
        self.error = None
        self._notify()
        return True

    # ── Transitions ────────────────────────────────────────────────────────

    def _discard(self) -> None:
        """Cancel the outgoing request and forget everything derived from it."""
        if self._call is not None:
            self._call.cancel()
        self._call = None
        self.last_interpreted = None
        self.interpretation = None
        self._fields = None

    def _maybe_interpret(self, text: str) -> None:
        if self.state is not FlowState.INPUT or self._call is not None:
            return
        if len(text) < self.settings.min_input_length:
            return
        call = self.client.interpret(text)
        self._call = call
        self.last_interpreted = text
        self.interpretation = None
        self._fields = None
        self.error = None
        self._set_state(FlowState.INTERPRETING)
        self._spawn(self._pump(call))

    def _on_input_settled(self, event: InputSettled) -> None:
        text = event.text.strip()
        if self.state in (FlowState.CREATING, FlowState.COMPLETE):
            logger.debug("Input change ignored while %s", self.state.value)
            return
        if self.state in (FlowState.INTERPRETING, FlowState.REVIEW):
            if text == self.last_interpreted:
                return
        self._supersede(text)

    def _supersede(self, text: str) -> None:
        """Drop the current interpretation and start over from *text*."""
        if self.state is not FlowState.INPUT:
            self._discard()
            self._set_state(FlowState.INPUT)
        if not text:
            self.error = None
            return
        self._maybe_interpret(text)

    def _on_partial(self, event: PartialReceived) -> None:
        if self.state is not FlowState.INTERPRETING or not self._is_live(event.request_id):
            logger.debug("Dropping stale partial for request %s", event.request_id)
            return
        current = self.interpretation or Interpretation()
        self.interpretation = current.merge(event.interpretation)
        self._fields = ReviewFields.from_interpretation(self.interpretation, speculative=True)

    def _on_completed(self, event: InterpretationCompleted) -> None:
        if self.state is not FlowState.INTERPRETING or not self._is_live(event.request_id):
            logger.debug("Dropping stale result for request %s", event.request_id)
            return
        self.interpretation = event.interpretation
        self._fields = ReviewFields.from_interpretation(event.interpretation)
        self.error = None
        self._set_state(FlowState.REVIEW)

    def _on_interpretation_error(self, event: InterpretationErrored) -> None:
        if self.state is not FlowState.INTERPRETING or not self._is_live(event.request_id):
            logger.debug("Dropping stale failure for request %s", event.request_id)
            return
        self._discard()
        self.error = str(event.error)
        self._set_state(FlowState.INPUT)

    def _on_restart(self, event: RestartRequested) -> None:
        if self.state is not FlowState.REVIEW:
            logger.debug("Restart ignored in state %s", self.state.value)
            return
        self._discard()
        self.raw_input = ""
        self._debouncer.reset()
        self.error = None
        self._set_state(FlowState.INPUT)

    def _on_retry(self, event: RetryRequested) -> None:
        if self.state is not FlowState.INPUT or self.error is None:
            return
        self._maybe_interpret(self.debounced_input.strip())

    def _on_confirm(self, event: ConfirmRequested) -> None:
        if self.state is not FlowState.REVIEW or self._fields is None:
            logger.debug("Confirm ignored in state %s", self.state.value)
            return
        missing = self._fields.missing()
        if missing:
            self.error = "Please fill in: " + ", ".join(missing) + "."
            return
        if self.debounced_input.strip() != self.last_interpreted:
            self.error = "The input changed; wait for the new interpretation."
            return

        draft = self._fields.to_draft()
        self._held_fields, self._fields = self._fields, None
        self.error = None
        self._set_state(FlowState.CREATING)
        self._spawn(self._create(draft))

    def _on_created(self, event: CreationSucceeded) -> None:
        if self.state is not FlowState.CREATING:
            return
        self.created = event.radar
        self._held_fields = None
        self._debouncer.cancel()
        self._set_state(FlowState.COMPLETE)

    def _on_creation_error(self, event: CreationErrored) -> None:
        if self.state is not FlowState.CREATING:
            return
        self._fields, self._held_fields = self._held_fields, None
        self.error = event.error.message
        self._set_state(FlowState.REVIEW)
        # Input settled while creating was ignored; catch up with it now.
        text = self.debounced_input.strip()
        if text != self.last_interpreted:
            self._supersede(text)
            self.error = event.error.message

    # ── Background work ────────────────────────────────────────────────────

    async def _pump(self, call: InterpretationCall) -> None:
        async for snapshot in call.partials():
            self.post(PartialReceived(call.request_id, snapshot))
        try:
            result = await call.final
        except InterpretationCancelled:
            return
        except InterpretationFailed as exc:
            self.post(InterpretationErrored(call.request_id, exc))
            return
        self.post(InterpretationCompleted(call.request_id, result))

    async def _create(self, draft: RadarDraft) -> None:
        try:
            radar = await self.creator.create(draft)
        except CreationFailed as exc:
            self.post(CreationErrored(exc))
            return
        except Exception as exc:
            logger.exception("Creation adapter raised for topic=%r", draft.topic)
            self.post(CreationErrored(CreationFailed(str(exc) or type(exc).__name__)))
            return
        logger.info("Radar %d created for topic=%r", radar.id, radar.topic)
        self.post(CreationSucceeded(radar))
