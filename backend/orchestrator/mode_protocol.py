"""
Mode tool-call protocol.

Responsibilities:
- Interpret setAssistantMode tool calls
- Hold the current AssistantMode
- Emit exactly one mode-change notification per valid request
- Build the acknowledgement to send back, correlated by call id

Non-responsibilities:
- No transport (the orchestrator sends acknowledgements)
- No UI rendering
"""

from __future__ import annotations

from typing import Callable, Iterable

from constants import MODE_TOOL_ARG, MODE_TOOL_NAME
from observability.logger import log_event
from orchestrator.enums.mode import AssistantMode
from protocol.live import ToolCallRequest, ToolResponse
from session.errors import InvalidMode


ModeChangeFn = Callable[[AssistantMode], None]


def parse_mode(value: object) -> AssistantMode:
    """
    Resolve a tool argument to an AssistantMode.

    Matching is exact on the enum value ("GK_QUIZ", not "gk quiz").

    Raises:
        InvalidMode: value is missing or outside the enumeration.
    """
    if not isinstance(value, str):
        raise InvalidMode(value)
    try:
        return AssistantMode(value)
    except ValueError as e:
        raise InvalidMode(value) from e


class ModeProtocolHandler:
    """
    Owns the current assistant mode.

    The mode is only changed through handle()/handle_batch(), or put
    back to GENERAL by reset() at session start and end.
    """

    tool_name: str = MODE_TOOL_NAME

    def __init__(
        self,
        *,
        on_mode_change: ModeChangeFn,
        session_id: str | None = None,
    ) -> None:
        self._on_mode_change = on_mode_change
        self._mode = AssistantMode.GENERAL
        self.session_id = session_id

    @property
    def mode(self) -> AssistantMode:
        """Current assistant mode."""
        return self._mode

    def reset(self) -> None:
        """Return to GENERAL without notifying."""
        self._mode = AssistantMode.GENERAL

    def handle(self, request: ToolCallRequest) -> ToolResponse:
        """
        Apply one mode tool call.

        Raises:
            InvalidMode: the requested mode is not in AssistantMode.
                No notification is emitted and no acknowledgement built.
        """
        try:
            mode = parse_mode(request.args.get(MODE_TOOL_ARG))
        except InvalidMode as e:
            e.call_id = request.call_id
            raise

        self._mode = mode
        self._on_mode_change(mode)

        log_event({
            "event_type": "MODE_CHANGED",
            "session_id": self.session_id,
            "call_id": request.call_id,
            "mode": mode.value,
        })

        return ToolResponse(
            call_id=request.call_id,
            name=request.name,
            response={"result": f"Mode set to {mode.value}"},
        )

    def handle_batch(self, requests: Iterable[ToolCallRequest]) -> list[ToolResponse]:
        """
        Apply every mode tool call in one inbound message.

        Entries with an invalid mode, and calls to other tools, are
        logged and skipped; remaining entries are still processed.
        Returned acknowledgements keep request order.
        """
        responses: list[ToolResponse] = []

        for request in requests:
            if request.name != self.tool_name:
                log_event({
                    "event_type": "UNKNOWN_TOOL_CALL",
                    "session_id": self.session_id,
                    "call_id": request.call_id,
                    "tool": request.name,
                })
                continue

            try:
                responses.append(self.handle(request))
            except InvalidMode as e:
                log_event({
                    "event_type": "INVALID_MODE",
                    "session_id": self.session_id,
                    "call_id": request.call_id,
                    "value": repr(e.value),
                })

        return responses
