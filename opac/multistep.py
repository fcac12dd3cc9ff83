"""Multi-step actions: reserve, renew and cancel flows that may need a user choice.

A backend's first answer either commits the action right away or lists
several fulfillment options (pickup branch, delivery address, copy). In the
latter case the caller picks one opaque key and hands it back unchanged::

    action = adapter.start_reservation(item, account)
    result = action.invoke()
    if result.status is MultiStepStatus.SELECTION_NEEDED:
        result = action.resume(result.options[0].key)

Only the adapter that produced a key knows what it encodes.
"""

import logging
from enum import Enum
from typing import Callable

from pydantic import BaseModel, Field

from opac.exceptions import (
    AuthError,
    BackendProtocolError,
    InternalStateError,
    InvalidSelectionError,
    UnsupportedError,
)
from opac.i18n import Msg

logger = logging.getLogger(__name__)


class MultiStepStatus(str, Enum):
    OK = "ok"
    SELECTION_NEEDED = "selection_needed"
    ERROR = "error"
    # The backend never offers this capability; not a failed attempt
    UNSUPPORTED = "unsupported"


class ActionType(str, Enum):
    RESERVE = "reserve"
    RENEW = "renew"
    RENEW_ALL = "renew_all"
    CANCEL = "cancel"


class SelectionOption(BaseModel):
    key: str
    label: str


class MultiStepResult(BaseModel):
    """Outcome of one step of a multi-step action."""

    status: MultiStepStatus
    action: ActionType | None = None
    message: str | None = None
    options: list[SelectionOption] = Field(default_factory=list)

    @classmethod
    def ok(cls, message: str | None = None, action: ActionType | None = None) -> "MultiStepResult":
        return cls(status=MultiStepStatus.OK, message=message, action=action)

    @classmethod
    def error(cls, message: str, action: ActionType | None = None) -> "MultiStepResult":
        return cls(status=MultiStepStatus.ERROR, message=message, action=action)

    @classmethod
    def unsupported(cls, message: str | None = None, action: ActionType | None = None) -> "MultiStepResult":
        return cls(status=MultiStepStatus.UNSUPPORTED, message=message, action=action)

    @classmethod
    def selection_needed(
        cls, options: list[tuple[str, str]], action: ActionType | None = None
    ) -> "MultiStepResult":
        return cls(
            status=MultiStepStatus.SELECTION_NEEDED,
            action=action,
            options=[SelectionOption(key=k, label=v) for k, v in options],
        )

    @property
    def resolved(self) -> bool:
        return self.status is not MultiStepStatus.SELECTION_NEEDED

    @property
    def keys(self) -> list[str]:
        return [o.key for o in self.options]


class FlowState(str, Enum):
    INITIAL = "initial"
    SELECTION_NEEDED = "selection_needed"
    RESOLVED = "resolved"


Step = Callable[[str | None], MultiStepResult]


class MultiStepAction:
    """Drives one action through INITIAL -> SELECTION_NEEDED -> RESOLVED.

    `step` performs one backend round trip: it is called with None first and
    with the chosen key on resume. A key that was not offered in the latest
    SELECTION_NEEDED result is rejected locally with `InvalidSelectionError`,
    without calling `step`, and the action stays resumable.
    """

    def __init__(self, action: ActionType, step: Step, generic_error: str = "An error occurred."):
        self.action = action
        self.step = step
        self.generic_error = generic_error
        self.state = FlowState.INITIAL
        self.result: MultiStepResult | None = None

    def invoke(self) -> MultiStepResult:
        if self.state is not FlowState.INITIAL:
            raise InternalStateError(f"{self.action.value} was already invoked", Msg.INTERNAL_ERROR)
        return self._run(None)

    def resume(self, key: str) -> MultiStepResult:
        if self.state is not FlowState.SELECTION_NEEDED:
            raise InternalStateError(
                f"{self.action.value} is {self.state.value}, nothing to resume", Msg.INTERNAL_ERROR
            )
        if key not in self.result.keys:
            raise InvalidSelectionError(f"selection {key!r} was not offered", Msg.INVALID_SELECTION)
        return self._run(key)

    def _run(self, selection: str | None) -> MultiStepResult:
        try:
            result = self.step(selection)
        except UnsupportedError as e:
            result = MultiStepResult.unsupported(e.message)
        except (AuthError, BackendProtocolError) as e:
            logger.debug("%s failed: %s", self.action.value, e.message)
            result = MultiStepResult.error(e.message or self.generic_error)

        if result.status is MultiStepStatus.SELECTION_NEEDED and not result.options:
            result = MultiStepResult.error(self.generic_error)
        if result.status is MultiStepStatus.ERROR and not result.message:
            result = result.model_copy(update={"message": self.generic_error})
        if result.action is None:
            result = result.model_copy(update={"action": self.action})

        self.result = result
        self.state = FlowState.SELECTION_NEEDED if not result.resolved else FlowState.RESOLVED
        return result
