import logging
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional

from pydantic import BaseModel, Field

from stepform.models import FieldSchema, FieldValue, FormSchema, RenderedField, ReviewSection
from stepform.review import build_review
from stepform.state import FormState
from stepform.validation import build_validator
from stepform.walker import EditResult, apply_edit, index_fields, missing_required, render_fields

logger = logging.getLogger(__name__)

Submitter = Callable[[Dict[str, FieldValue]], Awaitable[Any]]


class SessionPhase(str, Enum):
    EDITING = "editing"
    REVIEWING = "reviewing"
    SUBMITTING = "submitting"
    SUBMITTED = "submitted"


class SessionStateError(RuntimeError):
    """A transition was requested from a phase that does not allow it."""


class AdvanceOutcome(BaseModel):
    advanced: bool
    phase: SessionPhase
    step_index: int
    field_errors: Dict[str, str] = Field(default_factory=dict)
    missing_required: List[str] = Field(default_factory=list)
    summary: Optional[str] = None


class FormSession:
    """Drive one user through the steps of a form schema.

    The session owns the :class:`FormState`; every write goes through
    :meth:`set_field`. Phase transitions never touch the values.
    """

    def __init__(self, schema: FormSchema, state: Optional[FormState] = None):
        self.schema = schema
        self.state = state if state is not None else FormState()
        self.phase = SessionPhase.EDITING
        self.step_index = 0
        self.errors: Dict[str, str] = {}
        self._fields_by_path: Dict[str, FieldSchema] = {}
        for step in schema.editable_steps:
            self._fields_by_path.update(index_fields(step.fields))

    @property
    def last_step(self) -> int:
        return self.schema.last_step

    @property
    def current_fields(self) -> List[FieldSchema]:
        if self.phase is not SessionPhase.EDITING:
            return []
        return self.schema.steps[self.step_index].fields

    def field_at(self, path: str) -> FieldSchema:
        """Look up an editable leaf by path; unknown paths raise KeyError."""
        return self._fields_by_path[path]

    def active_fields(self) -> List[RenderedField]:
        return render_fields(self.current_fields, self.state, self.errors)

    def set_field(self, path: str, value: FieldValue) -> EditResult:
        if self.phase in (SessionPhase.SUBMITTING, SessionPhase.SUBMITTED):
            raise SessionStateError(f"cannot edit while {self.phase.value}")
        field = self.field_at(path)
        result = apply_edit(field, path, self.state, value)
        for cleared in result.cleared:
            self.errors.pop(cleared, None)
        if result.revalidate and self.errors:
            self._revalidate(result.revalidate)
        return result

    def _revalidate(self, paths: List[str]) -> None:
        outcome = build_validator(self.current_fields, self.state).run(self.state)
        for path in paths:
            message = outcome.field_errors.get(path)
            if message:
                self.errors[path] = message
            else:
                self.errors.pop(path, None)

    def advance(self) -> AdvanceOutcome:
        self._require(SessionPhase.EDITING, "advance")
        fields = self.current_fields
        result = build_validator(fields, self.state).run(self.state)

        if not result.valid:
            self.errors = dict(result.field_errors)
            missing = missing_required(fields, self.state)
            summary = None
            if missing:
                summary = "Please fill in the following required fields: " + ", ".join(missing)
            logger.warning(
                "Step %d (%s) failed validation: %d field errors, %d missing",
                self.step_index,
                self.schema.steps[self.step_index].title,
                len(result.field_errors),
                len(missing),
            )
            return AdvanceOutcome(
                advanced=False,
                phase=self.phase,
                step_index=self.step_index,
                field_errors=result.field_errors,
                missing_required=missing,
                summary=summary,
            )

        self.errors = {}
        self.step_index += 1
        if self.step_index >= self.last_step:
            self.step_index = self.last_step
            self.phase = SessionPhase.REVIEWING
        logger.info("Advanced to step %d (%s)", self.step_index, self.phase.value)
        return AdvanceOutcome(advanced=True, phase=self.phase, step_index=self.step_index)

    def retreat(self) -> None:
        self._require(SessionPhase.EDITING, "retreat")
        if self.step_index == 0:
            raise SessionStateError("cannot retreat from the first step")
        self.errors = {}
        self.step_index -= 1

    def jump_to(self, step_index: int) -> None:
        self._require(SessionPhase.REVIEWING, "jump")
        if not 0 <= step_index < self.last_step:
            raise ValueError(f"step index {step_index} is not an editable step")
        self.errors = {}
        self.phase = SessionPhase.EDITING
        self.step_index = step_index
        logger.info("Jumped back to step %d for review edits", step_index)

    def review(self) -> List[ReviewSection]:
        self._require(SessionPhase.REVIEWING, "review")
        return build_review(self.schema, self.state)

    async def submit(self, submitter: Submitter) -> Any:
        self._require(SessionPhase.REVIEWING, "submit")
        values = self.state.snapshot()
        # Set before awaiting so an overlapping submit is rejected.
        self.phase = SessionPhase.SUBMITTING
        try:
            result = await submitter(values)
        except BaseException:
            self.phase = SessionPhase.REVIEWING
            raise
        self.phase = SessionPhase.SUBMITTED
        logger.info("Submitted form with %d values", len(values))
        return result

    def restart(self) -> None:
        self.state.clear()
        self.errors = {}
        self.phase = SessionPhase.EDITING
        self.step_index = 0

    def _require(self, phase: SessionPhase, action: str) -> None:
        if self.phase is not phase:
            raise SessionStateError(f"cannot {action} while {self.phase.value}")
