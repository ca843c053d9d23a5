import logging
import os
import time
import uuid
from typing import Any, Dict, List, Optional

from dotenv import load_dotenv
from fastapi import FastAPI, HTTPException, Response
from pydantic import BaseModel, Field

from stepform.models import FieldValue, FormSchema, RenderedField, ReviewSection
from stepform.schema_loader import SchemaError, load_schema
from stepform.session import AdvanceOutcome, FormSession, SessionPhase, SessionStateError
from stepform.submission import SUBMISSION_FILENAME, export_json, make_webhook_submitter

load_dotenv()

app = FastAPI(title="StepForm Service")
logger = logging.getLogger(__name__)

SCHEMA_PATH = os.getenv("FORM_SCHEMA_PATH") or None
SUBMISSION_WEBHOOK_URL = os.getenv("SUBMISSION_WEBHOOK_URL") or None

FORM_SCHEMA: Optional[FormSchema] = None
try:
    FORM_SCHEMA = load_schema(SCHEMA_PATH)
except SchemaError:
    logger.exception("Form schema could not be loaded; form endpoints will return 503 until fixed.")

if SUBMISSION_WEBHOOK_URL:
    logger.info("Submissions will be forwarded to %s", SUBMISSION_WEBHOOK_URL)
else:
    logger.info("SUBMISSION_WEBHOOK_URL not configured; submissions are only exported as JSON.")

SESSION_IDLE_SECONDS = float(os.getenv("FORM_SESSION_IDLE_SECONDS", "1800"))

SESSIONS: Dict[str, FormSession] = {}
SESSION_LAST_SEEN: Dict[str, float] = {}
_clock = time.monotonic


class FieldUpdate(BaseModel):
    path: str
    value: FieldValue = None


class JumpRequest(BaseModel):
    step_index: int


class SessionView(BaseModel):
    session_id: str
    phase: SessionPhase
    step_index: int
    step_title: str
    step_count: int
    fields: List[RenderedField] = Field(default_factory=list)
    errors: Dict[str, str] = Field(default_factory=dict)


class FieldUpdateResult(BaseModel):
    cleared: List[str] = Field(default_factory=list)
    session: SessionView


class AdvanceResult(BaseModel):
    outcome: AdvanceOutcome
    session: SessionView


class ReviewResult(BaseModel):
    session_id: str
    sections: List[ReviewSection] = Field(default_factory=list)


def _require_schema() -> FormSchema:
    if FORM_SCHEMA is None:
        raise HTTPException(status_code=503, detail="schema_unavailable")
    return FORM_SCHEMA


def _get_session(session_id: str) -> FormSession:
    _require_schema()
    _expire_idle_sessions()
    session = SESSIONS.get(session_id)
    if session is None:
        raise HTTPException(status_code=404, detail="session_not_found")
    SESSION_LAST_SEEN[session_id] = _clock()
    return session


def _drop_session(session_id: str) -> None:
    SESSIONS.pop(session_id, None)
    SESSION_LAST_SEEN.pop(session_id, None)


def _expire_idle_sessions() -> None:
    """Discard sessions untouched for longer than SESSION_IDLE_SECONDS."""
    cutoff = _clock() - SESSION_IDLE_SECONDS
    for session_id, last_seen in list(SESSION_LAST_SEEN.items()):
        session = SESSIONS.get(session_id)
        if last_seen >= cutoff or (session is not None and session.phase is SessionPhase.SUBMITTING):
            continue
        _drop_session(session_id)
        logger.info("Expired idle form session %s", session_id)


def _view(session_id: str, session: FormSession) -> SessionView:
    return SessionView(
        session_id=session_id,
        phase=session.phase,
        step_index=session.step_index,
        step_title=session.schema.steps[session.step_index].title,
        step_count=len(session.schema.steps),
        fields=session.active_fields(),
        errors=dict(session.errors),
    )


def _submitter():
    if SUBMISSION_WEBHOOK_URL:
        return make_webhook_submitter(SUBMISSION_WEBHOOK_URL)
    return export_json


@app.get("/health")
async def health():
    return {"ok": True, "service": "form-service"}


@app.get("/schema")
async def schema_endpoint():
    return _require_schema().model_dump(by_alias=True)


@app.post("/sessions", response_model=SessionView, status_code=201)
async def create_session():
    schema = _require_schema()
    session_id = uuid.uuid4().hex
    session = FormSession(schema)
    _expire_idle_sessions()
    SESSIONS[session_id] = session
    SESSION_LAST_SEEN[session_id] = _clock()
    logger.info("Started form session %s", session_id)
    return _view(session_id, session)


@app.get("/sessions/{session_id}", response_model=SessionView)
async def get_session(session_id: str):
    return _view(session_id, _get_session(session_id))


@app.put("/sessions/{session_id}/fields", response_model=FieldUpdateResult)
async def update_field(session_id: str, update: FieldUpdate):
    session = _get_session(session_id)
    try:
        result = session.set_field(update.path, update.value)
    except KeyError as exc:
        raise HTTPException(status_code=404, detail="unknown_field") from exc
    except SessionStateError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    return FieldUpdateResult(cleared=result.cleared, session=_view(session_id, session))


@app.post("/sessions/{session_id}/advance", response_model=AdvanceResult)
async def advance(session_id: str):
    session = _get_session(session_id)
    try:
        outcome = session.advance()
    except SessionStateError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    return AdvanceResult(outcome=outcome, session=_view(session_id, session))


@app.post("/sessions/{session_id}/retreat", response_model=SessionView)
async def retreat(session_id: str):
    session = _get_session(session_id)
    try:
        session.retreat()
    except SessionStateError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    return _view(session_id, session)


@app.post("/sessions/{session_id}/jump", response_model=SessionView)
async def jump(session_id: str, request: JumpRequest):
    session = _get_session(session_id)
    try:
        session.jump_to(request.step_index)
    except SessionStateError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    return _view(session_id, session)


@app.get("/sessions/{session_id}/review", response_model=ReviewResult)
async def review(session_id: str):
    session = _get_session(session_id)
    try:
        sections = session.review()
    except SessionStateError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    return ReviewResult(session_id=session_id, sections=sections)


@app.post("/sessions/{session_id}/submit")
async def submit(session_id: str):
    session = _get_session(session_id)
    try:
        document = await session.submit(_submitter())
    except SessionStateError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    except Exception as exc:
        logger.exception("Submission failed for session %s", session_id)
        raise HTTPException(status_code=502, detail="submission_failed") from exc

    _drop_session(session_id)
    return Response(
        content=document,
        media_type="application/json",
        headers={"Content-Disposition": f'attachment; filename="{SUBMISSION_FILENAME}"'},
    )


@app.delete("/sessions/{session_id}", status_code=204)
async def discard_session(session_id: str):
    _get_session(session_id)
    _drop_session(session_id)
    logger.info("Discarded form session %s", session_id)
    return Response(status_code=204)


@app.get("/dev/sessions/{session_id}/state")
async def dev_session_state(session_id: str) -> Dict[str, Any]:
    if os.getenv("ENABLE_DEV_ROUTES", "false").lower() != "true":
        raise HTTPException(status_code=404, detail="Not found")
    session = _get_session(session_id)
    return {"phase": session.phase.value, "step_index": session.step_index, "values": session.state.snapshot()}
