"""FastAPI application with all routes."""
from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from contextlib import asynccontextmanager

logging.basicConfig(level=logging.INFO, format="%(name)s | %(message)s")

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse

from sat_practice.config import DEFAULTS, Settings, load_settings, save_settings
from sat_practice.errors import (
    ConfigError,
    GenerationError,
    NoSelectionError,
    NotFoundError,
    PersistenceError,
    SatPracticeError,
    SessionStateError,
)
from sat_practice.etymology import analyze_word, random_word
from sat_practice.models import QUESTION_TYPES, PracticeTestConfig
from sat_practice.question_generator import generate_from_prompt, generate_many
from sat_practice.services import Services, build_llm, init_services
from sat_practice.session import MODES, PracticeSession

_log = logging.getLogger("sat_practice.app")
_bg_log = logging.getLogger("sat_practice.bg")

MAX_TEST_QUESTIONS = 20
SWEEP_INTERVAL = 60

# Live practice sessions, keyed by session id. Abandoned on restart.
_active_sessions: dict[str, PracticeSession] = {}
# Unsubscribe handles for sessions waiting on a test document
_session_listeners: dict[str, Callable[[], None]] = {}


@asynccontextmanager
async def lifespan(app: FastAPI):
    owned = getattr(app.state, "services", None) is None
    if owned:
        # Already initialized (e.g. by tests) otherwise
        app.state.services = init_services(load_settings())
    sweeper = asyncio.create_task(_sweep_idle_sessions())
    yield
    sweeper.cancel()
    for sid in list(_active_sessions):
        _drop_session(sid)
    if owned:
        app.state.services.close()
        app.state.services = None


app = FastAPI(title="SAT Practice", lifespan=lifespan)


def get_services() -> Services:
    services = getattr(app.state, "services", None)
    assert services is not None
    return services


# ── Errors ────────────────────────────────────────────────────────────────

_ERROR_STATUS = {
    NoSelectionError: 400,
    SessionStateError: 400,
    NotFoundError: 404,
    ConfigError: 500,
    GenerationError: 500,
    PersistenceError: 500,
}


@app.exception_handler(SatPracticeError)
async def _handle_error(request: Request, exc: SatPracticeError):
    status = next((s for cls, s in _ERROR_STATUS.items() if isinstance(exc, cls)), 500)
    _log.warning("%s %s -> %d: %s", request.method, request.url.path, status, exc)
    return JSONResponse({"error": str(exc)}, status_code=status)


def _error(message: str, status: int) -> JSONResponse:
    return JSONResponse({"error": message}, status_code=status)


def current_user(request: Request) -> str:
    """Authenticated user id, as forwarded by the identity provider.

    Without one the client is sent to the login page; no error body.
    """
    user_id = request.headers.get("X-User-Id", "").strip()
    if not user_id:
        raise HTTPException(307, headers={"Location": "/login"})
    return user_id


async def _json_body(request: Request) -> dict:
    if not await request.body():
        return {}
    try:
        body = await request.json()
    except ValueError:
        raise HTTPException(400, "Invalid JSON body")
    if not isinstance(body, dict):
        raise HTTPException(400, "Expected a JSON object")
    return body


# ── API: Generation ───────────────────────────────────────────────────────

@app.post("/api/generate")
async def api_generate(request: Request):
    body = await _json_body(request)
    prompt = body.get("prompt")
    if not isinstance(prompt, str) or not prompt.strip():
        return _error("prompt is required", 400)
    questions = await generate_from_prompt(get_services().llm, prompt)
    return {"questions": [q.to_dict() for q in questions]}


# ── API: Etymology ────────────────────────────────────────────────────────

@app.get("/api/etymology")
async def api_etymology(word: str = ""):
    if not word.strip():
        return _error("Word parameter is required", 400)
    try:
        etymology = await analyze_word(get_services().llm, word)
    except GenerationError as e:
        _log.warning("Etymology for %r failed: %s", word, e)
        return _error("Failed to analyze word", 500)
    return etymology.to_dict()


@app.get("/api/random-word")
async def api_random_word():
    return random_word().to_dict()


# ── API: Tests ────────────────────────────────────────────────────────────

def _test_summary(test) -> dict:
    d = test.to_dict()
    d["question_count"] = len(d.pop("questions"))
    return d


def _owned_test(user_id: str, test_id: str):
    test = get_services().db.get_test(test_id)
    if test is None or test.user_id != user_id:
        raise NotFoundError("Test not found")
    return test


@app.post("/api/tests")
async def api_create_test(request: Request):
    user_id = current_user(request)
    body = await _json_body(request)
    try:
        config = PracticeTestConfig.from_dict(body)
    except (TypeError, ValueError):
        return _error("numberOfQuestions must be a number", 400)
    if not config.title.strip():
        return _error("Please enter a title for the test", 400)
    if config.question_type not in QUESTION_TYPES:
        return _error(f"Unknown question type: {config.question_type}", 400)
    if not 1 <= config.number_of_questions <= MAX_TEST_QUESTIONS:
        return _error(f"numberOfQuestions must be between 1 and {MAX_TEST_QUESTIONS}", 400)

    s = get_services()
    test_id = s.db.create_test(user_id, config)
    try:
        questions = await generate_many(
            s.llm, config.question_type, config.number_of_questions,
            s.settings.default_difficulty,
        )
    except GenerationError as e:
        _log.warning("Test %s generation failed: %s", test_id, e)
        # Wakes any session waiting on this test
        s.db.mark_test_failed(test_id)
        return JSONResponse(
            {"error": "Failed to generate test", "test_id": test_id}, status_code=500,
        )
    s.db.populate_test(test_id, questions)
    return s.db.get_test(test_id).to_dict()


@app.get("/api/tests")
async def api_list_tests(request: Request):
    user_id = current_user(request)
    return {"tests": [_test_summary(t) for t in get_services().db.list_tests(user_id)]}


@app.get("/api/tests/{test_id}")
async def api_get_test(test_id: str, request: Request):
    user_id = current_user(request)
    return _owned_test(user_id, test_id).to_dict()


# ── API: Practice sessions ────────────────────────────────────────────────

def _make_on_complete(user_id: str):
    async def save(session: PracticeSession) -> None:
        _bg_log.info("Saving session %s for %s", session.id, user_id)
        db = get_services().db
        if session.test_id:
            db.mark_test_completed(session.test_id, session.index, session.correct_answers)
        else:
            db.append_practice_session(user_id, session.to_record())
            session.notify(
                f"Progress saved: completed {session.total_questions} questions "
                f"with {session.correct_answers} correct answers"
            )
    return save


def _make_fetch_more(question_type: str):
    async def fetch(count: int):
        s = get_services()
        return await generate_many(s.llm, question_type, count, s.settings.default_difficulty)
    return fetch


def _register(session: PracticeSession) -> None:
    _expire_idle_sessions()
    _active_sessions[session.id] = session
    session.start_countdown()


def _drop_session(session_id: str) -> None:
    session = _active_sessions.pop(session_id, None)
    unsubscribe = _session_listeners.pop(session_id, None)
    if unsubscribe is not None:
        unsubscribe()
    if session is not None:
        session.close()


def _expire_idle_sessions() -> int:
    """Drop sessions nobody has touched within the idle timeout."""
    timeout = get_services().settings.session_idle_timeout
    stale = [sid for sid, sess in _active_sessions.items() if sess.idle_for() > timeout]
    for sid in stale:
        _bg_log.info("Dropping idle session %s", sid)
        _drop_session(sid)
    return len(stale)


async def _sweep_idle_sessions(interval: float = SWEEP_INTERVAL) -> None:
    while True:
        await asyncio.sleep(interval)
        _expire_idle_sessions()


def _get_session(user_id: str, session_id: str) -> PracticeSession:
    session = _active_sessions.get(session_id)
    if session is None or session.user_id != user_id:
        raise NotFoundError("Session not found")
    session.touch()
    return session


def _session_view(session: PracticeSession) -> dict:
    data = session.snapshot()
    data["notifications"] = session.drain_notifications()
    return data


def _wait_for_test(session: PracticeSession, test_id: str) -> None:
    """Load *session* once the still-generating test document turns ready."""
    db = get_services().db

    def on_change(doc: dict | None) -> None:
        if doc is None or doc.get("status") == "generating":
            return
        unsubscribe = _session_listeners.pop(session.id, None)
        if unsubscribe is not None:
            unsubscribe()
        test = db.get_test(test_id)
        if test is None or not test.questions:
            _bg_log.warning("Test %s finished without questions", test_id)
            session.notify("Failed to load test questions")
            return
        _bg_log.info("Test %s ready; loading session %s", test_id, session.id)
        session.question_count = len(test.questions)
        session.load(test.questions)
        db.mark_test_in_progress(test_id)

    _session_listeners[session.id] = db.subscribe("practice_tests", test_id, on_change)


@app.post("/api/session/start")
async def api_session_start(request: Request):
    user_id = current_user(request)
    body = await _json_body(request)
    s = get_services()
    test_id = body.get("testId")

    if test_id:
        test = _owned_test(user_id, test_id)
        if test.status == "completed":
            return _error("Test already completed", 400)
        if test.status == "failed":
            return _error("Test generation failed", 400)
        session = PracticeSession(
            test.config.question_type, "finite",
            question_count=test.config.number_of_questions,
            on_complete=_make_on_complete(user_id),
            time_limit=s.settings.question_time_limit,
            test_id=test.id,
            user_id=user_id,
        )
        if test.status == "generating":
            _wait_for_test(session, test.id)
        elif not test.questions:
            return _error("Failed to load test questions", 500)
        else:
            session.question_count = len(test.questions)
            session.load(test.questions)
            s.db.mark_test_in_progress(test.id)
        _register(session)
        return _session_view(session)

    question_type = body.get("type", "reading")
    mode = body.get("mode", "finite")
    if question_type not in QUESTION_TYPES:
        return _error(f"Unknown question type: {question_type}", 400)
    if mode not in MODES:
        return _error(f"Unknown mode: {mode}", 400)

    count = (s.settings.finite_question_count if mode == "finite"
             else s.settings.infinite_batch_size)
    session = PracticeSession(
        question_type, mode,
        question_count=count,
        fetch_more=_make_fetch_more(question_type),
        on_complete=_make_on_complete(user_id),
        time_limit=s.settings.question_time_limit,
        batch_size=s.settings.infinite_batch_size,
        user_id=user_id,
    )
    questions = await generate_many(s.llm, question_type, count, s.settings.default_difficulty)
    session.load(questions)
    _register(session)
    return _session_view(session)


@app.get("/api/session/{session_id}")
async def api_session_state(session_id: str, request: Request):
    session = _get_session(current_user(request), session_id)
    return _session_view(session)


@app.post("/api/session/{session_id}/select")
async def api_session_select(session_id: str, request: Request):
    session = _get_session(current_user(request), session_id)
    body = await _json_body(request)
    try:
        session.select(body.get("option", ""))
    except ValueError as e:
        return _error(str(e), 400)
    return _session_view(session)


@app.post("/api/session/{session_id}/exclude")
async def api_session_exclude(session_id: str, request: Request):
    session = _get_session(current_user(request), session_id)
    body = await _json_body(request)
    try:
        session.toggle_exclusion(body.get("option", ""))
    except ValueError as e:
        return _error(str(e), 400)
    return _session_view(session)


@app.post("/api/session/{session_id}/answer")
async def api_session_answer(session_id: str, request: Request):
    user_id = current_user(request)
    session = _get_session(user_id, session_id)
    body = await _json_body(request)
    result = session.submit_answer(body.get("selected"))

    s = get_services()
    try:
        progress = s.db.update_section_progress(
            user_id, session.question_type, result.correct, s.settings.progress_increment,
        )
    except (NotFoundError, PersistenceError) as e:
        _log.warning("Progress update for %s failed: %s", user_id, e)
        session.notify(f"Failed to update progress: {e}")
        progress = None

    data = _session_view(session)
    data["section_progress"] = progress
    return data


@app.post("/api/session/{session_id}/next")
async def api_session_next(session_id: str, request: Request):
    session = _get_session(current_user(request), session_id)
    await session.advance()
    data = _session_view(session)
    if session.completed:
        data["summary"] = {
            "total": session.total_questions,
            "correct": session.correct_answers,
            "score": session.score,
            "duration": session.duration,
            "average_time": round(session.duration / max(session.total_questions, 1)),
        }
        _drop_session(session_id)
    return data


@app.delete("/api/session/{session_id}")
async def api_session_abandon(session_id: str, request: Request):
    _get_session(current_user(request), session_id)
    _drop_session(session_id)
    return {"ok": True}


# ── API: Profile & dashboard ──────────────────────────────────────────────

@app.get("/api/profile")
async def api_get_profile(request: Request):
    user_id = current_user(request)
    doc = get_services().db.get_user(user_id)
    if doc is None:
        raise NotFoundError("Profile not found")
    return doc


@app.put("/api/profile")
async def api_update_profile(request: Request):
    user_id = current_user(request)
    body = await _json_body(request)
    if "gradeLevel" in body:
        try:
            int(body["gradeLevel"])
        except (TypeError, ValueError):
            return _error("gradeLevel must be a number", 400)
    return get_services().db.upsert_user(user_id, body)


@app.get("/api/dashboard")
async def api_dashboard(request: Request):
    user_id = current_user(request)
    db = get_services().db
    user = db.get_user(user_id)
    performance = [
        {"date": sess["timestamp"][:10], "score": sess.get("score", 0)}
        for sess in db.get_practice_sessions(user_id, limit=10, newest_first=False)
    ]
    return {
        "profile_required": user is None,
        "stats": db.get_user_stats(user_id),
        "progress": (user or {}).get("progress", {"reading": 0, "writing": 0, "math": 0}),
        "section_stats": (user or {}).get("stats", {}),
        "recent_activity": db.get_practice_sessions(user_id, limit=5),
        "performance": performance,
    }


# ── API: Settings ─────────────────────────────────────────────────────────

@app.get("/api/settings")
async def api_get_settings():
    return get_services().settings.to_dict()


def _coerce_setting(key: str, value):
    """Cast *value* to the type of the key's default; ints must be >= 0."""
    kind = type(DEFAULTS[key])
    if value is None or isinstance(value, (bool, dict, list)):
        raise TypeError(key)
    value = kind(value)
    if kind is int and value < 0:
        raise ValueError(key)
    return value


@app.put("/api/settings")
async def api_update_settings(request: Request):
    body = await _json_body(request)
    services = get_services()
    s = services.settings
    known = {f.name for f in Settings.__dataclass_fields__.values()} - {"db_path"}
    changes = {}
    for k, v in body.items():
        if k not in known:
            continue
        try:
            changes[k] = _coerce_setting(k, v)
        except (TypeError, ValueError):
            return _error(f"Invalid value for {k}", 400)
    updated = Settings(**{**s.to_dict(), **changes})
    if (updated.llm_provider, updated.llm_model, updated.ollama_url) != (
        s.llm_provider, s.llm_model, s.ollama_url
    ):
        services.llm = build_llm(updated)
    for k in known:
        setattr(s, k, getattr(updated, k))
    save_settings(s)
    return s.to_dict()
