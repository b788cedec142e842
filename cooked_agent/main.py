import asyncio
import json
import logging
import time
import uuid
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Optional, Set

from fastapi import Body, FastAPI, Request
from fastapi.responses import JSONResponse, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from starlette.middleware.cors import CORSMiddleware
from starlette.responses import StreamingResponse

from cooked_agent import config, metrics
from cooked_agent.agent import AnalysisAgent
from cooked_agent.documents import DocumentStore, create_document_store
from cooked_agent.errors import (
    AgentNotInitialized,
    CookedAgentError,
    GatewayError,
    RecommendationFailed,
    ScoringFailed,
    SynthesisFailed,
)
from cooked_agent.logs import get_logger, log_event
from cooked_agent.memory import AgentIdentity, ConversationStore, MemoryStore
from cooked_agent.middleware import RequestIdMiddleware
from cooked_agent.normalization import ScoreSheet
from cooked_agent.providers import ModelGateway, TokenSink, get_gateway

logger = get_logger("api")


@dataclass
class SessionEntry:
    agent: AnalysisAgent
    uid: Optional[str]
    created: float = field(default_factory=time.time)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    if getattr(app.state, "gateway", None) is None:
        app.state.gateway = get_gateway()
    if getattr(app.state, "documents", None) is None:
        app.state.documents = create_document_store()
    app.state.sessions = {}
    app.state.background_tasks = set()
    log_event(logger, "app_startup", provider=getattr(app.state.gateway, "provider_name", "unknown"))
    try:
        yield
    finally:
        # Shutdown: cancel in-flight memory extraction jobs
        tasks: Set[asyncio.Task] = set(getattr(app.state, "background_tasks", set()))
        for t in tasks:
            t.cancel()
        if tasks:
            try:
                await asyncio.gather(*tasks, return_exceptions=True)
            except Exception:
                pass


app = FastAPI(
    title="AmICooked Agent API",
    description="Profile scoring, coaching chat and long-term agent memory.",
    version="0.1.0",
    lifespan=lifespan,
)
app.add_middleware(
    CORSMiddleware,
    allow_origins=[config.PUBLIC_APP_ORIGIN],
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["X-Request-Id"],
    allow_credentials=False,
)
app.add_middleware(RequestIdMiddleware)


# HTTP metrics middleware
@app.middleware("http")
async def _http_metrics_middleware(request: Request, call_next):
    t0 = time.perf_counter()
    method = request.method
    status_code = 500
    try:
        response = await call_next(request)
        status_code = getattr(response, "status_code", 500)
        return response
    except Exception:
        status_code = 500
        raise
    finally:
        try:
            # Route template keeps session ids out of label values
            route = request.scope.get("route")
            path = getattr(route, "path", None) or request.url.path
            status_class = f"{status_code // 100}xx"
            metrics.HTTP_REQUESTS_TOTAL.labels(method=method, path=path, status_class=status_class).inc()
            metrics.HTTP_REQUEST_DURATION_SECONDS.labels(method=method, path=path).observe(time.perf_counter() - t0)
        except Exception:
            pass


# ===== helpers =====


def _sse_data_event(text: str) -> str:
    """Encode text as one SSE data event; each line gets its own ``data:`` prefix."""
    try:
        lines = str(text).splitlines()
    except Exception:
        lines = [str(text)]
    if not lines:
        return "data: \n\n"
    return "".join(f"data: {line}\n" for line in lines) + "\n"


def _request_id(request: Request) -> Optional[str]:
    return getattr(request.state, "request_id", None)


def _caller_id(request: Request) -> Optional[str]:
    uid = (request.headers.get("X-User-Id") or "").strip()
    return uid or None


def _gateway() -> ModelGateway:
    gw = getattr(app.state, "gateway", None)
    if gw is None:
        gw = get_gateway()
        app.state.gateway = gw
    return gw


def _documents() -> DocumentStore:
    docs = getattr(app.state, "documents", None)
    if docs is None:
        docs = create_document_store()
        app.state.documents = docs
    return docs


def _sessions() -> Dict[str, SessionEntry]:
    sessions = getattr(app.state, "sessions", None)
    if sessions is None:
        sessions = {}
        app.state.sessions = sessions
    return sessions


def _track_task(task: Optional[asyncio.Task]) -> None:
    if task is None:
        return
    tasks = getattr(app.state, "background_tasks", None)
    if tasks is None:
        tasks = set()
        app.state.background_tasks = tasks
    tasks.add(task)
    task.add_done_callback(tasks.discard)


def _get_session(request: Request, session_id: str) -> Optional[SessionEntry]:
    entry = _sessions().get(session_id)
    # Another caller's session is indistinguishable from a missing one
    if entry is None or entry.uid != _caller_id(request):
        return None
    return entry


def _not_found() -> JSONResponse:
    return JSONResponse({"error": "session_not_found"}, status_code=404)


def _scores_payload(scores: Any) -> Optional[Dict[str, Any]]:
    if isinstance(scores, ScoreSheet):
        return {"categoryScores": scores.to_dict(), "level": scores.level, "levelName": scores.level_name}
    return None


def _error_body(e: Exception):
    """Map agent errors to (status, body)."""
    if isinstance(e, SynthesisFailed):
        return 502, {"error": "synthesis_failed", "message": str(e), "scores": _scores_payload(e.scores)}
    if isinstance(e, ScoringFailed):
        return 502, {"error": "scoring_failed", "message": str(e)}
    if isinstance(e, RecommendationFailed):
        return 502, {"error": "recommendation_failed", "message": str(e)}
    if isinstance(e, GatewayError):
        return 502, {"error": "provider_error", "message": str(e)[:512]}
    if isinstance(e, AgentNotInitialized):
        return 409, {"error": "not_initialized", "message": str(e)}
    return 500, {"error": "internal_error"}


def _error_response(e: Exception, route: str, request_id: Optional[str]) -> JSONResponse:
    status, body = _error_body(e)
    log_event(
        logger,
        "request_failed",
        level=logging.WARNING,
        route=route,
        error=type(e).__name__,
        message=str(e)[:512],
        status=status,
        requestId=request_id,
    )
    return JSONResponse(body, status_code=status)


_STREAM_END = object()


def _sse_response(run: Callable[[TokenSink], Awaitable[Dict[str, Any]]], route: str, request_id: Optional[str]) -> StreamingResponse:
    """Stream tokens as ``data:`` events, then ``event: result`` and ``data: [DONE]``."""

    async def gen():
        queue: asyncio.Queue = asyncio.Queue()

        async def sink(token: str) -> None:
            await queue.put(token)

        async def runner():
            try:
                return await run(sink)
            finally:
                await queue.put(_STREAM_END)

        task = asyncio.create_task(runner())
        try:
            while True:
                item = await queue.get()
                if item is _STREAM_END:
                    break
                yield _sse_data_event(item)
            try:
                result = await task
                yield "event: result\n"
                yield f"data: {json.dumps(result)}\n\n"
            except CookedAgentError as e:
                status, body = _error_body(e)
                log_event(logger, "stream_failed", level=logging.WARNING, route=route, error=type(e).__name__, status=status, requestId=request_id)
                yield "event: error\n"
                yield f"data: {json.dumps(body)}\n\n"
            yield "data: [DONE]\n\n"
        finally:
            if not task.done():
                task.cancel()

    resp = StreamingResponse(gen(), media_type="text/event-stream; charset=utf-8")
    if request_id:
        resp.headers["X-Request-Id"] = str(request_id)
    # SSE anti-buffering headers
    resp.headers["Cache-Control"] = "no-cache, no-transform"
    resp.headers["Connection"] = "keep-alive"
    resp.headers["X-Accel-Buffering"] = "no"
    return resp


def _wants_stream(request: Request, payload: Dict[str, Any]) -> bool:
    q = str(request.query_params.get("stream") or "").strip().lower()
    return bool(payload.get("stream")) or q in ("1", "true", "yes", "on")


async def _persist_turn(entry: SessionEntry, user_text: str, reply: str, create: bool) -> Optional[str]:
    """Append a finished turn to the session's chat, creating it if asked."""
    agent = entry.agent
    convs = agent.conversations
    if convs is None or not entry.uid:
        return agent.chat_id
    if agent.chat_id is None and create:
        agent.chat_id = await convs.create_chat(entry.uid, user_text)
        if agent.chat_id:
            await convs.add_message(entry.uid, agent.chat_id, "assistant", reply)
        return agent.chat_id
    if agent.chat_id:
        await convs.add_message(entry.uid, agent.chat_id, "user", user_text)
        await convs.add_message(entry.uid, agent.chat_id, "assistant", reply)
    return agent.chat_id


# ===== meta =====


@app.get("/health", tags=["meta"], description="Liveness endpoint for health checks.")
async def health():
    return {"status": "ok"}


@app.get("/metrics", tags=["meta"], include_in_schema=False)
async def metrics_endpoint():
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)


# ===== sessions =====


@app.post("/sessions", tags=["sessions"], description="Create an agent session with user context, plan and optional saved chat.")
async def create_session(request: Request, payload: Dict[str, Any] = Body(...)):
    uid = _caller_id(request)
    metrics_data = payload.get("metrics")
    profile = payload.get("profile")
    if not isinstance(metrics_data, dict) or not isinstance(profile, dict):
        return JSONResponse({"error": "metrics and profile objects are required"}, status_code=400)
    docs = _documents()
    agent = AnalysisAgent(
        _gateway(),
        uid=uid,
        memory_store=MemoryStore(docs, caller_id=uid),
        conversations=ConversationStore(docs, caller_id=uid),
        model=payload.get("model") if isinstance(payload.get("model"), str) else None,
    )
    await agent.initialize(
        metrics_data,
        profile,
        prior_result=payload.get("priorResult") if isinstance(payload.get("priorResult"), dict) else None,
        conversation_ref=payload.get("chatId") if isinstance(payload.get("chatId"), str) else None,
        plan_id=payload.get("planId") if isinstance(payload.get("planId"), str) else None,
        tone=payload.get("tone") if isinstance(payload.get("tone"), str) else None,
        display_name=payload.get("displayName") if isinstance(payload.get("displayName"), str) else None,
        weights=payload.get("weights") if isinstance(payload.get("weights"), dict) else None,
    )
    session_id = uuid.uuid4().hex
    _sessions()[session_id] = SessionEntry(agent=agent, uid=uid)
    log_event(logger, "session_created", sessionId=session_id, plan=agent.plan.id, requestId=_request_id(request))
    return {
        "sessionId": session_id,
        "plan": agent.plan.id,
        "chatId": agent.chat_id,
        "displayName": agent.display_name,
        "icon": agent.icon,
        "memoryStatus": agent.memory_status(),
    }


@app.post("/sessions/{session_id}/messages", tags=["chat"], description="One chat turn; SSE when stream=true.")
async def post_message(session_id: str, request: Request, payload: Dict[str, Any] = Body(...)):
    entry = _get_session(request, session_id)
    if entry is None:
        return _not_found()
    text = payload.get("message")
    if not isinstance(text, str) or not text.strip():
        return JSONResponse({"error": "message is required"}, status_code=400)
    mode = payload.get("mode") if isinstance(payload.get("mode"), str) else "QUICK_CHAT"
    model = payload.get("model") if isinstance(payload.get("model"), str) else None
    create_chat = bool(payload.get("createChat"))
    request_id = _request_id(request)

    async def run(sink: Optional[TokenSink]) -> Dict[str, Any]:
        out = await entry.agent.process_message(text, mode=mode, sink=sink, model=model, request_id=request_id)
        chat_id = await _persist_turn(entry, text, out["response"], create_chat)
        return {**out, "chatId": chat_id}

    if _wants_stream(request, payload):
        return _sse_response(run, "/sessions/{id}/messages", request_id)
    try:
        return await run(None)
    except CookedAgentError as e:
        return _error_response(e, "/sessions/{id}/messages", request_id)


@app.post("/sessions/{session_id}/project-messages", tags=["chat"], description="Chat turn scoped to one recommended project.")
async def post_project_message(session_id: str, request: Request, payload: Dict[str, Any] = Body(...)):
    entry = _get_session(request, session_id)
    if entry is None:
        return _not_found()
    text = payload.get("message")
    project = payload.get("project")
    if not isinstance(text, str) or not text.strip() or not isinstance(project, dict):
        return JSONResponse({"error": "message and project are required"}, status_code=400)
    model = payload.get("model") if isinstance(payload.get("model"), str) else None
    request_id = _request_id(request)

    async def run(sink: Optional[TokenSink]) -> Dict[str, Any]:
        return await entry.agent.process_project_message(text, project, sink=sink, model=model, request_id=request_id)

    if _wants_stream(request, payload):
        return _sse_response(run, "/sessions/{id}/project-messages", request_id)
    try:
        return await run(None)
    except CookedAgentError as e:
        return _error_response(e, "/sessions/{id}/project-messages", request_id)


@app.post("/sessions/{session_id}/analysis", tags=["analysis"], description="Two-phase profile analysis.")
async def post_analysis(session_id: str, request: Request, payload: Optional[Dict[str, Any]] = Body(None)):
    entry = _get_session(request, session_id)
    if entry is None:
        return _not_found()
    payload = payload or {}
    request_id = _request_id(request)

    async def run(sink: Optional[TokenSink]) -> Dict[str, Any]:
        result = await entry.agent.analyze_profile(sink=sink, request_id=request_id)
        return result.to_dict()

    if _wants_stream(request, payload):
        return _sse_response(run, "/sessions/{id}/analysis", request_id)
    try:
        return await run(None)
    except CookedAgentError as e:
        return _error_response(e, "/sessions/{id}/analysis", request_id)


@app.post(
    "/sessions/{session_id}/analysis/synthesis",
    tags=["analysis"],
    description="Retry only the narrative phase over scores locked by a failed analysis.",
)
async def post_synthesis_retry(session_id: str, request: Request, payload: Optional[Dict[str, Any]] = Body(None)):
    entry = _get_session(request, session_id)
    if entry is None:
        return _not_found()
    payload = payload or {}
    request_id = _request_id(request)

    async def run(sink: Optional[TokenSink]) -> Dict[str, Any]:
        result = await entry.agent.retry_synthesis(sink=sink, request_id=request_id)
        return result.to_dict()

    if _wants_stream(request, payload):
        return _sse_response(run, "/sessions/{id}/analysis/synthesis", request_id)
    try:
        return await run(None)
    except CookedAgentError as e:
        return _error_response(e, "/sessions/{id}/analysis/synthesis", request_id)


@app.post("/sessions/{session_id}/recommendations", tags=["analysis"], description="Up to four recommended projects.")
async def post_recommendations(session_id: str, request: Request):
    entry = _get_session(request, session_id)
    if entry is None:
        return _not_found()
    request_id = _request_id(request)
    try:
        projects = await entry.agent.recommend_projects(request_id=request_id)
    except CookedAgentError as e:
        return _error_response(e, "/sessions/{id}/recommendations", request_id)
    return {"projects": [p.to_dict() for p in projects]}


@app.post("/sessions/{session_id}/skills/{name}", tags=["analysis"], description="Run a named skill.")
async def post_skill(session_id: str, name: str, request: Request):
    entry = _get_session(request, session_id)
    if entry is None:
        return _not_found()
    request_id = _request_id(request)
    try:
        result = await entry.agent.execute_skill(name, request_id=request_id)
    except CookedAgentError as e:
        return _error_response(e, "/sessions/{id}/skills/{name}", request_id)
    status = 404 if result.error == "skill_not_found" else 200
    return JSONResponse(result.to_dict(), status_code=status)


@app.post("/sessions/{session_id}/memory", tags=["memory"], description="Long-term memory maintenance.")
async def post_memory(session_id: str, request: Request, payload: Dict[str, Any] = Body(...)):
    entry = _get_session(request, session_id)
    if entry is None:
        return _not_found()
    agent = entry.agent
    op = str(payload.get("op") or "add").strip().lower()
    ok = True
    if op == "add":
        item = payload.get("item")
        if not isinstance(item, dict):
            return JSONResponse({"error": "item object is required"}, status_code=400)
        await agent.add_memory(item)
    elif op == "clear":
        ok = await agent.clear_memory()
    elif op in ("enable", "disable"):
        ok = await agent.set_memory_enabled(op == "enable")
    elif op == "delete":
        index = payload.get("index")
        if not isinstance(index, int) or isinstance(index, bool):
            return JSONResponse({"error": "integer index is required"}, status_code=400)
        await agent.delete_memory_item(index)
    elif op == "identity":
        ident = AgentIdentity.from_dict(payload.get("identity"))
        if ident is None:
            return JSONResponse({"error": "identity object is required"}, status_code=400)
        ok = await agent.save_identity(ident)
    else:
        return JSONResponse({"error": f"unknown op: {op}"}, status_code=400)
    return {
        "ok": ok,
        "memory": [m.to_dict() for m in agent.memory.long_term],
        "displayName": agent.display_name,
        "memoryStatus": agent.memory_status(),
    }


@app.post("/sessions/{session_id}/end", tags=["sessions"], description="End a session and extract long-term memory in the background.")
async def post_end(session_id: str, request: Request):
    entry = _get_session(request, session_id)
    if entry is None:
        return _not_found()
    task = entry.agent.end_session(request_id=_request_id(request))
    _track_task(task)
    _sessions().pop(session_id, None)
    log_event(logger, "session_ended", sessionId=session_id, extractionScheduled=task is not None)
    return {"ended": True, "extractionScheduled": task is not None}
