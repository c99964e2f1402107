from contextlib import asynccontextmanager
from functools import lru_cache
import asyncio
import uuid

from fastapi import Depends, FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel, Field

from sitecraft.action_resolver import resolve_actions
from sitecraft.analyzer import SiteAnalyzer
from sitecraft.config import get_settings
from sitecraft.dispatcher import DeploymentDispatcher, default_publishers
from sitecraft.errors import (
    ApplyError,
    FetchError,
    FileOperationError,
    GenerationError,
    InvalidCredentialError,
    SessionUnavailableError,
    SitecraftError,
    UnparsableResponseError,
)
from sitecraft.events import Notifier, sse_event
from sitecraft.generator import AnthropicTextModel
from sitecraft.models import ProviderKind
from sitecraft.orchestrator import SandboxOrchestrator
from sitecraft.plan_parser import normalize_plan, parse_plan
from sitecraft.sandbox import DaytonaSandboxProvider
from sitecraft.store import ConnectionStore, ProjectStore, make_backend
from sitecraft.workflow import BuildSession


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    print(f"[startup] store={settings.store_backend} model={settings.default_model}")
    yield


app = FastAPI(title="sitecraft", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
    "Access-Control-Allow-Origin": "*",
}

# chat_id -> BuildSession, least recently used first
_build_sessions: dict[str, BuildSession] = {}
MAX_CHAT_SESSIONS = 100


# ---------------------------------------------------------------------------
# Dependencies
# ---------------------------------------------------------------------------

@lru_cache()
def get_backend():
    return make_backend()


def get_project_store() -> ProjectStore:
    return ProjectStore(get_backend())


def get_connection_store() -> ConnectionStore:
    return ConnectionStore(get_backend())


@lru_cache()
def get_orchestrator() -> SandboxOrchestrator:
    return SandboxOrchestrator(DaytonaSandboxProvider())


def get_analyzer() -> SiteAnalyzer:
    return SiteAnalyzer()


@lru_cache()
def get_text_model() -> AnthropicTextModel:
    return AnthropicTextModel()


def get_dispatcher(connections: ConnectionStore = Depends(get_connection_store)) -> DeploymentDispatcher:
    return DeploymentDispatcher(default_publishers(), connections)


# ---------------------------------------------------------------------------
# Models
# ---------------------------------------------------------------------------

class AnalyseRequest(BaseModel):
    url: str


class GenerateRequest(BaseModel):
    prompt: str | None = None
    messages: list[dict] | None = None
    system: str | None = None


class ParseRequest(BaseModel):
    text: str


class ApplyRequest(BaseModel):
    plan: dict = Field(default_factory=dict)
    session_id: str | None = None
    project_name: str | None = None


class ChatRequest(BaseModel):
    message: str
    chat_id: str | None = None
    project_name: str | None = None


class TokenRequest(BaseModel):
    token: str


class DeployRequest(BaseModel):
    session_id: str | None = None
    files: dict[str, str] | None = None
    project_name: str | None = None


def _apply_error_detail(e: ApplyError) -> dict:
    return {"error": str(e), "step": e.step, "session_id": e.session_id}


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------

@app.get("/")
def root():
    return {"message": "sitecraft is running"}


@app.get("/health")
async def health():
    return {"status": "ok"}


@app.post("/analyse")
async def analyse_endpoint(request: AnalyseRequest, analyzer: SiteAnalyzer = Depends(get_analyzer)):
    """Fetch a page and return its markup, styles and scripts."""
    if not request.url.strip():
        raise HTTPException(status_code=400, detail="url is required")
    try:
        analysis = await analyzer.analyze(request.url)
    except FetchError as e:
        raise HTTPException(status_code=502, detail=str(e))
    return analysis.model_dump(by_alias=True)


@app.post("/generate")
async def generate_endpoint(request: GenerateRequest, model: AnthropicTextModel = Depends(get_text_model)):
    messages = request.messages if request.messages else request.prompt
    if not messages:
        raise HTTPException(status_code=400, detail="prompt or messages is required")
    try:
        text = await model.complete(messages, system=request.system)
    except GenerationError as e:
        raise HTTPException(status_code=500, detail=str(e))
    return {"text": text}


@app.post("/plan/parse")
async def parse_endpoint(request: ParseRequest):
    try:
        plan = parse_plan(request.text)
    except UnparsableResponseError as e:
        raise HTTPException(status_code=422, detail=str(e))
    return plan.model_dump(by_alias=True)


async def _prepare_plan(request: ApplyRequest, analyzer: SiteAnalyzer, projects: ProjectStore):
    plan = normalize_plan(request.plan)
    if request.project_name:
        plan.design = projects.get_analysis(request.project_name)
    plan = await resolve_actions(plan, analyzer.analyze)
    if request.project_name:
        plan = projects.combine(request.project_name, plan)
    return plan


@app.post("/sandbox/create")
async def create_sandbox_endpoint(orchestrator: SandboxOrchestrator = Depends(get_orchestrator)):
    try:
        session_id = await orchestrator.create_session()
    except SitecraftError as e:
        raise HTTPException(status_code=500, detail=str(e))
    return {"session_id": session_id}


@app.post("/sandbox/apply")
async def apply_endpoint(
    request: ApplyRequest,
    orchestrator: SandboxOrchestrator = Depends(get_orchestrator),
    analyzer: SiteAnalyzer = Depends(get_analyzer),
    projects: ProjectStore = Depends(get_project_store),
):
    """Apply a plan to a sandbox (new, or `session_id`) and start it."""
    try:
        plan = await _prepare_plan(request, analyzer, projects)
    except FetchError as e:
        raise HTTPException(status_code=502, detail=str(e))

    try:
        result = await orchestrator.apply_plan(plan, request.session_id)
    except ApplyError as e:
        raise HTTPException(status_code=500, detail=_apply_error_detail(e))

    if request.project_name:
        projects.save(request.project_name, plan.files, plan.dependencies,
                      plan.dev_dependencies, analysis=plan.design)
    return result.model_dump()


@app.post("/sandbox/apply/stream")
async def apply_stream(
    request: ApplyRequest,
    orchestrator: SandboxOrchestrator = Depends(get_orchestrator),
    analyzer: SiteAnalyzer = Depends(get_analyzer),
    projects: ProjectStore = Depends(get_project_store),
):
    """Same as /sandbox/apply with step-by-step progress via SSE."""

    async def event_stream():
        queue: asyncio.Queue = asyncio.Queue()
        streaming = orchestrator.with_notifier(Notifier("apply", queue))

        yield sse_event("step", {"step": "resolve", "message": "Resolving plan actions..."})
        try:
            plan = await _prepare_plan(request, analyzer, projects)
        except SitecraftError as e:
            yield sse_event("error", {"message": str(e), "step": "resolve"})
            yield sse_event("done", {"success": False, "error": str(e)})
            return

        task = asyncio.create_task(streaming.apply_plan(plan, request.session_id))
        while not task.done() or not queue.empty():
            try:
                event = await asyncio.wait_for(queue.get(), timeout=0.5)
            except asyncio.TimeoutError:
                continue
            yield sse_event("step", event)

        try:
            result = task.result()
        except ApplyError as e:
            yield sse_event("error", {"message": str(e), "step": e.step})
            yield sse_event("done", {"success": False, **_apply_error_detail(e)})
            return

        if request.project_name:
            projects.save(request.project_name, plan.files, plan.dependencies,
                          plan.dev_dependencies, analysis=plan.design)
        yield sse_event("done", result.model_dump())

    return StreamingResponse(event_stream(), media_type="text/event-stream", headers=SSE_HEADERS)


@app.get("/sandbox/{session_id}/status")
async def status_endpoint(session_id: str, orchestrator: SandboxOrchestrator = Depends(get_orchestrator)):
    result = await orchestrator.check_status(session_id)
    return {**result.model_dump(), "status": result.status}


@app.get("/sandbox/{session_id}/files")
async def files_endpoint(session_id: str, orchestrator: SandboxOrchestrator = Depends(get_orchestrator)):
    try:
        files = await orchestrator.extract_files(session_id)
    except SessionUnavailableError as e:
        raise HTTPException(status_code=410, detail=str(e))
    except SitecraftError as e:
        raise HTTPException(status_code=500, detail=str(e))
    return {"files": files, "file_count": len(files)}


@app.get("/sandbox/{session_id}/package")
async def package_endpoint(session_id: str, orchestrator: SandboxOrchestrator = Depends(get_orchestrator)):
    """Files as base64 envelopes, ready for deployment."""
    try:
        files = await orchestrator.package_files(session_id)
    except SessionUnavailableError as e:
        raise HTTPException(status_code=410, detail=str(e))
    except FileOperationError as e:
        raise HTTPException(status_code=422, detail=str(e))
    except SitecraftError as e:
        raise HTTPException(status_code=500, detail=str(e))
    return {"files": files, "file_count": len(files)}


@app.post("/chat")
async def chat_endpoint(
    request: ChatRequest,
    model: AnthropicTextModel = Depends(get_text_model),
    analyzer: SiteAnalyzer = Depends(get_analyzer),
    orchestrator: SandboxOrchestrator = Depends(get_orchestrator),
    projects: ProjectStore = Depends(get_project_store),
):
    """One generate-and-apply turn; pass `chat_id` back to continue the same build."""
    if not request.message.strip():
        raise HTTPException(status_code=400, detail="message is required")

    chat_id = request.chat_id or str(uuid.uuid4())
    # Re-inserted on every turn so the least recently used chat is first
    session = _build_sessions.pop(chat_id, None)
    if session is None:
        session = BuildSession(model, analyzer, orchestrator, projects, request.project_name)
        while len(_build_sessions) >= MAX_CHAT_SESSIONS:
            evicted = next(iter(_build_sessions))
            print(f"  [chat] Dropping least recently used chat {evicted}")
            del _build_sessions[evicted]
    elif request.project_name and request.project_name != session.project_name:
        session.select_project(request.project_name)
    _build_sessions[chat_id] = session

    result = await session.chat(request.message.strip())
    return {
        "chat_id": chat_id,
        "project_name": session.project_name,
        "session_id": session.session_id,
        "live_url": session.live_url,
        **result.model_dump(),
    }


@app.delete("/chat/{chat_id}")
async def end_chat(chat_id: str):
    if _build_sessions.pop(chat_id, None) is None:
        raise HTTPException(status_code=404, detail="Chat not found")
    return {"status": "deleted"}


# ---------------------------------------------------------------------------
# Projects
# ---------------------------------------------------------------------------

@app.get("/projects")
async def list_projects(projects: ProjectStore = Depends(get_project_store)):
    return {"projects": [p.model_dump(by_alias=True, exclude={"analysis"}) for p in projects.list()]}


@app.get("/projects/{name}")
async def get_project(name: str, projects: ProjectStore = Depends(get_project_store)):
    project = projects.get(name)
    if project is None:
        raise HTTPException(status_code=404, detail="Project not found")
    return project.model_dump(by_alias=True)


@app.delete("/projects/{name}")
async def delete_project(name: str, projects: ProjectStore = Depends(get_project_store)):
    if not projects.delete(name):
        raise HTTPException(status_code=500, detail=f"Could not delete {name}")
    return {"status": "deleted"}


@app.delete("/projects")
async def clear_projects(projects: ProjectStore = Depends(get_project_store)):
    if not projects.clear():
        raise HTTPException(status_code=500, detail="Could not clear projects")
    return {"status": "cleared"}


# ---------------------------------------------------------------------------
# Integrations & deployment
# ---------------------------------------------------------------------------

@app.get("/auth")
async def list_connections(connections: ConnectionStore = Depends(get_connection_store)):
    return {
        "connections": {
            kind: c.model_dump(exclude={"token"}) for kind, c in connections.list().items()
        }
    }


@app.post("/auth/{provider}")
async def connect_provider(
    provider: str,
    request: TokenRequest,
    dispatcher: DeploymentDispatcher = Depends(get_dispatcher),
):
    if provider not in {k.value for k in ProviderKind}:
        raise HTTPException(status_code=404, detail=f"Unknown provider {provider}")
    if not request.token.strip():
        raise HTTPException(status_code=400, detail="Token is required")
    try:
        connection = await dispatcher.connect(provider, request.token)
    except InvalidCredentialError as e:
        raise HTTPException(status_code=401, detail=str(e))
    return {"success": True, "connection": connection.model_dump(exclude={"token"})}


@app.delete("/auth/{provider}")
async def disconnect_provider(provider: str, connections: ConnectionStore = Depends(get_connection_store)):
    if not connections.remove(provider):
        raise HTTPException(status_code=500, detail=f"Could not remove {provider}")
    return {"status": "removed"}


@app.post("/deploy/{provider}")
async def deploy_endpoint(
    provider: str,
    request: DeployRequest,
    orchestrator: SandboxOrchestrator = Depends(get_orchestrator),
    dispatcher: DeploymentDispatcher = Depends(get_dispatcher),
):
    """Publish a sandbox's files (or an explicit file set) to a provider."""
    files = request.files
    if files is None:
        if not request.session_id:
            raise HTTPException(status_code=400, detail="session_id or files is required")
        try:
            files = await orchestrator.extract_files(request.session_id)
        except SessionUnavailableError as e:
            raise HTTPException(status_code=410, detail=str(e))
        except SitecraftError as e:
            raise HTTPException(status_code=500, detail=str(e))

    project_name = request.project_name or f"project-{uuid.uuid4().hex[:8]}"
    result = await dispatcher.publish(provider, files, project_name)

    if result.success:
        status = 200
    elif result.needs_auth:
        status = 401
    else:
        status = 502
    return JSONResponse(status_code=status, content=result.model_dump())
