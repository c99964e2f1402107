"""
Data model shared by the parser, resolver, store, orchestrator and dispatcher.

Field aliases keep the camelCase keys the model is prompted with
(``devDependencies``, ``fromAnalysisOf``, ``baseURL`` ...) so raw JSON can be
validated directly, while Python code uses snake_case.
"""

import time
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from sitecraft.errors import InvalidTransitionError


# ---------------------------------------------------------------------------
# Site analysis
# ---------------------------------------------------------------------------

class AnimationFile(BaseModel):
    model_config = ConfigDict(frozen=True)

    url: str
    content: str = ""
    library: str | None = None
    confidence: int = 0


class PageAnalysis(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    base_url: str = Field("", alias="baseURL")
    title: str = "Untitled"
    description: str = ""
    full_html: str = Field("", alias="fullHTML")
    full_css: str = Field("", alias="fullCSS")
    full_js: str = Field("", alias="fullJS")
    used_classes: list[str] = Field(default_factory=list, alias="usedClasses")
    animation_files: list[AnimationFile] = Field(default_factory=list, alias="animationFiles")
    required_cdn_urls: list[str] = Field(default_factory=list, alias="requiredCdnUrls")
    tech_guesses: list[str] = Field(default_factory=list, alias="techGuesses")

    stylesheets: int = 0
    internal_links: int = Field(0, alias="internalLinks")
    external_links: int = Field(0, alias="externalLinks")
    images: list[str] = Field(default_factory=list)
    open_graph_tags: int = Field(0, alias="openGraphTags")


# ---------------------------------------------------------------------------
# Plan
# ---------------------------------------------------------------------------

class PlanAction(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    type: str = ""
    url: str | None = None
    from_analysis_of: str | None = Field(None, alias="fromAnalysisOf")
    path: str | None = None
    target: str | None = None
    content: str | None = None


class Plan(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    files: dict[str, str] = Field(default_factory=dict)
    delete: list[str] = Field(default_factory=list)
    dependencies: dict[str, str] = Field(default_factory=dict)
    dev_dependencies: dict[str, str] = Field(default_factory=dict, alias="devDependencies")
    commands: list[str] = Field(default_factory=list)
    actions: list[PlanAction] = Field(default_factory=list)

    # Design context captured while resolving actions; never serialized.
    design: PageAnalysis | None = Field(None, exclude=True)


# ---------------------------------------------------------------------------
# Local persistence
# ---------------------------------------------------------------------------

class StoredFile(BaseModel):
    path: str
    content: str
    written_at: float = Field(default_factory=time.time)


class StoredProject(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    name: str
    files: list[StoredFile] = Field(default_factory=list)
    dependencies: dict[str, str] = Field(default_factory=dict)
    dev_dependencies: dict[str, str] = Field(default_factory=dict, alias="devDependencies")
    analysis: PageAnalysis | None = None
    saved_at: float = Field(default_factory=time.time)

    def file_map(self) -> dict[str, str]:
        return {f.path: f.content for f in self.files}


class ProviderKind(str, Enum):
    GITHUB = "github"
    VERCEL = "vercel"
    SUPABASE = "supabase"


class IntegrationConnection(BaseModel):
    provider: ProviderKind
    token: str
    account_id: str = ""
    display_name: str = ""
    email: str | None = None
    connected_at: float = Field(default_factory=time.time)


# ---------------------------------------------------------------------------
# Sandbox session state machine
# ---------------------------------------------------------------------------

class SandboxStatus(str, Enum):
    UNINITIALIZED = "uninitialized"
    CREATED = "created"
    FILES_WRITTEN = "files_written"
    INSTALLED = "installed"
    BUILT = "built"
    RUNNING = "running"
    ERROR = "error"
    EXPIRED = "expired"


_FORWARD = [
    SandboxStatus.UNINITIALIZED,
    SandboxStatus.CREATED,
    SandboxStatus.FILES_WRITTEN,
    SandboxStatus.INSTALLED,
    SandboxStatus.BUILT,
    SandboxStatus.RUNNING,
]

_TERMINAL = (SandboxStatus.ERROR, SandboxStatus.EXPIRED)


class SandboxSession(BaseModel):
    """One pass of the lifecycle against a remote sandbox."""

    session_id: str | None = None
    status: SandboxStatus = SandboxStatus.UNINITIALIZED
    live_url: str | None = None
    last_error: str | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status in _TERMINAL

    def advance(self, next_status: SandboxStatus) -> None:
        """Move to the next state, refusing skipped, repeated or backward steps."""
        current = self.status
        if current in _TERMINAL:
            raise InvalidTransitionError(
                f"Session {self.session_id} is {current.value}; create a new session"
            )
        if next_status == SandboxStatus.ERROR:
            self.status = next_status
            return
        if next_status == SandboxStatus.EXPIRED:
            if current == SandboxStatus.UNINITIALIZED and self.session_id is None:
                raise InvalidTransitionError("A session that never existed cannot expire")
            self.status = next_status
            return

        idx = _FORWARD.index(current)
        if idx + 1 >= len(_FORWARD) or _FORWARD[idx + 1] != next_status:
            raise InvalidTransitionError(
                f"Cannot move from {current.value} to {next_status.value}"
            )
        self.status = next_status

    def fail(self, message: str, expired: bool = False) -> None:
        self.last_error = message
        if self.is_terminal:
            return
        self.advance(SandboxStatus.EXPIRED if expired else SandboxStatus.ERROR)


class CommandResult(BaseModel):
    exit_code: int = 0
    stdout: str = ""
    stderr: str = ""

    @property
    def output(self) -> str:
        return self.stdout + self.stderr


# ---------------------------------------------------------------------------
# Operation results
# ---------------------------------------------------------------------------

class ApplyResult(BaseModel):
    success: bool
    session_id: str | None = None
    live_url: str | None = None
    status: SandboxStatus = SandboxStatus.UNINITIALIZED
    files_written: int = 0
    step: str | None = None
    error: str | None = None
    logs: list[str] = Field(default_factory=list)


class StatusResult(BaseModel):
    session_id: str
    active: bool
    error: str | None = None

    @property
    def status(self) -> str:
        return "active" if self.active else "inactive"


class UploadSummary(BaseModel):
    attempted: int = 0
    succeeded: int = 0
    failed: int = 0
    failed_paths: list[str] = Field(default_factory=list)


class PublishOutcome(BaseModel):
    """What a provider adapter hands back before normalization."""

    location: str | None = None
    summary: UploadSummary | None = None
    extra: dict[str, Any] = Field(default_factory=dict)


class PublishResult(BaseModel):
    success: bool
    provider: str
    location: str | None = None
    error: str | None = None
    needs_auth: bool = False
    summary: UploadSummary | None = None
    extra: dict[str, Any] = Field(default_factory=dict)
