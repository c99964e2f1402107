"""
One user-facing build flow: chat turns that generate a plan, apply it to a
sandbox and keep the result in the project store.

    message -> model -> parse_plan -> resolve_actions -> combine -> apply_plan -> save

The session id and the design context survive across turns, so follow-up
requests land in the same sandbox and keep the same look.
"""

import time

from pydantic import BaseModel, Field

from sitecraft.action_resolver import resolve_actions
from sitecraft.analyzer import Analyzer
from sitecraft.dispatcher import DeploymentDispatcher
from sitecraft.errors import ApplyError, SessionUnavailableError, SitecraftError
from sitecraft.generator import PLAN_SYSTEM_PROMPT, TextModel, build_messages
from sitecraft.models import ApplyResult, PageAnalysis, Plan, ProviderKind, PublishResult, SandboxStatus
from sitecraft.orchestrator import SandboxOrchestrator
from sitecraft.plan_parser import parse_plan
from sitecraft.store import ProjectStore


ENV_LOCAL_PATH = ".env.local"


class TurnResult(BaseModel):
    success: bool
    reply: str = ""
    files: dict[str, str] = Field(default_factory=dict)
    apply: ApplyResult | None = None
    error: str | None = None
    step: str | None = None


def new_project_name() -> str:
    return f"project-{int(time.time() * 1000)}"


class BuildSession:
    def __init__(
        self,
        model: TextModel,
        analyzer: Analyzer,
        orchestrator: SandboxOrchestrator,
        projects: ProjectStore,
        project_name: str | None = None,
    ):
        self.model = model
        self.analyzer = analyzer
        self.orchestrator = orchestrator
        self.projects = projects
        self.project_name = project_name
        self.session_id: str | None = None
        self.live_url: str | None = None
        self.design: PageAnalysis | None = None
        self.history: list[dict] = []

        if project_name:
            self.design = projects.get_analysis(project_name)

    def select_project(self, name: str):
        """Continue from a stored project; its analysis becomes the design context."""
        self.project_name = name
        self.design = self.projects.get_analysis(name)

    async def analyze(self, url: str) -> PageAnalysis:
        self.design = await self.analyzer.analyze(url)
        return self.design

    async def _generate_plan(self, message: str) -> tuple[str, Plan]:
        messages = build_messages(message, self.design, self.history)
        reply = await self.model.complete(messages, system=PLAN_SYSTEM_PROMPT)
        plan = parse_plan(reply)
        plan.design = self.design
        resolved = await resolve_actions(plan, self.analyzer.analyze)
        if resolved.design is not None:
            self.design = resolved.design
        return reply, resolved

    async def chat(self, message: str) -> TurnResult:
        """Run one turn. Failures come back as an unsuccessful TurnResult."""
        if self.project_name is None:
            self.project_name = new_project_name()

        try:
            reply, plan = await self._generate_plan(message)
        except SitecraftError as e:
            print(f"  [workflow] Generation failed: {e}")
            return TurnResult(success=False, error=str(e), step="generate")

        self.history.append({"role": "user", "content": message})
        self.history.append({"role": "assistant", "content": reply})

        combined = self.projects.combine(self.project_name, plan)

        try:
            result = await self.orchestrator.apply_plan(combined, self.session_id)
        except ApplyError as e:
            record = self.orchestrator.sessions.get(e.session_id) if e.session_id else None
            if isinstance(e.cause, SessionUnavailableError) or (
                record is not None and record.status == SandboxStatus.EXPIRED
            ):
                print(f"  [workflow] Session {e.session_id} expired, next turn starts a new one")
                self.session_id = None
                self.live_url = None
            else:
                self.session_id = e.session_id or self.session_id
            return TurnResult(
                success=False, reply=reply, files=combined.files, error=str(e), step=e.step,
            )

        self.session_id = result.session_id
        self.live_url = result.live_url
        self.projects.save(
            self.project_name,
            combined.files,
            combined.dependencies,
            combined.dev_dependencies,
            analysis=self.design,
        )
        return TurnResult(success=True, reply=reply, files=combined.files, apply=result)

    async def publish(self, provider: ProviderKind | str,
                      dispatcher: DeploymentDispatcher) -> PublishResult:
        """Publish the files currently in the sandbox."""
        kind = provider.value if isinstance(provider, ProviderKind) else str(provider)
        if not self.session_id:
            return PublishResult(success=False, provider=kind, error="No active sandbox to deploy")

        try:
            files = await self.orchestrator.extract_files(self.session_id)
        except SessionUnavailableError as e:
            self.session_id = None
            return PublishResult(success=False, provider=kind, error=str(e))
        except Exception as e:
            print(f"  [workflow] Could not read files from {self.session_id}: {e}")
            return PublishResult(success=False, provider=kind, error=f"Could not read sandbox files: {e}")

        name = self.project_name or new_project_name()
        result = await dispatcher.publish(provider, files, name)

        env_local = result.extra.get("env_local") if result.success else None
        if env_local:
            stored = self.projects.get(name)
            current = stored.file_map() if stored else dict(files)
            current[ENV_LOCAL_PATH] = env_local
            self.projects.save(
                name,
                current,
                stored.dependencies if stored else None,
                stored.dev_dependencies if stored else None,
                analysis=self.design,
            )
        return result
