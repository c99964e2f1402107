"""
Sandbox lifecycle orchestrator.

apply_plan drives one pass of the session state machine

    uninitialized -> created -> files_written -> installed -> built -> running

against a SandboxProvider. Every step is a blocking remote call; the whole
pass runs on one worker thread so steps stay strictly ordered. The first
failing step aborts the pass with ApplyError(step, cause); nothing is
retried or rolled back, the half-applied sandbox is left as-is for
inspection. Only delete failures are tolerated.
"""

import asyncio
import base64
import copy
import json

from sitecraft import scaffold
from sitecraft.config import get_settings
from sitecraft.errors import (
    ApplyError,
    CommandFailedError,
    FileOperationError,
    SessionUnavailableError,
)
from sitecraft.events import Notifier
from sitecraft.models import ApplyResult, Plan, SandboxSession, SandboxStatus, StatusResult
from sitecraft.sandbox import SandboxHandle, SandboxProvider


INSTALL_COMMAND = "npm install --no-audit --loglevel warn"
BUILD_COMMAND = "npm run build"
START_COMMAND = "npm run start"
STOP_SERVER_COMMAND = "pkill -f '[n]ext start' || true"

# Run from the project root; hidden paths (.next, .env, .server.log) drop out via './.*'
LIST_FILES_COMMAND = (
    "find . -type f -not -path './node_modules/*' -not -path './.next/*' -not -path './.*'"
)

STEP_SESSION = "session"
STEP_MANIFEST = "manifest"
STEP_SCAFFOLD = "scaffold"
STEP_DELETE = "delete"
STEP_WRITE = "write"
STEP_INSTALL = "install"
STEP_BUILD = "build"
STEP_START = "start"


class SandboxOrchestrator:
    def __init__(self, provider: SandboxProvider, settings=None, notifier: Notifier | None = None):
        self.provider = provider
        self.settings = settings or get_settings()
        self.notify = notifier or Notifier("apply")
        # Latest pass per session id
        self.sessions: dict[str, SandboxSession] = {}

    def with_notifier(self, notifier: Notifier) -> "SandboxOrchestrator":
        """Same provider and session records, different progress sink."""
        clone = copy.copy(self)
        clone.notify = notifier
        return clone

    # ── apply ────────────────────────────────────────────────────────────────

    async def apply_plan(self, plan: Plan, existing_session_id: str | None = None) -> ApplyResult:
        """
        Apply a resolved plan to a sandbox and start it.

        Reuses `existing_session_id` when given (files already in the sandbox
        and not named in `plan.delete` are left in place), otherwise creates a
        fresh session. Raises ApplyError naming the failed step.
        """
        return await asyncio.to_thread(self._apply_plan, plan, existing_session_id)

    def _apply_plan(self, plan: Plan, existing_session_id: str | None) -> ApplyResult:
        session = SandboxSession(session_id=existing_session_id)
        logs: list[str] = []
        step = STEP_SESSION

        try:
            handle, is_new = self._resolve_session(session, existing_session_id)

            step = STEP_MANIFEST
            self.notify("Writing package.json", step)
            handle.write_file(
                scaffold.MANIFEST_PATH,
                scaffold.build_manifest(plan.dependencies, plan.dev_dependencies,
                                        port=self.settings.preview_port),
            )

            step = STEP_SCAFFOLD
            self._write_scaffold(handle, plan, is_new)

            step = STEP_DELETE
            self._delete_files(handle, plan.delete)

            step = STEP_WRITE
            self.notify(f"Writing {len(plan.files)} files", step)
            for path, content in plan.files.items():
                handle.write_file(path, content)
            for cmd in plan.commands:
                # Informational only; the manifest drives installation
                self.notify(f"Plan command (not executed): {cmd}", step)
            session.advance(SandboxStatus.FILES_WRITTEN)

            step = STEP_INSTALL
            self.notify("Installing dependencies...", step)
            logs.append(self._run(handle, INSTALL_COMMAND, self.settings.install_timeout_seconds))
            session.advance(SandboxStatus.INSTALLED)

            step = STEP_BUILD
            self.notify("Building project...", step)
            logs.append(self._run(handle, BUILD_COMMAND, self.settings.build_timeout_seconds))
            session.advance(SandboxStatus.BUILT)

            step = STEP_START
            self.notify("Starting server...", step)
            handle.run_command(STOP_SERVER_COMMAND, timeout_seconds=10)
            handle.start_command(START_COMMAND)
            session.live_url = handle.exposed_url(self.settings.preview_port)
            session.advance(SandboxStatus.RUNNING)

        except Exception as e:
            expired = isinstance(e, SessionUnavailableError) and session.session_id is not None
            session.fail(str(e), expired=expired)
            self.notify(f"Step '{step}' failed: {e}", step)
            raise ApplyError(step, e, session.session_id) from e

        self.notify(f"Live at {session.live_url}", STEP_START)
        return ApplyResult(
            success=True,
            session_id=session.session_id,
            live_url=session.live_url,
            status=session.status,
            files_written=len(plan.files),
            logs=logs,
        )

    def _resolve_session(self, session: SandboxSession,
                         existing_session_id: str | None) -> tuple[SandboxHandle, bool]:
        timeout = self.settings.sandbox_timeout_seconds

        if existing_session_id:
            previous = self.sessions.get(existing_session_id)
            self.sessions[existing_session_id] = session
            if previous is not None and previous.status == SandboxStatus.EXPIRED:
                raise SessionUnavailableError(existing_session_id, "session already expired")
            self.notify(f"Reconnecting to sandbox {existing_session_id}", STEP_SESSION)
            handle = self.provider.connect(existing_session_id, timeout)
            handle.set_timeout(timeout)
            is_new = False
        else:
            self.notify("Creating sandbox...", STEP_SESSION)
            session_id = self.provider.create(timeout, auto_suspend=True)
            session.session_id = session_id
            self.sessions[session_id] = session
            handle = self.provider.connect(session_id, timeout)
            is_new = True

        session.advance(SandboxStatus.CREATED)
        return handle, is_new

    def _write_scaffold(self, handle: SandboxHandle, plan: Plan, is_new: bool):
        if scaffold.LAYOUT_PATH not in plan.files:
            self.notify("Writing default layout", STEP_SCAFFOLD)
            handle.write_file(scaffold.LAYOUT_PATH, scaffold.DEFAULT_LAYOUT)

        # The default layout imports globals.css, so it has to exist
        if scaffold.GLOBALS_CSS_PATH not in plan.files and (is_new or not self._exists(handle, scaffold.GLOBALS_CSS_PATH)):
            handle.write_file(scaffold.GLOBALS_CSS_PATH, scaffold.DEFAULT_GLOBALS_CSS)

        if is_new and scaffold.PAGE_PATH not in plan.files:
            handle.write_file(scaffold.PAGE_PATH, scaffold.DEFAULT_PAGE)

    @staticmethod
    def _exists(handle: SandboxHandle, path: str) -> bool:
        try:
            handle.read_file(path)
            return True
        except FileOperationError:
            return False

    def _delete_files(self, handle: SandboxHandle, paths: list[str]):
        for path in paths:
            try:
                handle.delete_file(path)
                self.notify(f"Deleted {path}", STEP_DELETE)
            except Exception as e:
                self.notify(f"Could not delete {path}: {e}", STEP_DELETE)

    @staticmethod
    def _run(handle: SandboxHandle, cmd: str, timeout_seconds: int) -> str:
        result = handle.run_command(cmd, timeout_seconds=timeout_seconds)
        if result.exit_code != 0:
            raise CommandFailedError(cmd, result.exit_code, result.output)
        return result.output

    # ── create only ──────────────────────────────────────────────────────────

    async def create_session(self) -> str:
        """Create a sandbox holding the baseline scaffold, without installing."""

        def _create():
            timeout = self.settings.sandbox_timeout_seconds
            session = SandboxSession()
            session_id = self.provider.create(timeout, auto_suspend=True)
            session.session_id = session_id
            self.sessions[session_id] = session
            try:
                handle = self.provider.connect(session_id, timeout)
                session.advance(SandboxStatus.CREATED)
                handle.write_file(scaffold.MANIFEST_PATH,
                                 scaffold.baseline_manifest_text(self.settings.preview_port))
                for path, content in scaffold.SCAFFOLD_FILES.items():
                    handle.write_file(path, content)
                session.advance(SandboxStatus.FILES_WRITTEN)
            except Exception as e:
                session.fail(str(e), expired=isinstance(e, SessionUnavailableError))
                raise
            self.notify(f"Sandbox {session_id} ready with default scaffold", STEP_SESSION)
            return session_id

        return await asyncio.to_thread(_create)

    # ── status ───────────────────────────────────────────────────────────────

    async def check_status(self, session_id: str) -> StatusResult:
        """Reachability probe with the short timeout. Never raises, never resumes."""
        timeout = self.settings.status_timeout_seconds
        try:
            await asyncio.wait_for(
                asyncio.to_thread(self.provider.connect, session_id, timeout, False),
                timeout=timeout,
            )
            return StatusResult(session_id=session_id, active=True)
        except asyncio.TimeoutError:
            print(f"  [status] {session_id} did not answer within {timeout}s")
            return StatusResult(session_id=session_id, active=False,
                                error=f"No answer within {timeout}s")
        except Exception as e:
            print(f"  [status] {session_id} unreachable: {e}")
            return StatusResult(session_id=session_id, active=False, error=str(e))

    # ── extraction ───────────────────────────────────────────────────────────

    async def extract_files(self, session_id: str) -> dict[str, str]:
        """
        Read back every project file (no node_modules, .next or hidden files).
        JSON files are re-serialized pretty-printed; a corrupted package.json
        is replaced with the baseline manifest. Unreadable files are skipped.
        """
        return await asyncio.to_thread(self._extract_files, session_id)

    def _connect_existing(self, session_id: str) -> SandboxHandle:
        timeout = self.settings.sandbox_timeout_seconds
        try:
            handle = self.provider.connect(session_id, timeout)
        except SessionUnavailableError as e:
            record = self.sessions.get(session_id)
            if record is not None:
                record.fail(str(e), expired=True)
            raise
        handle.set_timeout(timeout)
        return handle

    def _extract_files(self, session_id: str) -> dict[str, str]:
        handle = self._connect_existing(session_id)
        listing = handle.run_command(LIST_FILES_COMMAND, timeout_seconds=60)
        paths = [p for p in listing.stdout.strip().splitlines() if p and p != "."]
        print(f"  [extract] {len(paths)} files in {session_id}")

        files = {}
        for raw_path in paths:
            path = raw_path[2:] if raw_path.startswith("./") else raw_path
            try:
                content = handle.read_file(path)
            except Exception as e:
                print(f"  [extract] Could not read {path}: {e}")
                continue
            files[path] = self._normalize(path, content, self.settings.preview_port)

        print(f"  [extract] Extracted {len(files)} files")
        return files

    @staticmethod
    def _normalize(path: str, content: str, port: int = scaffold.DEFAULT_PORT) -> str:
        if not path.endswith(".json"):
            return content
        try:
            return json.dumps(json.loads(content), indent=2)
        except ValueError as e:
            print(f"  [extract] Invalid JSON in {path}: {e}")
            if path == scaffold.MANIFEST_PATH:
                print("  [extract] Using baseline package.json")
                return scaffold.baseline_manifest_text(port)
            return content

    async def package_files(self, session_id: str) -> dict[str, dict[str, str]]:
        """Extracted files as base64 envelopes ({content, encoding}) for deployment."""
        files = await self.extract_files(session_id)
        manifest = files.get(scaffold.MANIFEST_PATH)
        if manifest is not None:
            try:
                json.loads(manifest)
            except ValueError as e:
                raise FileOperationError(scaffold.MANIFEST_PATH, "package", f"invalid JSON: {e}") from e
        return {
            path: {
                "content": base64.b64encode(content.encode("utf-8")).decode("ascii"),
                "encoding": "base64",
            }
            for path, content in files.items()
        }
