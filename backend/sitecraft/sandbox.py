"""
Daytona sandbox collaborator.

SandboxProvider/SandboxHandle are the narrow contract the orchestrator drives
(create, connect, file write/read/delete, blocking and background commands,
preview URL). DaytonaSandboxProvider implements it on the `daytona` SDK.
All calls are blocking; the orchestrator runs them on a worker thread.
"""

import math
import shlex
import time
from typing import Protocol

from daytona import CreateSandboxFromSnapshotParams, Daytona, DaytonaConfig

from sitecraft.config import get_settings
from sitecraft.errors import ConfigurationError, FileOperationError, SessionUnavailableError
from sitecraft.models import CommandResult


class SandboxHandle(Protocol):
    session_id: str

    def set_timeout(self, timeout_seconds: int) -> None: ...
    def write_file(self, path: str, content: str) -> None: ...
    def read_file(self, path: str) -> str: ...
    def delete_file(self, path: str) -> None: ...
    def run_command(self, cmd: str, cwd: str | None = None,
                    timeout_seconds: int | None = None) -> CommandResult: ...
    def start_command(self, cmd: str, cwd: str | None = None) -> None: ...
    def exposed_url(self, port: int) -> str: ...


class SandboxProvider(Protocol):
    def create(self, timeout_seconds: int, auto_suspend: bool) -> str: ...
    def connect(self, session_id: str, timeout_seconds: int,
                resume: bool = True) -> SandboxHandle: ...


def _minutes(seconds: int) -> int:
    return max(1, math.ceil(seconds / 60))


def get_daytona_client() -> Daytona:
    """Get a configured Daytona client."""
    api_key = get_settings().daytona_api_key
    if not api_key:
        raise ConfigurationError("DAYTONA_API_KEY not set")
    return Daytona(DaytonaConfig(api_key=api_key))


class DaytonaSandboxHandle:
    def __init__(self, sandbox, project_root: str):
        self.sandbox = sandbox
        self.session_id = sandbox.id
        self.project_root = project_root.rstrip("/")

    def _abs(self, path: str) -> str:
        if path.startswith("/"):
            return path
        if path.startswith("./"):
            path = path[2:]
        return f"{self.project_root}/{path}"

    def set_timeout(self, timeout_seconds: int):
        self.sandbox.set_autostop_interval(_minutes(timeout_seconds))

    def write_file(self, path: str, content: str):
        full_path = self._abs(path)
        dir_path = full_path.rsplit("/", 1)[0]
        try:
            self.sandbox.process.exec(f"mkdir -p {shlex.quote(dir_path)}", timeout=10)
            self.sandbox.fs.upload_file(content.encode("utf-8"), full_path)
        except Exception as e:
            raise FileOperationError(path, "write", str(e)) from e

    def read_file(self, path: str) -> str:
        try:
            data = self.sandbox.fs.download_file(self._abs(path))
        except Exception as e:
            raise FileOperationError(path, "read", str(e)) from e
        return data.decode("utf-8", errors="replace") if isinstance(data, bytes) else str(data)

    def delete_file(self, path: str):
        try:
            self.sandbox.fs.delete_file(self._abs(path))
        except Exception as e:
            raise FileOperationError(path, "delete", str(e)) from e

    def run_command(self, cmd: str, cwd: str | None = None,
                    timeout_seconds: int | None = None) -> CommandResult:
        result = self.sandbox.process.exec(cmd, cwd=cwd or self.project_root, timeout=timeout_seconds)
        # Daytona merges stderr into `result`
        return CommandResult(exit_code=result.exit_code or 0, stdout=result.result or "")

    def start_command(self, cmd: str, cwd: str | None = None):
        workdir = cwd or self.project_root
        log_file = f"{workdir}/.server.log"
        self.sandbox.process.exec(
            f"cd {shlex.quote(workdir)} && nohup {cmd} > {shlex.quote(log_file)} 2>&1 &",
            timeout=10,
        )

    def exposed_url(self, port: int) -> str:
        """Signed URL embeds in iframes without Daytona's preview page; fall back to the plain link."""
        try:
            signed = self.sandbox.create_signed_preview_url(port, expires_in_seconds=7200)
            return signed.url if hasattr(signed, "url") else str(signed)
        except Exception:
            return self.sandbox.get_preview_link(port).url


class DaytonaSandboxProvider:
    def __init__(self, client: Daytona | None = None, project_root: str | None = None):
        settings = get_settings()
        self._client = client
        self.project_root = project_root or settings.project_root
        self.auto_archive_minutes = settings.auto_archive_minutes

    @property
    def client(self) -> Daytona:
        if self._client is None:
            self._client = get_daytona_client()
        return self._client

    def create(self, timeout_seconds: int, auto_suspend: bool) -> str:
        # auto_stop_interval: Daytona stops (not deletes) an idle sandbox and
        # keeps its filesystem, which is what lets a later connect() resume it.
        params = CreateSandboxFromSnapshotParams(
            language="typescript",
            public=True,
            auto_stop_interval=_minutes(timeout_seconds) if auto_suspend else 0,
            auto_archive_interval=self.auto_archive_minutes,
        )
        sandbox = self.client.create(params, timeout=120)
        self._wait_until_ready(sandbox)
        sandbox.process.exec(f"mkdir -p {shlex.quote(self.project_root)}", timeout=10)
        print(f"  [sandbox] Created {sandbox.id}")
        return sandbox.id

    @staticmethod
    def _wait_until_ready(sandbox, attempts: int = 30):
        # create() returns before the container accepts commands
        for attempt in range(attempts):
            try:
                probe = sandbox.process.exec("echo ready", timeout=10)
                if probe.result and "ready" in probe.result:
                    return
            except Exception as e:
                if attempt % 5 == 4:
                    print(f"  [sandbox] Still waiting for {sandbox.id} ({(attempt + 1) * 2}s): {e}")
            time.sleep(2)
        print(f"  [sandbox] WARNING: {sandbox.id} not responsive after {attempts * 2}s, proceeding anyway")

    def connect(self, session_id: str, timeout_seconds: int,
                resume: bool = True) -> DaytonaSandboxHandle:
        try:
            sandbox = self.client.get(session_id)
        except Exception as e:
            raise SessionUnavailableError(session_id, str(e)) from e

        state = str(getattr(sandbox, "state", "") or "").lower()
        if state and not state.endswith("started"):
            if not resume:
                raise SessionUnavailableError(session_id, f"sandbox is {state}")
            try:
                self.client.start(sandbox, timeout=timeout_seconds)
            except Exception as e:
                raise SessionUnavailableError(session_id, f"could not resume: {e}") from e

        return DaytonaSandboxHandle(sandbox, self.project_root)
