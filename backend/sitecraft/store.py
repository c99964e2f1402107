"""
Local project + integration store.

Both collections live under a fixed key in a small key/value backend and are
read-modify-written as a whole. Storage problems are printed and reported as
False / empty results, never raised: this is a convenience cache and must not
block the build flow. Concurrent writers race and the last one wins.
"""

import json
import os
import tempfile
from typing import Any, Mapping, Protocol

from pydantic import ValidationError

from sitecraft.config import get_settings
from sitecraft.errors import ConfigurationError
from sitecraft.models import (
    IntegrationConnection,
    PageAnalysis,
    Plan,
    ProviderKind,
    StoredFile,
    StoredProject,
)


# ---------------------------------------------------------------------------
# Backends
# ---------------------------------------------------------------------------

class KeyValueBackend(Protocol):
    def get(self, key: str) -> Any | None: ...
    def set(self, key: str, value: Any) -> None: ...
    def delete(self, key: str) -> None: ...
    def clear(self) -> None: ...


class MemoryBackend:
    """In-process backend. Values are stored serialized, like the real ones."""

    def __init__(self):
        self._data: dict[str, str] = {}

    def get(self, key):
        raw = self._data.get(key)
        return json.loads(raw) if raw is not None else None

    def set(self, key, value):
        self._data[key] = json.dumps(value)

    def delete(self, key):
        self._data.pop(key, None)

    def clear(self):
        self._data.clear()


class JsonFileBackend:
    """All keys in one JSON document on disk, rewritten atomically on every set."""

    def __init__(self, path: str):
        self.path = path

    def _load(self) -> dict:
        if not os.path.exists(self.path):
            return {}
        with open(self.path, "r", encoding="utf-8") as f:
            data = json.load(f)
        if not isinstance(data, dict):
            raise ValueError(f"{self.path} does not contain a JSON object")
        return data

    def _dump(self, data: dict):
        directory = os.path.dirname(os.path.abspath(self.path))
        os.makedirs(directory, exist_ok=True)
        fd, tmp = tempfile.mkstemp(dir=directory, suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(data, f)
            os.replace(tmp, self.path)
        except BaseException:
            if os.path.exists(tmp):
                os.remove(tmp)
            raise

    def get(self, key):
        return self._load().get(key)

    def set(self, key, value):
        data = self._load()
        data[key] = value
        self._dump(data)

    def delete(self, key):
        data = self._load()
        if key in data:
            del data[key]
            self._dump(data)

    def clear(self):
        self._dump({})


class SupabaseBackend:
    """Key/value rows ({key text primary key, value jsonb}) in a Supabase table."""

    def __init__(self, client, table: str):
        self.client = client
        self.table = table

    @classmethod
    def from_settings(cls, settings=None) -> "SupabaseBackend":
        settings = settings or get_settings()
        if not settings.supabase_url or not settings.supabase_key:
            raise ConfigurationError("SUPABASE_URL and SUPABASE_KEY must be set in .env")
        from supabase import create_client
        return cls(create_client(settings.supabase_url, settings.supabase_key), settings.supabase_kv_table)

    def get(self, key):
        result = self.client.table(self.table).select("value").eq("key", key).execute()
        return result.data[0]["value"] if result.data else None

    def set(self, key, value):
        self.client.table(self.table).upsert({"key": key, "value": value}).execute()

    def delete(self, key):
        self.client.table(self.table).delete().eq("key", key).execute()

    def clear(self):
        self.client.table(self.table).delete().neq("key", "").execute()


def make_backend(settings=None) -> KeyValueBackend:
    settings = settings or get_settings()
    kind = settings.store_backend.lower()
    if kind == "memory":
        return MemoryBackend()
    if kind == "supabase":
        return SupabaseBackend.from_settings(settings)
    if kind == "file":
        return JsonFileBackend(settings.store_path)
    raise ConfigurationError(f"Unknown STORE_BACKEND {settings.store_backend!r}")


# ---------------------------------------------------------------------------
# Projects
# ---------------------------------------------------------------------------

class ProjectStore:
    def __init__(self, backend: KeyValueBackend, key: str | None = None):
        self.backend = backend
        self.key = key or get_settings().projects_key

    def _read_raw(self) -> list[dict]:
        raw = self.backend.get(self.key)
        if raw is None:
            return []
        if not isinstance(raw, list):
            raise ValueError(f"store key {self.key!r} is not a list")
        return raw

    def save(
        self,
        name: str,
        files: Mapping[str, str],
        deps: Mapping[str, str] | None = None,
        dev_deps: Mapping[str, str] | None = None,
        analysis: PageAnalysis | None = None,
    ) -> bool:
        """Insert or fully replace the project called `name`."""
        try:
            project = StoredProject(
                name=name,
                files=[StoredFile(path=p, content=c) for p, c in files.items()],
                dependencies=dict(deps or {}),
                dev_dependencies=dict(dev_deps or {}),
                analysis=analysis,
            )
            record = project.model_dump(mode="json", by_alias=True)

            existing = self._read_raw()
            for i, p in enumerate(existing):
                if isinstance(p, dict) and p.get("name") == name:
                    existing[i] = record
                    break
            else:
                existing.append(record)

            self.backend.set(self.key, existing)
            print(f"  [store] Saved project {name} ({len(project.files)} files)")
            return True
        except Exception as e:
            print(f"  [store] Error saving {name}: {e}")
            return False

    def list(self) -> list[StoredProject]:
        try:
            raw = self._read_raw()
        except Exception as e:
            print(f"  [store] Error reading projects: {e}")
            return []
        projects = []
        for item in raw:
            try:
                projects.append(StoredProject.model_validate(item))
            except ValidationError as e:
                print(f"  [store] Skipping unreadable project record: {e}")
        return projects

    def get(self, name: str) -> StoredProject | None:
        for p in self.list():
            if p.name == name:
                return p
        return None

    def delete(self, name: str) -> bool:
        try:
            existing = self._read_raw()
            remaining = [p for p in existing if not (isinstance(p, dict) and p.get("name") == name)]
            self.backend.set(self.key, remaining)
            return True
        except Exception as e:
            print(f"  [store] Error deleting {name}: {e}")
            return False

    def clear(self) -> bool:
        try:
            self.backend.delete(self.key)
            return True
        except Exception as e:
            print(f"  [store] Error clearing projects: {e}")
            return False

    def get_analysis(self, name: str) -> PageAnalysis | None:
        project = self.get(name)
        return project.analysis if project else None

    def combine(self, stored: str | Mapping[str, str], new_plan: Plan) -> Plan:
        """
        Overlay `new_plan` on a stored file set; the new plan wins every path
        conflict. `stored` is a project name or a {path: content} mapping.
        A stored project's dependencies are carried too (new plan wins), so
        re-applying does not drop packages the stored files rely on.
        """
        combined = new_plan.model_copy(deep=True)
        combined.design = new_plan.design

        if isinstance(stored, str):
            project = self.get(stored)
            if project is None:
                print(f"  [store] No stored project {stored!r}, nothing to combine")
                return combined
            stored_files = project.file_map()
            combined.dependencies = {**project.dependencies, **new_plan.dependencies}
            combined.dev_dependencies = {**project.dev_dependencies, **new_plan.dev_dependencies}
        else:
            stored_files = dict(stored)

        combined.files = {**stored_files, **new_plan.files}
        return combined


# ---------------------------------------------------------------------------
# Integration connections
# ---------------------------------------------------------------------------

class ConnectionStore:
    """At most one connection per provider; saving replaces the previous one."""

    def __init__(self, backend: KeyValueBackend, key: str | None = None):
        self.backend = backend
        self.key = key or get_settings().connections_key

    def _read_raw(self) -> dict:
        raw = self.backend.get(self.key)
        if raw is None:
            return {}
        if not isinstance(raw, dict):
            raise ValueError(f"store key {self.key!r} is not an object")
        return raw

    def save(self, connection: IntegrationConnection) -> bool:
        try:
            existing = self._read_raw()
            existing[connection.provider.value] = connection.model_dump(mode="json")
            self.backend.set(self.key, existing)
            return True
        except Exception as e:
            print(f"  [store] Error saving {connection.provider.value} connection: {e}")
            return False

    def list(self) -> dict[str, IntegrationConnection]:
        try:
            raw = self._read_raw()
        except Exception as e:
            print(f"  [store] Error reading connections: {e}")
            return {}
        connections = {}
        for kind, item in raw.items():
            try:
                connections[kind] = IntegrationConnection.model_validate(item)
            except ValidationError as e:
                print(f"  [store] Skipping unreadable {kind} connection: {e}")
        return connections

    def get(self, provider: ProviderKind | str) -> IntegrationConnection | None:
        kind = provider.value if isinstance(provider, ProviderKind) else str(provider)
        return self.list().get(kind)

    def remove(self, provider: ProviderKind | str) -> bool:
        kind = provider.value if isinstance(provider, ProviderKind) else str(provider)
        try:
            existing = self._read_raw()
            existing.pop(kind, None)
            self.backend.set(self.key, existing)
            return True
        except Exception as e:
            print(f"  [store] Error removing {kind} connection: {e}")
            return False
