"""
Publishing providers.

Each adapter verifies a token (returning an IntegrationConnection) and
publishes a {path: text} file set in its own payload shape:

  github    one base64 `contents` PUT per file into a (re)used repository
  vercel    a single deployment with raw {file, data} entries
  supabase  a fresh project; returns its URL and a .env.local body
"""

import base64
import re
import secrets
import time
from typing import Protocol

import httpx

from sitecraft.errors import InvalidCredentialError, PublishError
from sitecraft.models import IntegrationConnection, ProviderKind, PublishOutcome, UploadSummary


HTTP_TIMEOUT = 60.0


class Publisher(Protocol):
    provider: ProviderKind

    async def verify_token(self, token: str) -> IntegrationConnection: ...
    async def publish(self, files: dict[str, str], project_name: str,
                      connection: IntegrationConnection) -> PublishOutcome: ...


def slugify_project_name(name: str) -> str:
    """Lower-case name safe for repository and deployment names."""
    slug = re.sub(r"[^a-z0-9._-]+", "-", (name or "").strip().lower()).strip("-.")
    return slug[:100] or f"project-{int(time.time())}"


def _error_message(resp: httpx.Response) -> str:
    try:
        data = resp.json()
    except ValueError:
        return resp.text[:300]
    if isinstance(data, dict):
        err = data.get("error")
        if isinstance(err, dict):
            return err.get("message") or str(err)
        return data.get("message") or err or resp.text[:300]
    return resp.text[:300]


class _HttpPublisher:
    provider: ProviderKind
    api_base: str

    def __init__(self, transport: httpx.AsyncBaseTransport | None = None,
                 timeout: float = HTTP_TIMEOUT):
        self.transport = transport
        self.timeout = timeout

    def _headers(self, token: str) -> dict:
        return {"Authorization": f"Bearer {token}", "Content-Type": "application/json"}

    def _client(self, token: str) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.api_base,
            headers=self._headers(token),
            timeout=self.timeout,
            transport=self.transport,
        )

    def _check_auth(self, resp: httpx.Response):
        if resp.status_code in (401, 403):
            raise InvalidCredentialError(self.provider.value, _error_message(resp))


# ---------------------------------------------------------------------------
# GitHub
# ---------------------------------------------------------------------------

class GitHubPublisher(_HttpPublisher):
    provider = ProviderKind.GITHUB
    api_base = "https://api.github.com"

    def _headers(self, token: str) -> dict:
        return {
            "Authorization": f"Bearer {token}",
            "Accept": "application/vnd.github+json",
            "User-Agent": "sitecraft",
        }

    async def verify_token(self, token: str) -> IntegrationConnection:
        async with self._client(token) as client:
            resp = await client.get("/user")
        if resp.status_code != 200:
            raise InvalidCredentialError(self.provider.value)
        user = resp.json()
        return IntegrationConnection(
            provider=self.provider,
            token=token,
            account_id=str(user.get("id", "")),
            display_name=user.get("login", ""),
            email=user.get("email"),
        )

    async def _ensure_repo(self, client: httpx.AsyncClient, repo: str,
                           connection: IntegrationConnection) -> tuple[dict, bool]:
        resp = await client.post("/user/repos", json={
            "name": repo,
            "description": "Generated with sitecraft",
            "private": False,
        })
        self._check_auth(resp)
        if resp.status_code == 201:
            return resp.json(), True

        if resp.status_code == 422 and "already exists" in resp.text:
            existing = await client.get(f"/repos/{connection.display_name}/{repo}")
            if existing.status_code == 200:
                print(f"  [publish] Reusing existing repository {repo}")
                return existing.json(), False
            raise PublishError(self.provider.value, _error_message(existing))

        raise PublishError(self.provider.value, f"could not create {repo}: {_error_message(resp)}")

    async def publish(self, files: dict[str, str], project_name: str,
                      connection: IntegrationConnection) -> PublishOutcome:
        repo_name = slugify_project_name(project_name)
        summary = UploadSummary(attempted=len(files))

        async with self._client(connection.token) as client:
            repo, created = await self._ensure_repo(client, repo_name, connection)
            owner = (repo.get("owner") or {}).get("login") or connection.display_name
            base = f"/repos/{owner}/{repo['name']}/contents"

            for path, content in files.items():
                body = {
                    "message": f"Add {path}",
                    "content": base64.b64encode(content.encode("utf-8")).decode("ascii"),
                }
                try:
                    if not created:
                        current = await client.get(f"{base}/{path}")
                        if current.status_code == 200 and isinstance(current.json(), dict):
                            body["sha"] = current.json().get("sha")
                            body["message"] = f"Update {path}"
                    resp = await client.put(f"{base}/{path}", json=body)
                except httpx.HTTPError as e:
                    print(f"  [publish] github: {path} failed: {e}")
                    summary.failed += 1
                    summary.failed_paths.append(path)
                    continue

                # Once a file has landed, a rejected PUT is a per-file failure
                if summary.succeeded == 0:
                    self._check_auth(resp)
                if resp.status_code in (200, 201):
                    summary.succeeded += 1
                else:
                    print(f"  [publish] github: {path} failed: {_error_message(resp)}")
                    summary.failed += 1
                    summary.failed_paths.append(path)

        print(f"  [publish] github: {summary.succeeded}/{summary.attempted} files pushed to {repo['name']}")
        return PublishOutcome(
            location=repo.get("html_url"),
            summary=summary,
            extra={"repo": repo.get("full_name") or f"{owner}/{repo['name']}", "created": created},
        )


# ---------------------------------------------------------------------------
# Vercel
# ---------------------------------------------------------------------------

class VercelPublisher(_HttpPublisher):
    provider = ProviderKind.VERCEL
    api_base = "https://api.vercel.com"

    async def verify_token(self, token: str) -> IntegrationConnection:
        async with self._client(token) as client:
            resp = await client.get("/v2/user")
        if resp.status_code != 200:
            raise InvalidCredentialError(self.provider.value)
        user = resp.json().get("user") or {}
        return IntegrationConnection(
            provider=self.provider,
            token=token,
            account_id=str(user.get("id", "")),
            display_name=user.get("username", ""),
            email=user.get("email"),
        )

    async def publish(self, files: dict[str, str], project_name: str,
                      connection: IntegrationConnection) -> PublishOutcome:
        payload = {
            "name": slugify_project_name(project_name),
            "files": [{"file": path, "data": content} for path, content in files.items()],
            "projectSettings": {"framework": "nextjs"},
            "target": "production",
        }
        async with self._client(connection.token) as client:
            resp = await client.post("/v13/deployments", json=payload)

        self._check_auth(resp)
        if resp.status_code not in (200, 201):
            raise PublishError(self.provider.value, _error_message(resp))

        data = resp.json()
        url = data.get("url")
        print(f"  [publish] vercel: deployment {data.get('id')} ({data.get('readyState')})")
        return PublishOutcome(
            location=f"https://{url}" if url else None,
            summary=UploadSummary(attempted=len(files), succeeded=len(files)),
            extra={"deployment_id": data.get("id"), "ready_state": data.get("readyState")},
        )


# ---------------------------------------------------------------------------
# Supabase
# ---------------------------------------------------------------------------

def build_env_local(url: str, anon_key: str, service_role_key: str) -> str:
    return (
        f"NEXT_PUBLIC_SUPABASE_URL={url}\n"
        f"NEXT_PUBLIC_SUPABASE_ANON_KEY={anon_key}\n"
        f"SUPABASE_SERVICE_ROLE_KEY={service_role_key}"
    )


class SupabasePublisher(_HttpPublisher):
    """Provisions a backing project; the file set itself is not uploaded."""

    provider = ProviderKind.SUPABASE
    api_base = "https://api.supabase.com"

    def __init__(self, transport: httpx.AsyncBaseTransport | None = None,
                 timeout: float = HTTP_TIMEOUT, region: str = "us-east-1"):
        super().__init__(transport, timeout)
        self.region = region

    async def verify_token(self, token: str) -> IntegrationConnection:
        async with self._client(token) as client:
            resp = await client.get("/v1/organizations")
        if resp.status_code != 200:
            raise InvalidCredentialError(self.provider.value)
        orgs = resp.json()
        if not orgs:
            raise InvalidCredentialError(self.provider.value, "No organizations found")
        return IntegrationConnection(
            provider=self.provider,
            token=token,
            account_id=str(orgs[0].get("id", "")),
            display_name=orgs[0].get("name", ""),
        )

    async def _api_keys(self, client: httpx.AsyncClient, ref: str) -> dict[str, str]:
        resp = await client.get(f"/v1/projects/{ref}/api-keys")
        if resp.status_code != 200:
            print(f"  [publish] supabase: api keys not available yet for {ref}")
            return {}
        return {k.get("name"): k.get("api_key", "") for k in resp.json() if isinstance(k, dict)}

    async def publish(self, files: dict[str, str], project_name: str,
                      connection: IntegrationConnection) -> PublishOutcome:
        async with self._client(connection.token) as client:
            resp = await client.post("/v1/projects", json={
                "name": slugify_project_name(project_name),
                "organization_id": connection.account_id,
                "plan": "free",
                "region": self.region,
                "db_pass": secrets.token_urlsafe(24),
            })
            self._check_auth(resp)
            if resp.status_code not in (200, 201):
                raise PublishError(self.provider.value, _error_message(resp))
            project = resp.json()
            ref = project.get("id") or project.get("ref")
            keys = await self._api_keys(client, ref)

        url = f"https://{ref}.supabase.co"
        env_local = build_env_local(
            url,
            keys.get("anon") or project.get("anon_key", ""),
            keys.get("service_role") or project.get("service_role_key", ""),
        )
        print(f"  [publish] supabase: created project {ref}")
        return PublishOutcome(
            location=url,
            extra={"project_id": ref, "region": project.get("region"), "env_local": env_local},
        )
