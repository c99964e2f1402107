import base64
import json

import httpx
import pytest

from sitecraft.errors import InvalidCredentialError, PublishError
from sitecraft.models import IntegrationConnection, ProviderKind
from sitecraft.publishers import (
    GitHubPublisher,
    SupabasePublisher,
    VercelPublisher,
    build_env_local,
    slugify_project_name,
)


class Recorder:
    """MockTransport handler that answers from a (method, path) table."""

    def __init__(self, routes):
        self.routes = routes
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        route = self.routes.get((request.method, request.url.path))
        if route is None:
            return httpx.Response(404, json={"message": "Not Found"})
        return route(request) if callable(route) else route

    def bodies(self, method, prefix=""):
        return [
            (r.url.path, json.loads(r.content))
            for r in self.requests
            if r.method == method and r.url.path.startswith(prefix)
        ]


def _conn(provider, **kwargs):
    return IntegrationConnection(provider=provider, token="tok", **kwargs)


def test_slugify_project_name():
    assert slugify_project_name("My Cool Site!") == "my-cool-site"
    assert slugify_project_name("  ").startswith("project-")


# ── GitHub ───────────────────────────────────────────────────────────────────

async def test_github_verify_token():
    recorder = Recorder({("GET", "/user"): httpx.Response(200, json={"id": 7, "login": "octo", "email": None})})
    connection = await GitHubPublisher(transport=httpx.MockTransport(recorder)).verify_token("tok")

    assert connection.provider == ProviderKind.GITHUB
    assert connection.account_id == "7"
    assert connection.display_name == "octo"
    assert recorder.requests[0].headers["Authorization"] == "Bearer tok"


async def test_github_rejected_token():
    recorder = Recorder({("GET", "/user"): httpx.Response(401, json={"message": "Bad credentials"})})
    with pytest.raises(InvalidCredentialError):
        await GitHubPublisher(transport=httpx.MockTransport(recorder)).verify_token("nope")


async def test_github_creates_repo_and_uploads_base64_files():
    repo = {"name": "my-site", "full_name": "octo/my-site", "html_url": "https://github.com/octo/my-site",
            "owner": {"login": "octo"}}
    recorder = Recorder({
        ("POST", "/user/repos"): httpx.Response(201, json=repo),
        ("PUT", "/repos/octo/my-site/contents/app/page.tsx"): httpx.Response(201, json={}),
        ("PUT", "/repos/octo/my-site/contents/package.json"): httpx.Response(422, json={"message": "nope"}),
    })
    publisher = GitHubPublisher(transport=httpx.MockTransport(recorder))

    outcome = await publisher.publish({"app/page.tsx": "hello", "package.json": "{}"}, "My Site",
                                      _conn(ProviderKind.GITHUB, display_name="octo"))

    assert outcome.location == "https://github.com/octo/my-site"
    assert outcome.summary.attempted == 2
    assert outcome.summary.succeeded == 1
    assert outcome.summary.failed_paths == ["package.json"]
    path, body = recorder.bodies("PUT")[0]
    assert path == "/repos/octo/my-site/contents/app/page.tsx"
    assert base64.b64decode(body["content"]).decode() == "hello"
    assert "sha" not in body


async def test_github_reuses_existing_repo_and_updates_with_sha():
    repo = {"name": "my-site", "html_url": "https://github.com/octo/my-site", "owner": {"login": "octo"}}
    recorder = Recorder({
        ("POST", "/user/repos"): httpx.Response(
            422, json={"message": "Repository creation failed.",
                       "errors": [{"message": "name already exists on this account"}]}),
        ("GET", "/repos/octo/my-site"): httpx.Response(200, json=repo),
        ("GET", "/repos/octo/my-site/contents/README.md"): httpx.Response(200, json={"sha": "abc123"}),
        ("PUT", "/repos/octo/my-site/contents/README.md"): httpx.Response(200, json={}),
    })
    publisher = GitHubPublisher(transport=httpx.MockTransport(recorder))

    outcome = await publisher.publish({"README.md": "# hi"}, "my-site",
                                      _conn(ProviderKind.GITHUB, display_name="octo"))

    assert outcome.summary.succeeded == 1
    assert outcome.extra["created"] is False
    _, body = recorder.bodies("PUT")[0]
    assert body["sha"] == "abc123"


async def test_github_repo_creation_failure():
    recorder = Recorder({("POST", "/user/repos"): httpx.Response(500, json={"message": "server error"})})
    with pytest.raises(PublishError):
        await GitHubPublisher(transport=httpx.MockTransport(recorder)).publish(
            {"a.txt": "a"}, "x", _conn(ProviderKind.GITHUB, display_name="octo"))


# ── Vercel ───────────────────────────────────────────────────────────────────

async def test_vercel_verify_token():
    recorder = Recorder({("GET", "/v2/user"): httpx.Response(
        200, json={"user": {"id": "u1", "username": "vee", "email": "v@example.com"}})})
    connection = await VercelPublisher(transport=httpx.MockTransport(recorder)).verify_token("tok")
    assert (connection.account_id, connection.display_name, connection.email) == ("u1", "vee", "v@example.com")


async def test_vercel_deploys_raw_files():
    recorder = Recorder({("POST", "/v13/deployments"): httpx.Response(
        200, json={"id": "dpl_1", "url": "my-site-abc.vercel.app", "readyState": "QUEUED"})})

    outcome = await VercelPublisher(transport=httpx.MockTransport(recorder)).publish(
        {"app/page.tsx": "hello"}, "My Site", _conn(ProviderKind.VERCEL))

    assert outcome.location == "https://my-site-abc.vercel.app"
    assert outcome.summary.succeeded == 1
    _, body = recorder.bodies("POST")[0]
    assert body["name"] == "my-site"
    assert body["files"] == [{"file": "app/page.tsx", "data": "hello"}]
    assert body["projectSettings"]["framework"] == "nextjs"


async def test_vercel_error_message_is_surfaced():
    recorder = Recorder({("POST", "/v13/deployments"): httpx.Response(
        400, json={"error": {"code": "bad_request", "message": "Invalid files"}})})
    with pytest.raises(PublishError) as exc:
        await VercelPublisher(transport=httpx.MockTransport(recorder)).publish(
            {"a": "b"}, "x", _conn(ProviderKind.VERCEL))
    assert "Invalid files" in str(exc.value)


async def test_vercel_forbidden_is_credential_error():
    recorder = Recorder({("POST", "/v13/deployments"): httpx.Response(403, json={"error": {"message": "forbidden"}})})
    with pytest.raises(InvalidCredentialError):
        await VercelPublisher(transport=httpx.MockTransport(recorder)).publish(
            {"a": "b"}, "x", _conn(ProviderKind.VERCEL))


# ── Supabase ─────────────────────────────────────────────────────────────────

async def test_supabase_verify_requires_an_organization():
    recorder = Recorder({("GET", "/v1/organizations"): httpx.Response(200, json=[])})
    with pytest.raises(InvalidCredentialError) as exc:
        await SupabasePublisher(transport=httpx.MockTransport(recorder)).verify_token("tok")
    assert "No organizations" in str(exc.value)


async def test_supabase_creates_project_and_env_file():
    recorder = Recorder({
        ("POST", "/v1/projects"): httpx.Response(201, json={"id": "abcd", "name": "my-site", "region": "us-east-1"}),
        ("GET", "/v1/projects/abcd/api-keys"): httpx.Response(200, json=[
            {"name": "anon", "api_key": "anon-key"},
            {"name": "service_role", "api_key": "service-key"},
        ]),
    })
    publisher = SupabasePublisher(transport=httpx.MockTransport(recorder))

    outcome = await publisher.publish({}, "My Site", _conn(ProviderKind.SUPABASE, account_id="org-1"))

    assert outcome.location == "https://abcd.supabase.co"
    assert outcome.extra["env_local"] == build_env_local("https://abcd.supabase.co", "anon-key", "service-key")
    _, body = recorder.bodies("POST")[0]
    assert body["organization_id"] == "org-1"
    assert body["db_pass"]


async def test_github_rejection_after_first_upload_is_counted():
    repo = {"name": "site", "html_url": "https://github.com/octo/site", "owner": {"login": "octo"}}
    recorder = Recorder({
        ("POST", "/user/repos"): httpx.Response(201, json=repo),
        ("PUT", "/repos/octo/site/contents/a.txt"): httpx.Response(201, json={}),
        ("PUT", "/repos/octo/site/contents/b.txt"): httpx.Response(
            403, json={"message": "Resource not accessible"}),
    })

    outcome = await GitHubPublisher(transport=httpx.MockTransport(recorder)).publish(
        {"a.txt": "a", "b.txt": "b"}, "site", _conn(ProviderKind.GITHUB, display_name="octo"))

    assert (outcome.summary.attempted, outcome.summary.succeeded, outcome.summary.failed) == (2, 1, 1)
    assert outcome.summary.failed_paths == ["b.txt"]


async def test_github_rejection_before_any_upload_is_credential_error():
    repo = {"name": "site", "html_url": "https://github.com/octo/site", "owner": {"login": "octo"}}
    recorder = Recorder({
        ("POST", "/user/repos"): httpx.Response(201, json=repo),
        ("PUT", "/repos/octo/site/contents/a.txt"): httpx.Response(401, json={"message": "Bad credentials"}),
    })
    with pytest.raises(InvalidCredentialError):
        await GitHubPublisher(transport=httpx.MockTransport(recorder)).publish(
            {"a.txt": "a"}, "site", _conn(ProviderKind.GITHUB, display_name="octo"))
