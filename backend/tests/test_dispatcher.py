import httpx
import pytest

from fakes import FakePublisher, failing_publisher
from sitecraft.dispatcher import DeploymentDispatcher
from sitecraft.errors import InvalidCredentialError
from sitecraft.models import ProviderKind, PublishOutcome, UploadSummary


@pytest.fixture
def github():
    return FakePublisher(ProviderKind.GITHUB, PublishOutcome(
        location="https://github.com/octo/site",
        summary=UploadSummary(attempted=3, succeeded=2, failed=1, failed_paths=["big.bin"]),
    ))


@pytest.fixture
def dispatcher(github, connections):
    return DeploymentDispatcher({ProviderKind.GITHUB: github}, connections)


async def test_missing_connection_asks_for_auth(dispatcher, github):
    result = await dispatcher.publish("github", {"a.txt": "a"}, "site")
    assert not result.success
    assert result.needs_auth
    assert github.published == []


async def test_connect_then_publish_reports_partial_summary(dispatcher, github, connections):
    await dispatcher.connect("github", " tok ")
    assert connections.get("github").token == "tok"

    result = await dispatcher.publish(ProviderKind.GITHUB, {"a.txt": "a"}, "site")

    assert result.success
    assert result.location == "https://github.com/octo/site"
    assert (result.summary.attempted, result.summary.succeeded, result.summary.failed) == (3, 2, 1)
    assert github.published[0][1] == "site"


async def test_connect_replaces_previous_connection(dispatcher, connections):
    await dispatcher.connect("github", "first")
    await dispatcher.connect("github", "second")
    assert connections.get("github").token == "second"


async def test_connect_with_rejected_token(dispatcher, connections):
    with pytest.raises(InvalidCredentialError):
        await dispatcher.connect("github", "bad")
    assert connections.get("github") is None


async def test_connect_unknown_provider(dispatcher):
    with pytest.raises(InvalidCredentialError):
        await dispatcher.connect("myspace", "tok")


async def test_unknown_provider_is_a_failed_result(dispatcher):
    result = await dispatcher.publish("myspace", {}, "site")
    assert not result.success and not result.needs_auth


async def test_provider_error_is_normalized(connections):
    dispatcher = DeploymentDispatcher({ProviderKind.VERCEL: failing_publisher(ProviderKind.VERCEL, "quota")},
                                      connections)
    await dispatcher.connect("vercel", "tok")

    result = await dispatcher.publish("vercel", {"a.txt": "a"}, "site")

    assert not result.success
    assert "quota" in result.error


async def test_rejected_token_during_publish_needs_auth(connections):
    publisher = FakePublisher(ProviderKind.VERCEL, error=InvalidCredentialError("vercel"))
    dispatcher = DeploymentDispatcher({ProviderKind.VERCEL: publisher}, connections)
    await dispatcher.connect("vercel", "tok")

    result = await dispatcher.publish("vercel", {"a.txt": "a"}, "site")
    assert result.needs_auth


async def test_http_error_is_normalized(connections):
    publisher = FakePublisher(ProviderKind.VERCEL, error=httpx.ConnectTimeout("timed out"))
    dispatcher = DeploymentDispatcher({ProviderKind.VERCEL: publisher}, connections)
    await dispatcher.connect("vercel", "tok")

    result = await dispatcher.publish("vercel", {"a.txt": "a"}, "site")
    assert not result.success
    assert "timed out" in result.error


async def test_nothing_uploaded_is_a_failure(connections):
    publisher = FakePublisher(ProviderKind.GITHUB, PublishOutcome(
        location="https://github.com/octo/site",
        summary=UploadSummary(attempted=2, failed=2, failed_paths=["a", "b"]),
    ))
    dispatcher = DeploymentDispatcher({ProviderKind.GITHUB: publisher}, connections)
    await dispatcher.connect("github", "tok")

    result = await dispatcher.publish("github", {"a": "a", "b": "b"}, "site")

    assert not result.success
    assert result.summary.failed == 2


async def test_missing_location_is_a_failure(connections):
    publisher = FakePublisher(ProviderKind.VERCEL, PublishOutcome(location=None))
    dispatcher = DeploymentDispatcher({ProviderKind.VERCEL: publisher}, connections)
    await dispatcher.connect("vercel", "tok")

    result = await dispatcher.publish("vercel", {"a": "a"}, "site")
    assert not result.success


async def test_explicit_connection_bypasses_store(dispatcher, github):
    connection = await github.verify_token("inline")
    result = await dispatcher.publish("github", {"a": "a"}, "site", connection=connection)
    assert result.success
    assert github.published[0][2].token == "inline"
