import pytest

from fakes import FakeAnalyzer, FakeSandboxProvider
from sitecraft.config import Settings
from sitecraft.models import PageAnalysis
from sitecraft.orchestrator import SandboxOrchestrator
from sitecraft.store import ConnectionStore, MemoryBackend, ProjectStore


@pytest.fixture
def settings():
    return Settings(
        _env_file=None,
        store_backend="memory",
        status_timeout_seconds=1,
        projects_key="test_projects",
        connections_key="test_integrations",
    )


@pytest.fixture
def provider():
    return FakeSandboxProvider()


@pytest.fixture
def orchestrator(provider, settings):
    return SandboxOrchestrator(provider, settings)


@pytest.fixture
def backend():
    return MemoryBackend()


@pytest.fixture
def projects(backend):
    return ProjectStore(backend, key="test_projects")


@pytest.fixture
def connections(backend):
    return ConnectionStore(backend, key="test_integrations")


@pytest.fixture
def example_analysis():
    return PageAnalysis(
        base_url="https://example.com",
        title="Example",
        description="An example page",
        full_html="<p>hi</p>",
        full_css="body{color:red}",
        full_js="console.log('x')",
    )


@pytest.fixture
def analyzer(example_analysis):
    return FakeAnalyzer({"https://example.com": example_analysis})
