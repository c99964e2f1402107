"""
Deployment dispatcher: route a file set to one publishing provider and
normalize whatever happens into a PublishResult.
"""

import httpx

from sitecraft.errors import InvalidCredentialError, SitecraftError
from sitecraft.models import IntegrationConnection, ProviderKind, PublishResult
from sitecraft.publishers import GitHubPublisher, Publisher, SupabasePublisher, VercelPublisher
from sitecraft.store import ConnectionStore


def default_publishers() -> dict[ProviderKind, Publisher]:
    return {
        ProviderKind.GITHUB: GitHubPublisher(),
        ProviderKind.VERCEL: VercelPublisher(),
        ProviderKind.SUPABASE: SupabasePublisher(),
    }


def _kind(provider: ProviderKind | str) -> ProviderKind | None:
    try:
        return ProviderKind(provider)
    except ValueError:
        return None


class DeploymentDispatcher:
    def __init__(self, publishers: dict[ProviderKind, Publisher], connections: ConnectionStore):
        self.publishers = publishers
        self.connections = connections

    def _publisher(self, provider: ProviderKind | str) -> Publisher | None:
        kind = _kind(provider)
        return self.publishers.get(kind) if kind else None

    async def connect(self, provider: ProviderKind | str, token: str) -> IntegrationConnection:
        """Verify `token` and store it as the connection for `provider`."""
        publisher = self._publisher(provider)
        if publisher is None:
            raise InvalidCredentialError(str(provider), "Unknown provider")
        if not token or not token.strip():
            raise InvalidCredentialError(publisher.provider.value, "Token is required")

        try:
            connection = await publisher.verify_token(token.strip())
        except httpx.HTTPError as e:
            raise InvalidCredentialError(publisher.provider.value, f"Authentication failed: {e}") from e

        self.connections.save(connection)
        print(f"  [publish] Connected {connection.provider.value} as {connection.display_name or connection.account_id}")
        return connection

    async def publish(
        self,
        provider: ProviderKind | str,
        files: dict[str, str],
        project_name: str,
        connection: IntegrationConnection | None = None,
    ) -> PublishResult:
        """
        Publish `files` through `provider`. Never raises: a missing connection
        comes back as needs_auth, any provider failure as success=False.
        """
        kind = _kind(provider)
        publisher = self.publishers.get(kind) if kind else None
        if publisher is None:
            return PublishResult(success=False, provider=str(provider),
                                 error=f"Unknown provider {provider!r}")

        connection = connection or self.connections.get(kind)
        if connection is None:
            return PublishResult(success=False, provider=kind.value, needs_auth=True,
                                 error=f"Connect {kind.value} first")

        print(f"  [publish] {kind.value}: {len(files)} files as {project_name!r}")
        try:
            outcome = await publisher.publish(files, project_name, connection)
        except InvalidCredentialError as e:
            return PublishResult(success=False, provider=kind.value, needs_auth=True, error=str(e))
        except SitecraftError as e:
            return PublishResult(success=False, provider=kind.value, error=str(e))
        except httpx.HTTPError as e:
            return PublishResult(success=False, provider=kind.value, error=f"{kind.value} request failed: {e}")

        summary = outcome.summary
        error = None
        if not outcome.location:
            error = f"{kind.value} returned no location"
        elif summary is not None and summary.succeeded == 0:
            error = f"No files were published ({summary.failed} failed)"
        elif summary is not None and summary.failed:
            print(f"  [publish] {kind.value}: {summary.failed} of {summary.attempted} files failed")

        return PublishResult(
            success=error is None,
            provider=kind.value,
            location=outcome.location,
            error=error,
            summary=summary,
            extra=outcome.extra,
        )
