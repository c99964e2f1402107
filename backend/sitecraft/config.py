from pydantic_settings import BaseSettings
from functools import lru_cache
import os


class Settings(BaseSettings):
    anthropic_api_key: str = ""
    daytona_api_key: str = ""
    supabase_url: str = ""
    supabase_key: str = ""

    # Generation
    default_model: str = "claude-sonnet-4-5-20250929"
    max_output_tokens: int = 32000

    # Sandbox
    project_root: str = "/home/daytona/app"
    preview_port: int = 3000
    sandbox_timeout_seconds: int = 900  # session timeout, refreshed on reconnect
    install_timeout_seconds: int = 600
    build_timeout_seconds: int = 300
    status_timeout_seconds: int = 30  # reachability probe only
    auto_archive_minutes: int = 7 * 24 * 60

    # Site analysis
    fetch_timeout_seconds: float = 10.0
    user_agent: str = (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) "
        "AppleWebKit/537.36 (KHTML, like Gecko) "
        "Chrome/120.0.0.0 Safari/537.36"
    )

    # Local persistence
    store_backend: str = "file"  # file | memory | supabase
    store_path: str = os.path.join(os.path.expanduser("~"), ".sitecraft", "store.json")
    projects_key: str = "sitecraft_projects"
    connections_key: str = "sitecraft_integrations"
    supabase_kv_table: str = "sitecraft_kv"

    class Config:
        # Look for .env in the repo root (two levels up from backend/sitecraft/)
        _env_path = os.path.join(os.path.dirname(__file__), "..", "..", ".env")
        env_file = _env_path if os.path.exists(_env_path) else None
        env_file_encoding = "utf-8"
        extra = "ignore"


@lru_cache()
def get_settings():
    return Settings()
