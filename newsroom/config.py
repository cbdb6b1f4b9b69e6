"""Newsroom device trust configuration."""

import secrets
from pathlib import Path

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # Server
    server_name: str = "Newsroom"
    host: str = "0.0.0.0"
    port: int = 8080
    debug: bool = False

    # Paths
    data_dir: Path = Path.home() / "newsroom" / "data"
    client_state_dir: Path = Path.home() / "newsroom" / "client"

    # Database
    db_path: Path = Path.home() / "newsroom" / "data" / "newsroom.db"
    db_busy_timeout_ms: int = 5000  # wait on a locked database before failing

    # JWT
    jwt_secret: str = ""
    jwt_algorithm: str = "HS256"
    access_token_expire_minutes: int = 1440  # 24 hours

    # Account recovery
    recovery_code_length: int = 8
    recovery_code_expire_seconds: int = 900  # 15 minutes
    recovery_max_attempts: int = 5
    recovery_lockout_seconds: int = 600  # 10 minutes

    # Realtime
    realtime_channel: str = "trusted_devices"

    # Trust client
    api_base_url: str = "http://127.0.0.1:8080"
    session_check_timeout: float = 2.0
    poll_interval_seconds: float = 15.0
    protected_paths: list[str] = ["/editor", "/writer"]

    model_config = {"env_prefix": "NEWSROOM_"}

    def ensure_dirs(self) -> None:
        """Create all required directories."""
        for d in [self.data_dir, self.client_state_dir, self.db_path.parent]:
            d.mkdir(parents=True, exist_ok=True)

    def ensure_secrets(self) -> None:
        """Generate the JWT secret if not set, persist it so tokens survive restarts."""
        secrets_file = self.data_dir / ".secrets"
        saved = {}
        if secrets_file.exists():
            for line in secrets_file.read_text().strip().splitlines():
                if "=" in line:
                    k, v = line.split("=", 1)
                    saved[k.strip()] = v.strip()

        if not self.jwt_secret:
            self.jwt_secret = saved.get("jwt_secret", "") or secrets.token_urlsafe(32)

        secrets_file.write_text(f"jwt_secret={self.jwt_secret}\n")


settings = Settings()
settings.ensure_dirs()
settings.ensure_secrets()
