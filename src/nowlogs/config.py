"""Runtime configuration.

`Settings` holds process-wide knobs (endpoints, credentials, tuning) loaded
from constructor kwargs and `NOW_*` environment variables. `RunConfig` holds
the parameters of a single log-tailing run and is passed explicitly to the
engine, so several runs can coexist in one process.
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .record import DEFAULT_TYPES
from .reorder import REORDER_DELAY_SECONDS
from .serial import LogSerial

DEFAULT_LIMIT = 1000


class Settings(BaseSettings):
    """Settings loaded from constructor kwargs and `NOW_*` environment variables.

    Invariant:
        URL settings never end with `/`.
    """

    model_config = SettingsConfigDict(env_prefix="NOW_")

    api_url: str = "https://api.zeit.co"
    log_io_url: str = "https://log-io.zeit.co"
    token: str | None = None
    team: str | None = None
    reorder_delay_seconds: float = Field(default=REORDER_DELAY_SECONDS, gt=0)
    dedupe_window: int = Field(default=10_000, gt=0)

    @field_validator("api_url", "log_io_url")
    @classmethod
    def _strip_trailing_slash(cls, value: str) -> str:
        value = value.strip().rstrip("/")
        if not value:
            raise ValueError("URL settings must not be empty")
        return value


class RunConfig(BaseModel):
    """Parameters of one `now-logs` run.

    `since`/`until` are already-parsed serial bounds. `types` is empty when
    all categories (including access logs) are requested.
    """

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    target: str = Field(min_length=1)
    instance_id: str | None = None
    since: LogSerial | None = None
    until: LogSerial | None = None
    types: tuple[str, ...] = DEFAULT_TYPES
    query: str = ""
    limit: int = Field(default=DEFAULT_LIMIT, gt=0)
    follow: bool = False
    debug: bool = False

    @property
    def is_url(self) -> bool:
        """Host-style targets are subscribed to by `host`, not `deploymentId`."""

        return "." in self.target
