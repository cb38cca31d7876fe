"""Configuration schema using Pydantic.

Single data model and defaults for a two-node run, persisted as
~/.wnodeprobe/config.json.
"""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, SecretStr, field_validator, model_validator
from pydantic_settings import BaseSettings

from wnodeprobe.shh.types import normalize_topic
from wnodeprobe.utils.exceptions import ValidationError
from wnodeprobe.utils.retry import RetryPolicy


class RpcConfig(BaseModel):
    """JSON-RPC transport settings."""
    timeout: float = 10.0  # Seconds per call; applies to connect and read


class ReadinessConfig(BaseModel):
    """Readiness probe backoff."""
    max_attempts: int = 20
    base_delay_seconds: float = 0.25
    max_delay_seconds: float = 2.0

    def to_policy(self) -> RetryPolicy:
        return RetryPolicy(
            max_attempts=self.max_attempts,
            base_delay_seconds=self.base_delay_seconds,
            max_delay_seconds=self.max_delay_seconds,
        )


class NodeConfig(BaseModel):
    """One wnode-status instance."""
    name: str
    host: str = "127.0.0.1"
    http_port: int
    managed: bool = True  # False: node is already running, only attach to it
    binary: str = "./wnode-status"
    workdir: str = "build/bin"
    extra_args: list[str] = Field(default_factory=list)
    kill_timeout: float = 5.0
    secret_env: str = "ACCOUNT_PASSWORD"  # Env var name the node reads its account password from
    secret: SecretStr = SecretStr("")

    @property
    def base_url(self) -> str:
        host = "127.0.0.1" if self.host in {"0.0.0.0", "::"} else self.host
        return f"http://{host}:{self.http_port}"

    def command(self) -> list[str]:
        return [self.binary, f"-httpport={self.http_port}", "-http=true", *self.extra_args]

    def child_env(self) -> dict[str, str]:
        value = self.secret.get_secret_value()
        return {self.secret_env: value} if value else {}


def _default_publisher() -> NodeConfig:
    return NodeConfig(name="node-a", http_port=8537)


def _default_subscriber() -> NodeConfig:
    return NodeConfig(name="node-b", http_port=8536)


class NodesConfig(BaseModel):
    """Publisher (A) and subscriber (B) nodes."""
    publisher: NodeConfig = Field(default_factory=_default_publisher)
    subscriber: NodeConfig = Field(default_factory=_default_subscriber)

    @model_validator(mode="before")
    @classmethod
    def _merge_defaults(cls, data: Any) -> Any:
        # A partial node section (file or env) overrides only the fields it names.
        if not isinstance(data, dict):
            return data
        merged = dict(data)
        for role, default in (("publisher", _default_publisher), ("subscriber", _default_subscriber)):
            override = merged.get(role)
            if isinstance(override, dict):
                merged[role] = {**default().model_dump(), **override}
        return merged


class ScenarioConfig(BaseModel):
    """Publish/subscribe check parameters."""
    topic: str = "0xe00123a5"
    payload: str = "sent before filter was active (symmetric)"
    pow_target: float = Field(default=0.001, gt=0)
    pow_time: int = Field(default=2, gt=0)
    ttl: int = Field(default=20, gt=0)
    delivery_timeout: float = Field(default=10.0, gt=0)  # Upper bound on waiting for the message on node B
    poll_interval: float = Field(default=0.5, gt=0)
    check_late_filter: bool = True

    @field_validator("topic")
    @classmethod
    def _check_topic(cls, value: str) -> str:
        try:
            return normalize_topic(value)
        except ValidationError as exc:
            raise ValueError(exc.message) from exc


class Config(BaseSettings):
    """Root configuration for wnodeprobe."""
    rpc: RpcConfig = Field(default_factory=RpcConfig)
    readiness: ReadinessConfig = Field(default_factory=ReadinessConfig)
    nodes: NodesConfig = Field(default_factory=NodesConfig)
    scenario: ScenarioConfig = Field(default_factory=ScenarioConfig)
    log_level: str = "INFO"

    model_config = ConfigDict(
        env_prefix="WNODEPROBE_",
        env_nested_delimiter="__"
    )
