"""
Configuration for the DEx trader.
"""

from __future__ import annotations

from pathlib import Path

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from dexcore.constants import API_RETRIES, BATCH_SIZE, MAX_ACCEPT_FEE, TX_POLL_INTERVAL

DEFAULT_RPC_HOST = "127.0.0.1"
DEFAULT_RPC_PORT = 9337

RPC_CONF_KEYS = ("rpcuser", "rpcpassword", "rpcport", "rpcbind")


class TraderConfig(BaseModel):
    """Engine configuration."""

    # Daemon connection
    rpc_url: str = f"http://{DEFAULT_RPC_HOST}:{DEFAULT_RPC_PORT}"
    rpc_user: str = ""
    rpc_password: str = ""
    rpc_timeout: float = Field(default=30.0, gt=0)
    legacy_sign: bool = False

    # Platform key ("feathercoin", "litecoin", "bitcoin"); None detects it from the daemon
    platform: str | None = None

    # Request policy
    retries: int = Field(default=API_RETRIES, ge=1)
    poll_interval: float = Field(default=TX_POLL_INTERVAL, gt=0)
    batch_size: int = Field(default=BATCH_SIZE, ge=1)

    # Trades database
    db_path: Path = Field(default_factory=lambda: Path.home() / ".dextrader" / "trades.db")

    # Buying policy
    no_high_fees: bool = True
    max_accept_fee: int = Field(default=MAX_ACCEPT_FEE, ge=0, description="Max accept fee in sats")


class TraderSettings(BaseSettings):
    """Environment / .env overrides, e.g. ``DEX_RPC_URL``."""

    model_config = SettingsConfigDict(
        env_prefix="DEX_", env_file=".env", env_file_encoding="utf-8", case_sensitive=False
    )

    rpc_url: str | None = None
    rpc_user: str | None = None
    rpc_password: str | None = None
    rpc_conf: Path | None = None
    platform: str | None = None
    db_path: Path | None = None
    log_level: str = "INFO"
    log_file: Path | None = None

    def to_config(self, **overrides: object) -> TraderConfig:
        """
        Build a ``TraderConfig``.

        Precedence, lowest first: defaults, the daemon ``.conf`` file,
        environment, explicit ``overrides`` (None values are ignored).
        """
        values: dict[str, object] = {}
        if self.rpc_conf is not None:
            values.update(rpc_conf_to_config(read_rpc_conf(self.rpc_conf)))
        for name in ("rpc_url", "rpc_user", "rpc_password", "platform", "db_path"):
            value = getattr(self, name)
            if value is not None:
                values[name] = value
        values.update({k: v for k, v in overrides.items() if v is not None})
        return TraderConfig(**values)


def read_rpc_conf(path: str | Path) -> dict[str, str]:
    """
    Read RPC credentials from a daemon ``.conf`` file.

    Only ``rpcuser``, ``rpcpassword``, ``rpcport`` and ``rpcbind`` are kept;
    comments, section headers and other keys are skipped. The first
    occurrence of a key wins.
    """
    values: dict[str, str] = {}
    for line in Path(path).read_text(encoding="utf-8").splitlines():
        line = line.split("#", 1)[0].strip()
        if not line or line.startswith("[") or "=" not in line:
            continue
        key, value = (part.strip() for part in line.split("=", 1))
        if key in RPC_CONF_KEYS and key not in values:
            values[key] = value
    return values


def rpc_conf_to_config(conf: dict[str, str]) -> dict[str, object]:
    host = conf.get("rpcbind", DEFAULT_RPC_HOST) or DEFAULT_RPC_HOST
    # rpcbind may carry its own port
    if ":" in host and not host.startswith("["):
        host = host.rsplit(":", 1)[0]
    port = int(conf.get("rpcport", DEFAULT_RPC_PORT))

    values: dict[str, object] = {"rpc_url": f"http://{host}:{port}"}
    if "rpcuser" in conf:
        values["rpc_user"] = conf["rpcuser"]
    if "rpcpassword" in conf:
        values["rpc_password"] = conf["rpcpassword"]
    return values


def get_settings() -> TraderSettings:
    return TraderSettings()
