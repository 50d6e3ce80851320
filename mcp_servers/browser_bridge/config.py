from __future__ import annotations

import os
import re
import tempfile
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any

from .errors import ConfigError

BROWSER_TRANSPORTS = ("unix", "stdio")
CLIENT_TRANSPORTS = ("stdio", "ws")

# Endpoint ids become file names; AF_UNIX paths are short on some platforms.
_ENDPOINT_ID_RE = re.compile(r"[A-Za-z0-9][A-Za-z0-9_.-]{0,47}")


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw.strip())
    except ValueError as exc:
        raise ConfigError(f"{name} must be an integer, got {raw!r}") from exc


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw.strip())
    except ValueError as exc:
        raise ConfigError(f"{name} must be a number, got {raw!r}") from exc


def _env_str(name: str, default: str | None = None) -> str | None:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip()


@dataclass(frozen=True)
class BackoffConfig:
    initial_delay: float = 0.15
    max_delay: float = 5.0
    factor: float = 1.6
    # 0 means retry forever.
    max_attempts: int = 0


@dataclass(frozen=True)
class BridgeConfig:
    default_timeout_ms: int = 30_000
    max_payload_bytes: int = 8_000_000
    max_buffer_bytes: int = 16_000_000
    handshake_timeout: float = 2.0
    backoff: BackoffConfig = BackoffConfig()
    browser_transport: str = "unix"
    client_transport: str = "stdio"
    ws_host: str = "127.0.0.1"
    ws_port: int = 12306
    endpoint_id: str = "default"
    runtime_dir: str | None = None
    log_level: str = "INFO"
    log_file: str | None = None
    handlers: str | None = None

    @staticmethod
    def normalize_browser_transport(raw: str | None) -> str:
        mode = (raw or "").strip().lower()
        if mode in {"stdio", "native", "native-messaging"}:
            return "stdio"
        if mode in {"unix", "socket", "ipc", ""}:
            return "unix"
        raise ConfigError(f"Unknown browser transport: {raw!r} (expected one of {', '.join(BROWSER_TRANSPORTS)})")

    @staticmethod
    def normalize_client_transport(raw: str | None, *, browser_transport: str) -> str:
        mode = (raw or "").strip().lower()
        if not mode:
            # Native messaging owns stdio, so clients must come in over WebSocket.
            return "ws" if browser_transport == "stdio" else "stdio"
        if mode in {"ws", "websocket"}:
            return "ws"
        if mode == "stdio":
            return "stdio"
        raise ConfigError(f"Unknown client transport: {raw!r} (expected one of {', '.join(CLIENT_TRANSPORTS)})")

    @classmethod
    def from_env(cls) -> BridgeConfig:
        browser_transport = cls.normalize_browser_transport(_env_str("MCP_BRIDGE_BROWSER_TRANSPORT"))
        cfg = cls(
            default_timeout_ms=_env_int("MCP_BRIDGE_TIMEOUT_MS", 30_000),
            max_payload_bytes=_env_int("MCP_BRIDGE_MAX_PAYLOAD", 8_000_000),
            max_buffer_bytes=_env_int("MCP_BRIDGE_MAX_BUFFER", 16_000_000),
            handshake_timeout=_env_float("MCP_BRIDGE_HANDSHAKE_TIMEOUT", 2.0),
            backoff=BackoffConfig(
                initial_delay=_env_float("MCP_BRIDGE_RECONNECT_INITIAL", 0.15),
                max_delay=_env_float("MCP_BRIDGE_RECONNECT_MAX", 5.0),
                factor=_env_float("MCP_BRIDGE_RECONNECT_FACTOR", 1.6),
                max_attempts=_env_int("MCP_BRIDGE_RECONNECT_ATTEMPTS", 0),
            ),
            browser_transport=browser_transport,
            client_transport=cls.normalize_client_transport(
                _env_str("MCP_BRIDGE_CLIENT_TRANSPORT"), browser_transport=browser_transport
            ),
            ws_host=_env_str("MCP_BRIDGE_WS_HOST", "127.0.0.1") or "127.0.0.1",
            ws_port=_env_int("MCP_BRIDGE_WS_PORT", 12306),
            endpoint_id=_env_str("MCP_BRIDGE_ENDPOINT_ID", "default") or "default",
            runtime_dir=_env_str("MCP_BRIDGE_DIR"),
            log_level=(_env_str("MCP_BRIDGE_LOG_LEVEL", "INFO") or "INFO").upper(),
            log_file=_env_str("MCP_BRIDGE_LOG_FILE"),
            handlers=_env_str("MCP_BRIDGE_HANDLERS"),
        )
        cfg.validate()
        return cfg

    def with_overrides(self, **overrides: Any) -> BridgeConfig:
        """Return a copy with non-None overrides applied (CLI flags win over env)."""
        changes = {k: v for k, v in overrides.items() if v is not None}
        backoff_changes = {k: changes.pop(k) for k in list(changes) if k in BackoffConfig.__dataclass_fields__}
        cfg = replace(self, **changes)
        if backoff_changes:
            cfg = replace(cfg, backoff=replace(cfg.backoff, **backoff_changes))
        if "browser_transport" in changes:
            cfg = replace(cfg, browser_transport=self.normalize_browser_transport(cfg.browser_transport))
            if "client_transport" not in changes and cfg.browser_transport == "stdio":
                cfg = replace(cfg, client_transport="ws")
        if "client_transport" in changes:
            cfg = replace(
                cfg,
                client_transport=self.normalize_client_transport(
                    cfg.client_transport, browser_transport=cfg.browser_transport
                ),
            )
        cfg.validate()
        return cfg

    def socket_dir(self) -> Path:
        """Directory holding endpoint sockets: the configured one, else XDG_RUNTIME_DIR, else a per-user temp dir."""
        if self.runtime_dir:
            return Path(self.runtime_dir).expanduser()
        xdg = _env_str("XDG_RUNTIME_DIR")
        if xdg:
            return Path(xdg).expanduser() / "browser-bridge"
        owner = os.getuid() if hasattr(os, "getuid") else os.getpid()
        return Path(tempfile.gettempdir()) / f"browser-bridge-{owner}"

    def socket_path(self) -> Path:
        return self.socket_dir() / f"endpoint-{self.endpoint_id}.sock"

    def validate(self) -> None:
        if self.default_timeout_ms <= 0:
            raise ConfigError("default timeout must be positive")
        if self.max_payload_bytes <= 0:
            raise ConfigError("max payload size must be positive")
        if self.max_buffer_bytes < self.max_payload_bytes + 4:
            raise ConfigError("max buffer size must hold at least one full frame (payload + 4 byte header)")
        if self.handshake_timeout <= 0:
            raise ConfigError("handshake timeout must be positive")
        b = self.backoff
        if b.initial_delay < 0 or b.max_delay < b.initial_delay:
            raise ConfigError("reconnect delays must satisfy 0 <= initial <= max")
        if b.factor < 1.0:
            raise ConfigError("reconnect factor must be >= 1")
        if b.max_attempts < 0:
            raise ConfigError("reconnect attempts must be >= 0 (0 = unlimited)")
        if self.browser_transport not in BROWSER_TRANSPORTS:
            raise ConfigError(f"Unknown browser transport: {self.browser_transport!r}")
        if self.client_transport not in CLIENT_TRANSPORTS:
            raise ConfigError(f"Unknown client transport: {self.client_transport!r}")
        if self.browser_transport == "stdio" and self.client_transport == "stdio":
            raise ConfigError("stdio cannot carry both the browser channel and client requests")
        if not _ENDPOINT_ID_RE.fullmatch(self.endpoint_id):
            raise ConfigError(
                f"endpoint id must be 1-48 characters of letters, digits, '_', '.', '-', got {self.endpoint_id!r}"
            )
        if not 0 <= self.ws_port <= 65535:
            raise ConfigError(f"WebSocket port out of range: {self.ws_port}")
