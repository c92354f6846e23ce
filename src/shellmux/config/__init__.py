"""Configuration — Pydantic models for shellmux settings."""

from __future__ import annotations

import json
import os
from typing import Any

from dotenv import load_dotenv
from pydantic import BaseModel, Field

from shellmux.pty.buffer import DEFAULT_HISTORY_SIZE
from shellmux.pty.process import SpawnOptions
from shellmux.routing.directory import DEFAULT_USER, USER_PREFIX
from shellmux.routing.router import RoutingMode

_TRUE_VALUES = {"1", "true", "yes", "on"}


class ServerConfig(BaseModel):
    """Network listener configuration."""

    host: str = Field(default="0.0.0.0")
    port: int = Field(default=3000, ge=0, le=65535)
    static_dir: str | None = Field(
        default=None, description="Directory whose index.html is served at /"
    )


class RoutingConfig(BaseModel):
    """Session ownership and output delivery."""

    mode: RoutingMode = Field(
        default=RoutingMode.OWNER,
        description=(
            "'owner': sessions are private to the user id given at connect time "
            "and output goes to that user's most recent connection. "
            "'broadcast': every session and its output is shared by all connections."
        ),
    )
    persistent: bool = Field(
        default=True,
        description=(
            "Keep a user's sessions running after their connection drops. "
            "When false (owner mode only), disconnecting kills them."
        ),
    )
    default_user: str = Field(
        default=DEFAULT_USER, description="Identity used when the client sends none"
    )
    user_prefix: str = Field(default=USER_PREFIX)


class TerminalConfig(BaseModel):
    """Defaults for newly spawned terminals."""

    history_size: int = Field(
        default=DEFAULT_HISTORY_SIZE, ge=0, description="Replay buffer size in bytes"
    )
    shell: str | None = Field(
        default=None, description="Shell to run (default: $SHELL, then /bin/bash)"
    )
    term_name: str = Field(default="xterm-color")
    cols: int = Field(default=80, ge=1)
    rows: int = Field(default=24, ge=1)
    cwd: str | None = Field(default=None, description="Default: $HOME")


class ShellmuxConfig(BaseModel):
    """Top-level shellmux configuration."""

    server: ServerConfig = Field(default_factory=ServerConfig)
    routing: RoutingConfig = Field(default_factory=RoutingConfig)
    terminal: TerminalConfig = Field(default_factory=TerminalConfig)

    def spawn_options(self) -> SpawnOptions:
        """Default spawn options derived from the terminal section."""
        return SpawnOptions(
            name=self.terminal.term_name,
            cols=self.terminal.cols,
            rows=self.terminal.rows,
            cwd=self.terminal.cwd,
        )

    @classmethod
    def load(cls, config_path: str | None = None) -> ShellmuxConfig:
        """Load config from file, env vars, or defaults.

        Priority: env vars > config file > defaults.

        Env vars:
            PORT / SHELLMUX_PORT     - Listen port
            SHELLMUX_HOST            - Listen address
            SHELLMUX_STATIC_DIR      - Directory served at /
            SHELLMUX_MODE            - Routing mode (owner/broadcast)
            SHELLMUX_PERSISTENT      - Keep sessions across disconnects (true/false)
            SHELLMUX_DEFAULT_USER    - Identity for clients that send none
            SHELLMUX_HISTORY_SIZE    - Replay buffer size in bytes
            SHELLMUX_SHELL           - Shell to spawn
        """
        load_dotenv(override=True)

        config_data: dict[str, Any] = {}
        if config_path and os.path.exists(config_path):
            with open(config_path) as f:
                config_data = json.load(f)

        server = config_data.get("server", {})
        routing = config_data.get("routing", {})
        terminal = config_data.get("terminal", {})

        env_port = os.environ.get("SHELLMUX_PORT") or os.environ.get("PORT")
        if env_port:
            server["port"] = int(env_port)

        env_host = os.environ.get("SHELLMUX_HOST")
        if env_host:
            server["host"] = env_host

        env_static = os.environ.get("SHELLMUX_STATIC_DIR")
        if env_static:
            server["static_dir"] = env_static

        env_mode = os.environ.get("SHELLMUX_MODE")
        if env_mode:
            routing["mode"] = env_mode.lower()

        env_persistent = os.environ.get("SHELLMUX_PERSISTENT")
        if env_persistent:
            routing["persistent"] = env_persistent.strip().lower() in _TRUE_VALUES

        env_user = os.environ.get("SHELLMUX_DEFAULT_USER")
        if env_user:
            routing["default_user"] = env_user

        env_history = os.environ.get("SHELLMUX_HISTORY_SIZE")
        if env_history:
            terminal["history_size"] = int(env_history)

        env_shell = os.environ.get("SHELLMUX_SHELL")
        if env_shell:
            terminal["shell"] = env_shell

        if server:
            config_data["server"] = server
        if routing:
            config_data["routing"] = routing
        if terminal:
            config_data["terminal"] = terminal

        return cls.model_validate(config_data)
