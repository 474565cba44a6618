"""
=============================================================================
SERVER CONFIGURATION
=============================================================================

Centralized configuration for the router and the socket transport under it.

    ┌─────────────────────────────────────────────────────────────────────┐
    │                    CONFIGURATION HIERARCHY                          │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │   1. Command-line arguments                                         │
    │      └── python -m simplehttp --port 4000                          │
    │                                                                      │
    │   2. Environment variables                                          │
    │      └── SIMPLEHTTP_PORT=4000 python -m simplehttp                 │
    │                                                                      │
    │   3. Default values (in this dataclass)                            │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

=============================================================================
"""

import os
from dataclasses import dataclass
from typing import Optional


def _env_float(name: str, default: Optional[float]) -> Optional[float]:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    if value.lower() == "none":
        return None
    return float(value)


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


@dataclass
class ServerConfig:
    """
    Configuration for a SimpleHttpApi instance.

    =========================================================================
    CONFIGURATION GROUPS
    =========================================================================

    NETWORK      host, port, backlog, buffer_size, timeout
    HTTP         keep_alive, keep_alive_timeout, max_request_size,
                 body_chunk_size
    CONCURRENCY  min_workers, max_workers, max_connections
    DISPATCH     response_timeout, escape_literals
    LOGGING      log_level, server_name

    =========================================================================
    """

    # ─────────────────────────────────────────────────────────────────────
    # NETWORK SETTINGS
    # ─────────────────────────────────────────────────────────────────────

    host: str = "127.0.0.1"
    """IP address to bind to. "0.0.0.0" listens on all interfaces."""

    port: int = 4000
    """Port to listen on. 0 lets the OS pick a free port."""

    backlog: int = 128
    """Maximum number of queued, not yet accepted connections."""

    buffer_size: int = 8192
    """Bytes read from the socket per recv() call."""

    timeout: Optional[float] = 30.0
    """Socket read timeout in seconds. None blocks forever."""

    # ─────────────────────────────────────────────────────────────────────
    # HTTP SETTINGS
    # ─────────────────────────────────────────────────────────────────────

    keep_alive: bool = True
    """Serve several requests over one TCP connection."""

    keep_alive_timeout: float = 5.0
    """Idle time before a keep-alive connection is closed."""

    max_request_size: int = 10 * 1024 * 1024  # 10 MB
    """Largest accepted request body. Bigger bodies get 413."""

    body_chunk_size: int = 8192
    """Largest chunk handed out by a request's BodyStream."""

    # ─────────────────────────────────────────────────────────────────────
    # CONCURRENCY
    # ─────────────────────────────────────────────────────────────────────

    min_workers: int = 4
    """Worker threads created at startup."""

    max_workers: int = 16
    """Upper bound for worker threads."""

    max_connections: int = 100_000
    """
    Connections served at once. Extra connections get 503 and are closed.
    """

    # ─────────────────────────────────────────────────────────────────────
    # DISPATCH
    # ─────────────────────────────────────────────────────────────────────

    response_timeout: Optional[float] = None
    """
    Deadline for a dispatched request to finish its response.

    None waits forever: a middleware that never calls proceed() keeps the
    connection open. With a value, the request is answered with 503 once
    the deadline passes (if nothing was written yet) and the connection
    is closed.
    """

    escape_literals: bool = False
    """
    Escape regex metacharacters in the literal parts of route templates.

    Off by default: "/file.json" also matches "/fileXjson".
    """

    # ─────────────────────────────────────────────────────────────────────
    # LOGGING
    # ─────────────────────────────────────────────────────────────────────

    log_level: str = "INFO"
    """DEBUG, INFO, WARNING, ERROR or CRITICAL."""

    server_name: str = "SimpleHttpApi/1.0"
    """Value of the Server response header."""

    @classmethod
    def from_env(cls) -> "ServerConfig":
        """
        Create configuration from environment variables.

        SIMPLEHTTP_HOST              bind address (default: 127.0.0.1)
        SIMPLEHTTP_PORT              port (default: 4000)
        SIMPLEHTTP_WORKERS           max worker threads (default: 16)
        SIMPLEHTTP_TIMEOUT           socket timeout, seconds (default: 30)
        SIMPLEHTTP_RESPONSE_TIMEOUT  dispatch deadline, seconds (default: none)
        SIMPLEHTTP_MAX_CONNECTIONS   connection limit (default: 100000)
        SIMPLEHTTP_ESCAPE_LITERALS   exact-literal route matching (default: off)
        SIMPLEHTTP_LOG_LEVEL         logging level (default: INFO)
        """
        return cls(
            host=os.getenv("SIMPLEHTTP_HOST", "127.0.0.1"),
            port=int(os.getenv("SIMPLEHTTP_PORT", "4000")),
            max_workers=int(os.getenv("SIMPLEHTTP_WORKERS", "16")),
            timeout=_env_float("SIMPLEHTTP_TIMEOUT", 30.0),
            response_timeout=_env_float("SIMPLEHTTP_RESPONSE_TIMEOUT", None),
            max_connections=int(os.getenv("SIMPLEHTTP_MAX_CONNECTIONS", "100000")),
            escape_literals=_env_bool("SIMPLEHTTP_ESCAPE_LITERALS", False),
            log_level=os.getenv("SIMPLEHTTP_LOG_LEVEL", "INFO"),
        )

    def validate(self) -> None:
        """
        Validate configuration values.

        Called when the api is constructed, so a bad value fails at
        startup instead of on the first request.
        """
        if not 0 <= self.port < 65536:
            raise ValueError(f"Invalid port: {self.port}. Must be 0-65535.")

        if self.min_workers < 1:
            raise ValueError("min_workers must be >= 1")

        if self.max_workers < self.min_workers:
            raise ValueError("max_workers must be >= min_workers")

        if self.buffer_size < 1024:
            raise ValueError("buffer_size must be >= 1024")

        if self.body_chunk_size < 1:
            raise ValueError("body_chunk_size must be >= 1")

        if self.max_connections < 1:
            raise ValueError("max_connections must be >= 1")

        if self.timeout is not None and self.timeout <= 0:
            raise ValueError("timeout must be > 0")

        if self.response_timeout is not None and self.response_timeout <= 0:
            raise ValueError("response_timeout must be > 0")
