"""
=============================================================================
TRANSPORT
=============================================================================

The socket plumbing under the router:

    SocketServer   listening socket, accept loop, signals
    Connection     one client socket: head reads, body chunks, writes
    ThreadPool     workers that serve accepted connections

    ┌──────────────┐  Connection   ┌────────────┐  worker thread
    │ SocketServer │ ────────────► │ ThreadPool │ ───────────────► SimpleHttpApi
    └──────────────┘               └────────────┘                  ._process_connection

=============================================================================
"""

from .connection import Connection, ConnectionState
from .socket_server import SocketServer
from .thread_pool import ThreadPool

__all__ = [
    "Connection",
    "ConnectionState",
    "SocketServer",
    "ThreadPool",
]
