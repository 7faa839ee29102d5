from .channel import RemoteCommandChannel, RemoteSession, SSHTransport, Transport
from .config import GatewayConfig, load_config
from .errors import (
    ConfigError,
    ConnectFailure,
    ExecutionFailure,
    InvalidPartitionColumn,
    JobFailure,
    MapReduceWSIError,
    RemoteError,
    ScopeFailure,
    TransferFailure,
    UnrecognizedQuery,
)
from .jobs import ConnectionSpec, ImportSpec, JobSubmitter, shell_escape
from .query import ImportQueries, QueryDecomposition, decompose, rewrite_import_query
from .scope import Scope, ScopeManager
from .server import MapReduceWSIServer, configure_logging, run_server

__all__ = [
    "RemoteCommandChannel",
    "RemoteSession",
    "SSHTransport",
    "Transport",
    "GatewayConfig",
    "load_config",
    "MapReduceWSIError",
    "ConfigError",
    "RemoteError",
    "ConnectFailure",
    "ExecutionFailure",
    "TransferFailure",
    "ScopeFailure",
    "JobFailure",
    "InvalidPartitionColumn",
    "UnrecognizedQuery",
    "ConnectionSpec",
    "ImportSpec",
    "JobSubmitter",
    "shell_escape",
    "ImportQueries",
    "QueryDecomposition",
    "decompose",
    "rewrite_import_query",
    "Scope",
    "ScopeManager",
    "MapReduceWSIServer",
    "configure_logging",
    "run_server",
]
