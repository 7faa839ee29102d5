"""
Exception hierarchy for the MapReduce gateway.

Remote failures keep the underlying exception as ``__cause__`` so callers
(and the HTTP layer) can report both the high level message and its origin.
"""
from typing import Optional


class MapReduceWSIError(Exception):
    """Base class for all gateway errors."""

    pass


class ConfigError(MapReduceWSIError, ValueError):
    """Raised when the gateway configuration is missing or invalid."""

    pass


class RemoteError(MapReduceWSIError):
    """Base class for failures talking to the remote host."""

    pass


class ConnectFailure(RemoteError):
    """Raised when no connection to the remote host can be established."""

    def __init__(self, host: str, detail: str = "") -> None:
        self.host = host
        self.detail = detail
        message = f"Failed to connect to remote host {host}"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)


class ExecutionFailure(RemoteError):
    """Raised when a remote command exits with a non-zero status."""

    def __init__(self, command: str, status: int, output: str = "") -> None:
        self.command = command
        self.status = status
        self.output = output
        super().__init__(f"Failed to execute remote command (exit status {status})")


class TransferFailure(RemoteError):
    """Raised when a file cannot be copied to the remote host."""

    def __init__(self, local_path: str, remote_path: str, detail: str = "") -> None:
        self.local_path = local_path
        self.remote_path = remote_path
        self.detail = detail
        super().__init__(
            f"Failed to copy source file {local_path} to destination {remote_path}"
        )


class ScopeFailure(MapReduceWSIError):
    """Raised when creating or deleting a scope fails."""

    pass


class JobFailure(MapReduceWSIError):
    """Raised when a job could not be submitted or failed on the cluster."""

    pass


class InvalidPartitionColumn(MapReduceWSIError, ValueError):
    """Raised when a partition column is not of the form ``table.column``."""

    def __init__(self, partition_column: Optional[str]) -> None:
        self.partition_column = partition_column
        super().__init__(
            f"Partition column must be prefixed by table, got {partition_column!r}"
        )


class UnrecognizedQuery(MapReduceWSIError, ValueError):
    """Raised when a query is not a plain SELECT ... FROM ... [WHERE ...]."""

    def __init__(self, query: str) -> None:
        self.query = query
        super().__init__(f"Unrecognized query: {query!r}")
