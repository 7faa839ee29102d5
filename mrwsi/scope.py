"""
Per-client workspaces ("scopes") on the shared cluster host.

A scope is a pair of directories: one in HDFS for job data and one on the
remote host's local disk for uploaded jars and scripts. Isolation is by
naming convention only; all scopes run as the same remote user.
"""
import logging
import secrets
from dataclasses import dataclass
from typing import Callable

from .channel import RemoteCommandChannel
from .config import GatewayConfig
from .errors import RemoteError, ScopeFailure

logger = logging.getLogger(__name__)


def random_scope_id() -> int:
    # Collisions are unlikely enough to ignore. Guaranteeing uniqueness would
    # need an atomic counter on the cluster.
    return secrets.randbits(63)


@dataclass(frozen=True)
class Scope:
    id: int
    remote_data_dir: str
    remote_work_dir: str

    def data_path(self, name: str) -> str:
        """Absolute HDFS path of ``name`` inside this scope."""
        return f"{self.remote_data_dir}/{name}"

    def work_path(self, name: str) -> str:
        """Absolute remote local path of ``name`` inside this scope."""
        return f"{self.remote_work_dir}/{name}"


class ScopeManager:
    def __init__(
        self,
        channel: RemoteCommandChannel,
        hdfs_base: str,
        local_base: str,
        id_factory: Callable[[], int] = random_scope_id,
    ) -> None:
        self.channel = channel
        self.hdfs_base = hdfs_base.rstrip("/")
        self.local_base = local_base.rstrip("/")
        self._id_factory = id_factory

    @classmethod
    def from_config(cls, channel: RemoteCommandChannel, config: GatewayConfig, **kwargs) -> "ScopeManager":
        return cls(
            channel,
            hdfs_base=config.remote_base_hdfs_folder,
            local_base=config.remote_base_local_folder,
            **kwargs,
        )

    def scope(self, scope_id: int) -> Scope:
        """Derive the directories of an existing scope. No remote call."""
        if isinstance(scope_id, bool) or not isinstance(scope_id, int) or scope_id < 0:
            raise ValueError(f"Scope id must be a non-negative integer, got {scope_id!r}")
        return Scope(
            id=scope_id,
            remote_data_dir=f"{self.hdfs_base}/{scope_id}",
            remote_work_dir=f"{self.local_base}/{scope_id}",
        )

    def create_scope(self) -> Scope:
        """
        Create both scope directories.

        If the second command fails the first directory is left behind;
        there is no rollback.
        """
        scope = self.scope(self._id_factory())
        logger.info(f"Creating scope {scope.id}")
        try:
            with self.channel.session() as session:
                session.execute(f"hadoop fs -mkdir -p {scope.remote_data_dir}")
                session.execute(f"mkdir -p {scope.remote_work_dir}")
        except RemoteError as e:
            raise ScopeFailure(f"Failed to create scope {scope.id}") from e
        return scope

    def delete_scope(self, scope_id: int) -> None:
        """
        Delete both scope directories and everything in them. Deleting a
        scope that does not exist is a no-op.
        """
        scope = self.scope(scope_id)
        logger.info(f"Deleting scope {scope.id}")
        try:
            with self.channel.session() as session:
                session.execute(f"hadoop fs -rm -r -f {scope.remote_data_dir}")
                session.execute(f"rm -rf {scope.remote_work_dir}")
        except RemoteError as e:
            raise ScopeFailure(f"Failed to clean up scope {scope.id}") from e
