"""
Serialized command execution and file transfer on the remote cluster host.

The remote host is reached with the system ``ssh``/``scp`` clients. One
OpenSSH control master per transport is the live connection: it is opened
lazily by the first session and every later ``ssh``/``scp`` invocation is
multiplexed over it.

The connection is not safe for concurrent use, so ``RemoteCommandChannel``
admits one session at a time. A session is the scoped acquisition of the
connection for one logical operation (e.g. upload a jar, then launch it).
"""
import logging
import os
import shutil
import subprocess
import tempfile
import threading
from abc import ABC, abstractmethod
from contextlib import contextmanager
from typing import Iterator, List, Optional, Sequence, Tuple

from .config import GatewayConfig
from .errors import ConnectFailure, ExecutionFailure, TransferFailure

logger = logging.getLogger(__name__)

# ssh reports its own failures (as opposed to the remote command's) with 255.
SSH_ERROR_STATUS = 255


class Transport(ABC):
    """Low level access to one remote host."""

    host: str

    @abstractmethod
    def connect(self) -> None:
        """Open the connection or raise ConnectFailure."""

    @abstractmethod
    def run(self, command: str) -> Tuple[int, str]:
        """
        Run ``command`` in a remote shell, return (exit status, output).
        Raises ExecutionFailure if the command cannot be started at all.
        """

    @abstractmethod
    def copy(self, local_path: str, remote_path: str) -> None:
        """Copy a local file to the remote host or raise TransferFailure."""

    @abstractmethod
    def is_alive(self) -> bool:
        pass

    @abstractmethod
    def disconnect(self) -> None:
        pass


class SSHTransport(Transport):
    def __init__(
        self,
        host: str,
        user: Optional[str] = None,
        port: int = 22,
        identity_file: Optional[str] = None,
        password: Optional[str] = None,
        ssh_options: Sequence[str] = (),
        ssh_binary: str = "ssh",
        scp_binary: str = "scp",
    ) -> None:
        self.host = host
        self.user = user
        self.port = int(port)
        self.identity_file = os.path.expanduser(identity_file) if identity_file else None
        self._password = password
        self.ssh_options = list(ssh_options)
        self.ssh_binary = ssh_binary
        self.scp_binary = scp_binary
        self._control_dir: Optional[str] = None

    @classmethod
    def from_config(cls, config: GatewayConfig, **kwargs) -> "SSHTransport":
        return cls(
            host=config.remote_host,
            user=config.remote_user,
            port=config.remote_port,
            identity_file=config.remote_identity_file,
            password=config.remote_password,
            **kwargs,
        )

    @property
    def target(self) -> str:
        return f"{self.user}@{self.host}" if self.user else self.host

    @property
    def control_path(self) -> Optional[str]:
        if self._control_dir is None:
            return None
        return os.path.join(self._control_dir, "master.sock")

    def _env(self) -> Optional[dict]:
        if not self._password:
            return None
        env = dict(os.environ)
        env["SSHPASS"] = self._password
        return env

    def _prefix(self, binary: str) -> List[str]:
        # Password auth goes through sshpass, reading the password from the
        # environment so it never shows up in a process listing.
        if self._password:
            return ["sshpass", "-e", binary]
        return [binary]

    def _options(self) -> List[str]:
        options = []
        if not self._password:
            options += ["-o", "BatchMode=yes"]
        if self.identity_file:
            options += ["-i", self.identity_file]
        if self.control_path:
            options += ["-o", f"ControlPath={self.control_path}"]
        for option in self.ssh_options:
            options += ["-o", option]
        return options

    def _ssh(self, *args: str) -> List[str]:
        return self._prefix(self.ssh_binary) + ["-p", str(self.port)] + self._options() + list(args)

    def connect(self) -> None:
        self._control_dir = tempfile.mkdtemp(prefix="mrwsi-ssh-")
        cmd = self._ssh(
            "-o", "ControlMaster=yes", "-o", "ControlPersist=yes", "-f", "-N", self.target
        )
        # The forked master keeps any pipe open, so stderr goes to a file.
        with tempfile.TemporaryFile(mode="w+") as err:
            try:
                proc = subprocess.run(
                    cmd, stdin=subprocess.DEVNULL, stdout=subprocess.DEVNULL,
                    stderr=err, env=self._env(),
                )
            except OSError as e:
                self._drop_control_dir()
                raise ConnectFailure(self.host, str(e)) from e
            err.seek(0)
            detail = err.read().strip()
        if proc.returncode != 0:
            self._drop_control_dir()
            raise ConnectFailure(self.host, detail)

    def run(self, command: str) -> Tuple[int, str]:
        try:
            proc = subprocess.run(
                self._ssh(self.target, command),
                stdin=subprocess.DEVNULL, stdout=subprocess.PIPE, stderr=subprocess.STDOUT,
                text=True, env=self._env(),
            )
        except OSError as e:
            # Missing ssh binary, or a command line over the kernel's limit.
            raise ExecutionFailure(command, -1, str(e)) from e
        return proc.returncode, proc.stdout

    def copy(self, local_path: str, remote_path: str) -> None:
        cmd = (
            self._prefix(self.scp_binary) + ["-P", str(self.port)] + self._options()
            + [local_path, f"{self.target}:{remote_path}"]
        )
        try:
            proc = subprocess.run(
                cmd, stdin=subprocess.DEVNULL, stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT, text=True, env=self._env(),
            )
        except OSError as e:
            raise TransferFailure(local_path, remote_path, str(e)) from e
        if proc.returncode != 0:
            raise TransferFailure(local_path, remote_path, proc.stdout.strip())

    def is_alive(self) -> bool:
        if self.control_path is None:
            return False
        try:
            proc = subprocess.run(
                self._ssh("-O", "check", self.target),
                stdin=subprocess.DEVNULL, stdout=subprocess.DEVNULL, stderr=subprocess.DEVNULL,
                env=self._env(),
            )
        except OSError as e:
            logger.warning(f"Checking SSH master for {self.host} failed: {e}")
            return False
        return proc.returncode == 0

    def disconnect(self) -> None:
        if self.control_path is None:
            return
        try:
            proc = subprocess.run(
                self._ssh("-O", "exit", self.target),
                stdin=subprocess.DEVNULL, stdout=subprocess.PIPE, stderr=subprocess.STDOUT,
                text=True, env=self._env(),
            )
            if proc.returncode != 0:
                logger.warning(f"Closing SSH master for {self.host} failed: {proc.stdout.strip()}")
        except OSError as e:
            logger.warning(f"Closing SSH master for {self.host} failed: {e}")
        finally:
            self._drop_control_dir()

    def _drop_control_dir(self) -> None:
        if self._control_dir is not None:
            shutil.rmtree(self._control_dir, ignore_errors=True)
            self._control_dir = None


class RemoteSession:
    """Exclusive handle on the channel, valid inside ``channel.session()``."""

    def __init__(self, channel: "RemoteCommandChannel") -> None:
        self._channel = channel
        self._open = True

    def _check_open(self) -> None:
        if not self._open:
            raise RuntimeError("Remote session used after it was released")

    def execute(self, command: str) -> str:
        """
        Execute a command on the remote host. No further checking is
        performed on the command string.
        """
        self._check_open()
        return self._channel._execute(command)

    def upload(self, local_path: str, remote_path: str) -> None:
        """Copy a file to the remote host. Paths are used unchanged."""
        self._check_open()
        self._channel._upload(local_path, remote_path)

    def close(self) -> None:
        self._open = False


class RemoteCommandChannel:
    """
    The one connection to the remote host, shared by all components.

    Construct it once at startup and pass it to whoever needs it. Sessions are
    not reentrant: opening a session while holding one deadlocks.
    """

    def __init__(self, transport: Transport) -> None:
        self._transport = transport
        self._lock = threading.Lock()
        self._connected = False

    @property
    def host(self) -> str:
        return self._transport.host

    @property
    def connected(self) -> bool:
        return self._connected

    @contextmanager
    def session(self) -> Iterator[RemoteSession]:
        with self._lock:
            if not self._connected:
                logger.info(f"Connecting to remote host {self.host}")
                self._transport.connect()
                self._connected = True
            session = RemoteSession(self)
            try:
                yield session
            finally:
                session.close()

    def execute(self, command: str) -> str:
        with self.session() as session:
            return session.execute(command)

    def upload(self, local_path: str, remote_path: str) -> None:
        with self.session() as session:
            session.upload(local_path, remote_path)

    def _execute(self, command: str) -> str:
        logger.debug(f"Executing remote command: {command}")
        status, output = self._transport.run(command)
        if status == 0:
            return output
        if status == SSH_ERROR_STATUS and not self._transport.is_alive():
            self._connected = False
            self._transport.disconnect()
            raise ConnectFailure(self.host, output.strip())
        logger.error(f"Remote command failed with exit status {status}")
        raise ExecutionFailure(command, status, output)

    def _upload(self, local_path: str, remote_path: str) -> None:
        logger.debug(f"Uploading {local_path} to {self.host}:{remote_path}")
        self._transport.copy(local_path, remote_path)

    def close(self) -> None:
        with self._lock:
            if self._connected:
                logger.info(f"Disconnecting from remote host {self.host}")
                self._connected = False
                self._transport.disconnect()

    def __enter__(self) -> "RemoteCommandChannel":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()
