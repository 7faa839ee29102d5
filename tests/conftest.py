"""
Shared fixtures: a recording in-memory transport standing in for SSH, and
channel/scope/job objects wired to it.
"""
import threading
import time

import pytest

from mrwsi.channel import RemoteCommandChannel, Transport
from mrwsi.config import GatewayConfig
from mrwsi.errors import ConnectFailure, TransferFailure
from mrwsi.jobs import JobSubmitter
from mrwsi.scope import ScopeManager


class FakeTransport(Transport):
    """
    Records every call in order. ``fail_on`` maps a substring to the exit
    status returned for commands containing it. ``delay`` sleeps inside each
    call to widen race windows.
    """

    def __init__(self, host="gateway.test", delay=0.0, refuse_connect=False):
        self.host = host
        self.delay = delay
        self.refuse_connect = refuse_connect
        self.fail_on = {}
        self.fail_upload_to = set()
        self.alive = False
        self.calls = []
        self.commands = []
        self.uploads = []
        self.uploaded_contents = {}
        self.connects = 0
        self.disconnects = 0
        self._in_flight = 0
        self.max_in_flight = 0
        self._counter_lock = threading.Lock()

    def _enter(self, name, *args):
        with self._counter_lock:
            self._in_flight += 1
            self.max_in_flight = max(self.max_in_flight, self._in_flight)
            self.calls.append((name + ":start",) + args)
        if self.delay:
            time.sleep(self.delay)

    def _leave(self, name, *args):
        with self._counter_lock:
            self.calls.append((name + ":end",) + args)
            self._in_flight -= 1

    def connect(self):
        self.connects += 1
        if self.refuse_connect:
            raise ConnectFailure(self.host, "Connection refused")
        self.alive = True

    def run(self, command):
        self._enter("run", command)
        try:
            self.commands.append(command)
            for needle, status in self.fail_on.items():
                if needle in command:
                    return status, f"{needle}: failed\n"
            return 0, ""
        finally:
            self._leave("run", command)

    def copy(self, local_path, remote_path):
        self._enter("copy", local_path, remote_path)
        try:
            self.uploads.append((local_path, remote_path))
            if remote_path in self.fail_upload_to:
                raise TransferFailure(local_path, remote_path, "Permission denied")
            with open(local_path) as f:
                self.uploaded_contents[remote_path] = f.read()
        finally:
            self._leave("copy", local_path, remote_path)

    def is_alive(self):
        return self.alive

    def disconnect(self):
        self.disconnects += 1
        self.alive = False


@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture
def channel(transport):
    channel = RemoteCommandChannel(transport)
    yield channel
    channel.close()


@pytest.fixture
def config():
    return GatewayConfig(
        remote_host="gateway.test",
        remote_user="hadoop",
        remote_base_hdfs_folder="/user/hadoop/mrwsi",
        remote_base_local_folder="/tmp/mrwsi",
    )


@pytest.fixture
def scopes(channel, config):
    return ScopeManager.from_config(channel, config, id_factory=lambda: 42)


@pytest.fixture
def jobs(channel, config):
    return JobSubmitter(channel, streaming_jar=config.hadoop_streaming_jar)


@pytest.fixture
def make_transport():
    return FakeTransport


@pytest.fixture
def stub_binary(tmp_path):
    """Write an executable ``/bin/sh`` script standing in for ssh or scp."""

    def make(name, body):
        path = tmp_path / name
        path.write_text("#!/bin/sh\n" + body + "\n")
        path.chmod(0o755)
        return str(path)

    return make
