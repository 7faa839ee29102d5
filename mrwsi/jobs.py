"""
Builds and runs the cluster command lines for the job operations: jar jobs
(``yarn jar``), streaming jobs (``hadoop jar hadoop-streaming.jar``), and
RDBMS import/export (``sqoop``).
"""
import logging
import os
import tempfile
from dataclasses import dataclass
from typing import List, Sequence

from .channel import RemoteCommandChannel
from .config import DEFAULT_STREAMING_JAR
from .errors import JobFailure, RemoteError
from .query import rewrite_import_query
from .scope import Scope

logger = logging.getLogger(__name__)

UPLOADED_JAR_NAME = "mapreduce_wsi_upload.jar"
STREAMING_MAPPER_NAME = "streaming_mapper"
STREAMING_REDUCER_NAME = "streaming_reducer"
TEMP_FILE_PREFIX = "mapreduce_wsi_tmp"


def shell_escape(value: str) -> str:
    """
    Quote ``value`` as a single POSIX shell word.

    Only handles quoting. Callers must not treat this as a complete defense
    against command injection.
    """
    return "'" + str(value).replace("'", "'\\''") + "'"


@dataclass(frozen=True)
class ConnectionSpec:
    connection_uri: str
    user: str
    credentials: str


@dataclass(frozen=True)
class ImportSpec:
    connection_uri: str
    user: str
    credentials: str
    raw_query: str
    partition_column: str
    destination_name: str

    @property
    def connection(self) -> ConnectionSpec:
        return ConnectionSpec(self.connection_uri, self.user, self.credentials)


def _connection_flags(connection: ConnectionSpec) -> str:
    return (
        f"--connect {shell_escape(connection.connection_uri)} "
        f"--username {shell_escape(connection.user)} "
        f"--password {shell_escape(connection.credentials)}"
    )


class JobSubmitter:
    def __init__(
        self,
        channel: RemoteCommandChannel,
        streaming_jar: str = DEFAULT_STREAMING_JAR,
    ) -> None:
        self.channel = channel
        self.streaming_jar = streaming_jar

    def run_jar(self, scope: Scope, local_jar_path: str, args: Sequence[str] = ()) -> None:
        """
        Deploy a jar to the scope and launch it with ``yarn jar``.

        The first argument passed to the jar's main is the scope's HDFS
        directory, followed by ``args``.
        """
        remote_jar = scope.work_path(UPLOADED_JAR_NAME)
        command = " ".join(
            ["yarn jar", remote_jar, scope.remote_data_dir] + [shell_escape(arg) for arg in args]
        )
        logger.info(f"Running jar {local_jar_path} in scope {scope.id}")
        try:
            with self.channel.session() as session:
                session.upload(local_jar_path, remote_jar)
                session.execute(command)
        except RemoteError as e:
            raise JobFailure("Failed to run MR remotely on the cluster") from e

    def run_streaming_job(
        self,
        scope: Scope,
        mapper_source: str,
        reducer_source: str,
        input_name: str,
        output_name: str,
    ) -> None:
        """
        Deploy mapper and reducer scripts to the scope and run a Hadoop
        Streaming job reading ``input_name`` and writing ``output_name``, both
        relative to the scope's HDFS directory.
        """
        remote_mapper = scope.work_path(STREAMING_MAPPER_NAME)
        remote_reducer = scope.work_path(STREAMING_REDUCER_NAME)

        local_files: List[str] = []
        try:
            for source in (mapper_source, reducer_source):
                local_files.append(write_temporary_file(source))
        except OSError as e:
            _remove_files(local_files)
            raise JobFailure(
                "Failed to write Streaming Mode Mapper and Reducer script to (local) temporary files"
            ) from e
        except Exception:
            _remove_files(local_files)
            raise

        # -file ships each script to the worker nodes as part of the job.
        command = " ".join([
            "hadoop jar", self.streaming_jar,
            "-input", shell_escape(scope.data_path(input_name)),
            "-output", shell_escape(scope.data_path(output_name)),
            "-mapper", remote_mapper,
            "-reducer", remote_reducer,
            "-file", remote_mapper,
            "-file", remote_reducer,
        ])

        logger.info(f"Running streaming job in scope {scope.id}: {input_name} -> {output_name}")
        deployed = False
        try:
            with self.channel.session() as session:
                try:
                    session.upload(local_files[0], remote_mapper)
                    session.upload(local_files[1], remote_reducer)
                finally:
                    _remove_files(local_files)
                deployed = True
                session.execute(command)
        except RemoteError as e:
            if not deployed:
                raise JobFailure("Failed to deploy Streaming Mode Mapper and Reducer script") from e
            raise JobFailure("Failed to run Streaming MR remotely on the cluster") from e
        finally:
            _remove_files(local_files)

    def import_from_rdbms(self, scope: Scope, spec: ImportSpec) -> None:
        """
        Import the result of ``spec.raw_query`` into ``spec.destination_name``
        in the scope's HDFS directory, split across parallel mappers by
        ``spec.partition_column``.
        """
        queries = rewrite_import_query(spec.raw_query, spec.partition_column)

        command = (
            f"sqoop import {_connection_flags(spec.connection)} "
            f"--query {shell_escape(queries.full_query)} "
            f"--target-dir {shell_escape(scope.data_path(spec.destination_name))} "
            f"--split-by {shell_escape(spec.partition_column)} "
            f"--boundary-query {shell_escape(queries.boundary_query)}"
        )
        logger.info(f"Importing into {spec.destination_name} in scope {scope.id}")
        try:
            self.channel.execute(command)
        except RemoteError as e:
            raise JobFailure("Failed to run import into HDFS remotely using sqoop") from e

    def export_to_rdbms(
        self,
        scope: Scope,
        connection: ConnectionSpec,
        table_name: str,
        source_name: str,
    ) -> None:
        command = (
            f"sqoop export {_connection_flags(connection)} "
            f"--table {shell_escape(table_name)} "
            f"--export-dir {shell_escape(scope.data_path(source_name))} "
            f"--fields-terminated-by '\\t'"
        )
        logger.info(f"Exporting {source_name} in scope {scope.id} to table {table_name}")
        try:
            self.channel.execute(command)
        except RemoteError as e:
            raise JobFailure("Failed to run export to SQL remotely using sqoop") from e


def write_temporary_file(contents: str) -> str:
    """Write ``contents`` to a new temporary file and return its path. The
    caller deletes it."""
    fd, path = tempfile.mkstemp(prefix=TEMP_FILE_PREFIX)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as fout:
            fout.write(contents)
    except Exception:
        os.remove(path)
        raise
    return path


def _remove_files(paths: Sequence[str]) -> None:
    for path in paths:
        try:
            os.remove(path)
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning(f"Could not remove temporary file {path}: {e}")
