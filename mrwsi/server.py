from __future__ import annotations
from typing import Any, Dict, Optional, Tuple
import logging

import threading
import time
from flask import Flask, jsonify, request
from werkzeug.serving import make_server

from .channel import RemoteCommandChannel, SSHTransport
from .config import GatewayConfig, load_config
from .errors import ConnectFailure, MapReduceWSIError
from .jobs import ConnectionSpec, ImportSpec, JobSubmitter
from .scope import ScopeManager

logger = logging.getLogger(__name__)


def configure_logging(level: str = "INFO", enable_debug: bool = False) -> None:
    """
    Configure logging for the gateway.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR)
        enable_debug: If True, log every remote command line. These include
            database credentials.
    """
    gateway_logger = logging.getLogger("mrwsi")

    # Only configure if not already configured
    if not gateway_logger.handlers:
        gateway_logger.setLevel(getattr(logging, level.upper()))

        handler = logging.StreamHandler()
        formatter = logging.Formatter(
            '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
        )
        handler.setFormatter(formatter)
        gateway_logger.addHandler(handler)

        # Prevent propagation to root logger to avoid duplicates
        gateway_logger.propagate = False
    else:
        gateway_logger.setLevel(getattr(logging, level.upper()))

    if enable_debug:
        logging.getLogger("mrwsi.channel").setLevel(logging.DEBUG)


class InvalidRequestBody(ValueError):
    pass


def _json_body(*required: str) -> Dict[str, Any]:
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise InvalidRequestBody("No JSON object provided")
    missing = [key for key in required if data.get(key) in (None, "")]
    if missing:
        raise InvalidRequestBody(f"Missing fields: {', '.join(missing)}")
    not_strings = [key for key in required if not isinstance(data[key], str)]
    if not_strings:
        raise InvalidRequestBody(f"Fields must be strings: {', '.join(not_strings)}")
    return data


def _error_body(e: BaseException) -> Dict[str, Any]:
    body: Dict[str, Any] = {"error": str(e)}
    if e.__cause__ is not None:
        body["cause"] = str(e.__cause__)
    return body


class MapReduceWSIServer:
    def __init__(
        self,
        config: GatewayConfig,
        channel: Optional[RemoteCommandChannel] = None,
        scopes: Optional[ScopeManager] = None,
        enable_logging: bool = True,
        log_level: str = "INFO",
        enable_debug: bool = False,
    ) -> None:
        if enable_logging:
            configure_logging(level=log_level, enable_debug=enable_debug)

        self.config = config
        self.channel = channel or RemoteCommandChannel(SSHTransport.from_config(config))
        self.scopes = scopes or ScopeManager.from_config(self.channel, config)
        self.jobs = JobSubmitter(self.channel, streaming_jar=config.hadoop_streaming_jar)

        logger.info(f"Initializing MapReduce-WSI gateway for {config.remote_user}@{config.remote_host}")
        logger.info(f"HDFS scope root: {config.remote_base_hdfs_folder}")
        logger.info(f"Local scope root: {config.remote_base_local_folder}")

        self.app = Flask("mapreduce-wsi")
        self._configure_routes()

        self._wsgi_server = None
        self._server_thread: Optional[threading.Thread] = None

    def _configure_routes(self) -> None:
        app = self.app
        scopes = self.scopes
        jobs = self.jobs

        @app.errorhandler(InvalidRequestBody)
        def invalid_request_body(e):
            logger.warning(f"Rejected request to {request.path}: {e}")
            return jsonify(_error_body(e)), 400

        @app.errorhandler(MapReduceWSIError)
        def gateway_error(e):
            logger.error(f"Request to {request.path} failed: {e} ({e.__cause__})")
            if isinstance(e, ValueError):
                return jsonify(_error_body(e)), 400
            if isinstance(e, ConnectFailure) or isinstance(e.__cause__, ConnectFailure):
                return jsonify(_error_body(e)), 503
            return jsonify(_error_body(e)), 502

        @app.errorhandler(ValueError)
        def invalid_value(e):
            logger.warning(f"Invalid request to {request.path}: {e}")
            return jsonify(_error_body(e)), 400

        @app.route("/scopes", methods=["POST"])
        def create_scope():
            scope = scopes.create_scope()
            logger.info(f"Created scope {scope.id}")
            return jsonify({"scope_id": scope.id}), 201

        @app.route("/scopes/<int:scope_id>", methods=["DELETE"])
        def delete_scope(scope_id: int):
            scopes.delete_scope(scope_id)
            return jsonify({"status": "deleted", "scope_id": scope_id})

        @app.route("/scopes/<int:scope_id>/jar", methods=["POST"])
        def run_jar(scope_id: int):
            data = _json_body("jar_path")
            arguments = data.get("arguments", [])
            if not isinstance(arguments, list):
                raise InvalidRequestBody("arguments must be a list")
            start_time = time.time()
            jobs.run_jar(scopes.scope(scope_id), data["jar_path"], [str(a) for a in arguments])
            logger.info(f"Jar job in scope {scope_id} finished in {time.time() - start_time:.3f}s")
            return jsonify({"status": "completed", "scope_id": scope_id})

        @app.route("/scopes/<int:scope_id>/streaming", methods=["POST"])
        def run_streaming(scope_id: int):
            data = _json_body("mapper", "reducer", "input", "output")
            start_time = time.time()
            jobs.run_streaming_job(
                scopes.scope(scope_id),
                data["mapper"],
                data["reducer"],
                data["input"],
                data["output"],
            )
            logger.info(f"Streaming job in scope {scope_id} finished in {time.time() - start_time:.3f}s")
            return jsonify({"status": "completed", "scope_id": scope_id})

        @app.route("/scopes/<int:scope_id>/import", methods=["POST"])
        def import_from_rdbms(scope_id: int):
            data = _json_body("jdbc_uri", "user", "query", "partition_column", "destination")
            spec = ImportSpec(
                connection_uri=data["jdbc_uri"],
                user=data["user"],
                credentials=data.get("credentials", ""),
                raw_query=data["query"],
                partition_column=data["partition_column"],
                destination_name=data["destination"],
            )
            jobs.import_from_rdbms(scopes.scope(scope_id), spec)
            return jsonify({"status": "completed", "scope_id": scope_id})

        @app.route("/scopes/<int:scope_id>/export", methods=["POST"])
        def export_to_rdbms(scope_id: int):
            data = _json_body("jdbc_uri", "user", "table", "source")
            connection = ConnectionSpec(
                connection_uri=data["jdbc_uri"],
                user=data["user"],
                credentials=data.get("credentials", ""),
            )
            jobs.export_to_rdbms(scopes.scope(scope_id), connection, data["table"], data["source"])
            return jsonify({"status": "completed", "scope_id": scope_id})

        @app.route("/health")
        def health():
            return jsonify({"status": "ok", "connected": self.channel.connected})

        @app.route("/")
        def root():
            return jsonify({
                "service": "MapReduce-WSI",
                "endpoints": {
                    "POST /scopes": "Create an isolated scope",
                    "DELETE /scopes/<id>": "Delete a scope and all its data",
                    "POST /scopes/<id>/jar": "Run a MapReduce jar",
                    "POST /scopes/<id>/streaming": "Run a streaming MapReduce job",
                    "POST /scopes/<id>/import": "Import from an RDBMS into HDFS",
                    "POST /scopes/<id>/export": "Export from HDFS into an RDBMS",
                    "GET /health": "Health check",
                },
                "status": "running",
            })

    def _create_server(self, host: str, port: int, auto_port: bool) -> Tuple[str, int]:
        desired_port = int(port)
        attempts = [desired_port]
        if auto_port:
            attempts.extend([desired_port + i for i in range(1, 21)])
        last_err = None
        for p in attempts:
            try:
                server = make_server(host, p, self.app, threaded=True)
                self._wsgi_server = server
                actual_port = server.server_port
                return host, actual_port
            except (OSError, SystemExit) as e:
                # werkzeug exits instead of raising when the port is taken
                logger.warning(f"Could not bind {host}:{p}")
                last_err = e
                continue
        raise OSError(f"Could not bind {host} on ports {attempts[0]}-{attempts[-1]}") from last_err

    def start_background(
        self,
        host: str = "0.0.0.0",
        port: int = 8080,
        auto_port: bool = False,
    ) -> Tuple[str, int]:
        logger.info(f"Starting MapReduce-WSI server on {host}:{port} (auto_port={auto_port})")

        bound_host, actual_port = self._create_server(host, port, auto_port)
        logger.info(f"Server bound to {bound_host}:{actual_port}")

        def _serve():
            assert self._wsgi_server is not None
            logger.info("Starting HTTP server thread")
            self._wsgi_server.serve_forever()

        self._server_thread = threading.Thread(target=_serve, name="mrwsi-wsgi-server", daemon=True)
        self._server_thread.start()
        logger.info("MapReduce-WSI server started successfully")
        return bound_host, actual_port

    def stop(self, timeout: Optional[float] = 5.0) -> None:
        logger.info(f"Stopping MapReduce-WSI server (timeout: {timeout}s)")
        try:
            if self._wsgi_server is not None:
                logger.info("Shutting down WSGI server")
                self._wsgi_server.shutdown()
        finally:
            if self._server_thread and self._server_thread.is_alive():
                logger.info("Waiting for server thread to finish")
                self._server_thread.join(timeout=timeout)
            self.channel.close()
        logger.info("MapReduce-WSI server stopped")

    def run(
        self,
        host: str = "0.0.0.0",
        port: int = 8080,
        auto_port: bool = False,
    ) -> None:
        try:
            bound_host, actual_port = self.start_background(host=host, port=port, auto_port=auto_port)
            print(f"MapReduce-WSI running at http://{bound_host}:{actual_port}")
            logger.info(f"MapReduce-WSI running at http://{bound_host}:{actual_port}")
            # Block main thread until interrupted
            while True:
                time.sleep(3600)
        except KeyboardInterrupt:
            logger.info("Received keyboard interrupt, shutting down")
        finally:
            self.stop()


def run_server(
    config_path: Optional[str] = None,
    host: str = "0.0.0.0",
    port: int = 8080,
    auto_port: bool = False,
    enable_logging: bool = True,
    log_level: str = "INFO",
    enable_debug: bool = False,
) -> None:
    server = MapReduceWSIServer(
        load_config(config_path),
        enable_logging=enable_logging,
        log_level=log_level,
        enable_debug=enable_debug,
    )
    server.run(host=host, port=port, auto_port=auto_port)
