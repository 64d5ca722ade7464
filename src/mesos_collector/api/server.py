"""
Control API server for the container registry
"""

from flask import Blueprint, Flask, current_app, jsonify, request
from pydantic import ValidationError
from typing import Optional
import logging
import threading

from werkzeug.exceptions import HTTPException
from werkzeug.serving import make_server

from mesos_collector import __version__
from mesos_collector.api.schemas import ContainerRequest, ContainerResponse
from mesos_collector.exceptions import ConflictError
from mesos_collector.models import RegisteredContainer
from mesos_collector.registry.containers import ContainerRegistry

logger = logging.getLogger(__name__)

containers_bp = Blueprint("containers", __name__)


def _registry() -> ContainerRegistry:
    return current_app.config["CONTAINER_REGISTRY"]


def _serialize(container: RegisteredContainer) -> dict:
    return ContainerResponse(**container.to_dict()).model_dump()


def _validation_messages(error: ValidationError) -> list:
    return [
        f"{'.'.join(str(part) for part in err['loc']) or 'body'}: {err['msg']}"
        for err in error.errors()
    ]


@containers_bp.route("/health", methods=["GET"])
def health_check():
    """Health check endpoint"""
    return jsonify(
        {"status": "healthy", "service": "mesos-collector", "version": __version__}
    )


@containers_bp.route("/containers", methods=["GET"])
def list_containers():
    """List all registered containers ordered by container id"""
    return jsonify([_serialize(c) for c in _registry().list_containers()])


@containers_bp.route("/container/<container_id>", methods=["GET"])
def get_container(container_id: str):
    """Get a single registration"""
    container, found = _registry().get_container(container_id)
    if not found:
        return jsonify({"error": f"Container {container_id} is not registered"}), 404
    return jsonify(_serialize(container))


@containers_bp.route("/container", methods=["POST"])
def add_container():
    """
    Register a container, or return its existing registration

    Request body:
    {
        "container_id": "abc123",
        "statsd_host": "127.0.0.1",  // optional
        "statsd_port": 8125  // optional
    }
    """
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        return jsonify({"error": "Request body must be a JSON object"}), 400

    try:
        body = ContainerRequest(**data)
    except ValidationError as e:
        return jsonify({"error": "Invalid request", "details": _validation_messages(e)}), 400

    try:
        container = _registry().add_container(
            body.container_id, body.statsd_host, body.statsd_port
        )
    except ConflictError as e:
        logger.warning(f"Rejected registration of {body.container_id}: {e}")
        return jsonify({"error": str(e)}), 409
    except ValueError as e:
        return jsonify({"error": str(e)}), 400

    return jsonify(_serialize(container))


@containers_bp.route("/container/<container_id>", methods=["DELETE"])
def remove_container(container_id: str):
    """Remove a registration. Unknown ids are not an error"""
    _registry().remove_container(container_id)
    return "", 204


def create_app(registry: ContainerRegistry) -> Flask:
    """Create the control API application.

    Args:
        registry: Container registry served by the API

    Returns:
        Configured Flask application
    """
    app = Flask(__name__)
    app.config["CONTAINER_REGISTRY"] = registry
    app.register_blueprint(containers_bp)

    @app.errorhandler(Exception)
    def handle_unexpected(e):
        if isinstance(e, HTTPException):
            return jsonify({"error": e.description}), e.code
        logger.error(f"Unhandled control API error: {e}", exc_info=True)
        return jsonify({"error": str(e)}), 500

    return app


class ControlServer:
    """Runs the control API on a werkzeug server in a background thread."""

    def __init__(self, registry: ContainerRegistry, host: str = "127.0.0.1", port: int = 8888):
        self.registry = registry
        self.host = host
        self.requested_port = port
        self.app = create_app(registry)

        self._server = None
        self._thread: Optional[threading.Thread] = None

    @property
    def port(self) -> int:
        if self._server is not None:
            return self._server.server_port
        return self.requested_port

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        """Bind the server and start serving requests."""
        if self.is_running:
            logger.warning("Control API already running")
            return

        self._server = make_server(self.host, self.requested_port, self.app, threaded=True)
        self._thread = threading.Thread(
            target=self._server.serve_forever, name="control-api", daemon=True
        )
        self._thread.start()
        logger.info(f"Control API listening on {self.host}:{self.port}")

    def stop(self) -> None:
        """Stop serving and release the socket."""
        if self._server is None:
            return
        self._server.shutdown()
        if self._thread:
            self._thread.join(timeout=5)
        self._server.server_close()
        self._server = None
        self._thread = None
        logger.info("Control API stopped")
