"""Client for the Mesos agent v1 operator API."""

from typing import Dict, Iterator, Optional
from urllib.parse import urlsplit
import json
import logging

import requests

from mesos_collector.exceptions import (
    ConfigurationError,
    EmptyResponseError,
    ProtocolError,
    TransportError,
)
from mesos_collector.mesos.types import GetState, GetTasks

logger = logging.getLogger(__name__)

GET_TASKS = "GET_TASKS"
GET_STATE = "GET_STATE"


def get_agent_hostname(agent_url: str) -> str:
    """Extract the node's hostname from the agent URL.

    Args:
        agent_url: URL of the local agent, e.g. ``http://10.0.0.1:5051``

    Returns:
        Hostname without port

    Raises:
        ConfigurationError: If no hostname can be extracted
    """
    try:
        hostname = urlsplit(agent_url).hostname
    except ValueError as e:
        raise ConfigurationError(f"The agent URL was malformed: {e}") from e
    if not hostname:
        raise ConfigurationError(f"Could not extract hostname from: {agent_url!r}")
    return hostname


def decode_recordio(body: bytes) -> Iterator[bytes]:
    """Split a RecordIO stream (``<length>\\n<record>...``) into records.

    Raises:
        ProtocolError: If the stream is truncated or a length is malformed
    """
    pos = 0
    while pos < len(body):
        newline = body.find(b"\n", pos)
        if newline == -1:
            raise ProtocolError("RecordIO stream ended inside a record header")
        try:
            length = int(body[pos:newline])
        except ValueError as e:
            raise ProtocolError(f"Malformed RecordIO record length: {e}") from e
        start = newline + 1
        end = start + length
        if end > len(body):
            raise ProtocolError("RecordIO stream ended inside a record")
        yield body[start:end]
        pos = end


class OperatorClient:
    """Issues non-streaming calls against the agent operator API.

    Each call is POSTed as JSON to ``<agent_url>/api/v1``; the response is
    decoded until end of stream and the last decoded message must declare
    the expected type.
    """

    def __init__(self, agent_url: str, config: Optional[Dict] = None):
        """Initialize the operator client.

        Args:
            agent_url: URL of the local agent (e.g., http://10.0.0.1:5051)
            config: Optional configuration dictionary with:
                - timeout: Default call timeout in seconds (default: 10)
                - ca_certificate_path: CA bundle used to verify the agent
                - user_agent: User-Agent header value
        """
        self.config = config or {}
        self.agent_url = agent_url.rstrip("/")
        self.endpoint = f"{self.agent_url}/api/v1"
        self.timeout = self.config.get("timeout", 10.0)
        self.user_agent = self.config.get("user_agent", "mesos-collector")

        self.session = requests.Session()
        self.session.headers.update(
            {
                "Content-Type": "application/json",
                "Accept": "application/json",
                "User-Agent": self.user_agent,
            }
        )
        ca_path = self.config.get("ca_certificate_path")
        if ca_path:
            logger.info(f"Loading CA cert: {ca_path}")
            self.session.verify = ca_path

    def close(self) -> None:
        self.session.close()

    def get_tasks(self, timeout: Optional[float] = None) -> GetTasks:
        """Request the agent's tasks.

        Args:
            timeout: Call deadline in seconds (defaults to the client timeout)

        Returns:
            Typed task list

        Raises:
            TransportError: If the request fails
            ProtocolError: If the response is not a GET_TASKS message or its payload is malformed
            EmptyResponseError: If the GET_TASKS payload is missing
        """
        payload = self.call(GET_TASKS, timeout)
        try:
            return GetTasks.from_dict(payload)
        except (AttributeError, TypeError, ValueError) as e:
            raise ProtocolError(f"Malformed {GET_TASKS} payload: {e}") from e

    def get_state(self, timeout: Optional[float] = None) -> GetState:
        """Request the agent's full state (tasks, frameworks and executors).

        Raises:
            TransportError: If the request fails
            ProtocolError: If the response is not a GET_STATE message or its payload is malformed
            EmptyResponseError: If the GET_STATE payload is missing
        """
        payload = self.call(GET_STATE, timeout)
        try:
            return GetState.from_dict(payload)
        except (AttributeError, TypeError, ValueError) as e:
            raise ProtocolError(f"Malformed {GET_STATE} payload: {e}") from e

    def call(self, call_type: str, timeout: Optional[float] = None) -> Dict:
        """Send a non-streaming call and return the payload of its response.

        Args:
            call_type: Operator API call type, e.g. ``GET_TASKS``
            timeout: Call deadline in seconds

        Returns:
            The response payload found under the lower-cased type key
        """
        timeout = self.timeout if timeout is None else timeout
        logger.debug(f"Sending {call_type} to {self.endpoint}")

        try:
            response = self.session.post(
                self.endpoint,
                data=json.dumps({"type": call_type}),
                timeout=timeout,
            )
            response.raise_for_status()
            body = response.content
        except requests.RequestException as e:
            raise TransportError(self.endpoint, f"{call_type} failed: {e}") from e

        message = self._decode(body, response.headers.get("Content-Type", ""))
        return self._process_response(message, call_type)

    @staticmethod
    def _decode(body: bytes, content_type: str) -> Dict:
        """Decode every message in the response body and return the last one."""
        if "recordio" in content_type:
            records = decode_recordio(body)
        elif body.strip():
            records = iter([body])
        else:
            records = iter([])

        message: Dict = {}
        for record in records:
            try:
                decoded = json.loads(record)
            except ValueError as e:
                raise ProtocolError(f"Could not decode operator API response: {e}") from e
            if not isinstance(decoded, dict):
                raise ProtocolError("Operator API response was not a JSON object")
            message = decoded
        return message

    @staticmethod
    def _process_response(message: Dict, expected: str) -> Dict:
        """Verify the message type and extract its payload."""
        actual = message.get("type")
        if actual != expected:
            raise ProtocolError(f"Expected response type {expected!r}, got {actual!r}")

        payload = message.get(expected.lower())
        if payload is None:
            raise EmptyResponseError(
                f"The {expected} response from the agent was empty"
            )
        return payload
