"""httpx-backed implementation of the remote node ports."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from datetime import datetime
from typing import Any

import httpx
from pydantic import ValidationError as PydanticValidationError

from playback_orchestrator.application.interfaces.remote_node import NodeRegistry, RemoteNode
from playback_orchestrator.config.settings import NodeSettings
from playback_orchestrator.domain.cluster.value_objects import NodeConnectionState, NodeStats
from playback_orchestrator.domain.music.entities import ResolveResult
from playback_orchestrator.domain.shared.datetime_utils import utcnow
from playback_orchestrator.domain.shared.exceptions import (
    NoAvailableNodeError,
    RemoteConnectionError,
    RemoteRequestError,
    RemoteTimeoutError,
)
from playback_orchestrator.domain.shared.messages import ErrorMessages, LogTemplates
from playback_orchestrator.infrastructure.remote.payloads import (
    ErrorResponsePayload,
    LoadResultPayload,
    PlayerUpdatePayload,
    StatsPayload,
)

logger = logging.getLogger(__name__)

API_PREFIX = "/v4"


def _error_detail(response: httpx.Response) -> str:
    try:
        body = ErrorResponsePayload.model_validate(response.json())
    except (ValueError, PydanticValidationError):
        return response.text[:200] or response.reason_phrase
    return body.message or body.error or response.reason_phrase


class RestNode(RemoteNode):
    """One node, reached over its REST API.

    Connection state and the websocket session id are owned by the event
    stream consumer, which reports them through ``set_connection_state`` and
    ``attach_session``.
    """

    def __init__(
        self,
        settings: NodeSettings,
        *,
        timeout_s: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._name = settings.name
        self._timeout_s = timeout_s
        self._client = httpx.AsyncClient(
            base_url=settings.url,
            headers={"Authorization": settings.password.get_secret_value()},
            timeout=timeout_s,
            transport=transport,
        )
        self._state = NodeConnectionState.DISCONNECTED
        self._connected_since: datetime | None = None
        self._session_id: str | None = None

    @property
    def name(self) -> str:
        return self._name

    @property
    def connection_state(self) -> NodeConnectionState:
        return self._state

    @property
    def connected_since(self) -> datetime | None:
        return self._connected_since

    @property
    def session_id(self) -> str | None:
        return self._session_id

    def set_connection_state(self, state: NodeConnectionState) -> None:
        if state is self._state:
            return
        logger.info(LogTemplates.REST_NODE_STATE, self._name, self._state, state)
        self._state = state
        if state is NodeConnectionState.CONNECTED:
            self._connected_since = utcnow()
        elif state is NodeConnectionState.DISCONNECTED:
            self._session_id = None

    def attach_session(self, session_id: str) -> None:
        """Record the websocket session id and mark the node connected."""
        self._session_id = session_id
        logger.info(LogTemplates.REST_SESSION_ATTACHED, self._name, session_id)
        self.set_connection_state(NodeConnectionState.CONNECTED)

    # ── REST calls ───────────────────────────────────────────────────

    async def _request(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        json: dict[str, Any] | None = None,
    ) -> httpx.Response:
        """Send one request, mapping failures onto the domain error taxonomy.

        Timeouts become ``RemoteTimeoutError``; transport failures and 5xx
        become ``RemoteConnectionError`` (both retryable); 4xx becomes the
        non-retryable ``RemoteRequestError``.
        """
        url = f"{API_PREFIX}{path}"
        try:
            response = await self._client.request(method, url, params=params, json=json)
        except httpx.TimeoutException as e:
            logger.warning(LogTemplates.REST_REQUEST_FAILED, method, url, self._name, e)
            raise RemoteTimeoutError(f"{method} {url} on {self._name}", self._timeout_s) from e
        except httpx.TransportError as e:
            logger.warning(LogTemplates.REST_REQUEST_FAILED, method, url, self._name, e)
            raise RemoteConnectionError(f"{self._name}: {e}") from e

        logger.debug(LogTemplates.REST_REQUEST, method, url, response.status_code)
        if response.status_code >= 500:
            raise RemoteConnectionError(
                f"{self._name}: {response.status_code} {_error_detail(response)}"
            )
        if response.status_code >= 400:
            raise RemoteRequestError(
                f"{self._name}: {_error_detail(response)}", response.status_code
            )
        return response

    async def fetch_stats(self) -> NodeStats:
        response = await self._request("GET", "/stats")
        return StatsPayload.model_validate(response.json()).to_domain()

    async def resolve(self, identifier: str) -> ResolveResult:
        response = await self._request("GET", "/loadtracks", params={"identifier": identifier})
        return LoadResultPayload.model_validate(response.json()).to_domain()

    def _player_path(self, community_id: str) -> str:
        if self._session_id is None:
            raise NoAvailableNodeError(ErrorMessages.NODE_SESSION_UNKNOWN.format(node=self._name))
        return f"/sessions/{self._session_id}/players/{community_id}"

    async def update_player(
        self, community_id: str, update: PlayerUpdatePayload, *, no_replace: bool = False
    ) -> None:
        await self._request(
            "PATCH",
            self._player_path(community_id),
            params={"noReplace": str(no_replace).lower()},
            json=update.to_json(),
        )

    async def destroy_player(self, community_id: str) -> None:
        await self._request("DELETE", self._player_path(community_id))

    async def aclose(self) -> None:
        await self._client.aclose()
        logger.debug(LogTemplates.REST_CLIENT_CLOSED, self._name)


class RestNodeRegistry(NodeRegistry):
    """Nodes in configuration order."""

    def __init__(self, nodes: Iterable[RestNode] = ()) -> None:
        self._nodes: dict[str, RestNode] = {}
        for node in nodes:
            self.add(node)

    @classmethod
    def from_settings(
        cls,
        nodes: Iterable[NodeSettings],
        *,
        timeout_s: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> RestNodeRegistry:
        return cls(RestNode(s, timeout_s=timeout_s, transport=transport) for s in nodes)

    def add(self, node: RestNode) -> None:
        self._nodes[node.name] = node

    def nodes(self) -> Sequence[RestNode]:
        return list(self._nodes.values())

    def get(self, name: str) -> RestNode | None:
        return self._nodes.get(name)

    async def aclose(self) -> None:
        for node in self._nodes.values():
            await node.aclose()
