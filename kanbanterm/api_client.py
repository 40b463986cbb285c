"""HTTP client for the terminal session REST collaborator."""

from __future__ import annotations

import json
from http import HTTPMethod
from typing import TypeVar
from urllib.parse import quote

import httpx
from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError
from structlog import get_logger

from kanbanterm.api_models import (
    CreateSessionRequest,
    RenameSessionRequest,
    SessionItemResponse,
    SessionListResponse,
    TerminalCountsResponse,
    TerminalSession,
)
from kanbanterm.constants import DEFAULT_API_PREFIX, DEFAULT_BASE_URL, DEFAULT_REQUEST_TIMEOUT_S
from kanbanterm.errors import RequestFailure
from kanbanterm.models import TerminalCreateOptions

logger = get_logger(__name__)

__all__ = ["TerminalAPIClient"]

ModelT = TypeVar("ModelT", bound=BaseModel)


def _seg(value: str) -> str:
    return quote(value, safe="")


class TerminalAPIClient:
    """Async client for list/create/rename/close sessions and terminal counts.

    Every failure surfaces as RequestFailure.
    """

    def __init__(
        self,
        base_url: str = DEFAULT_BASE_URL,
        *,
        api_prefix: str = DEFAULT_API_PREFIX,
        timeout: float = DEFAULT_REQUEST_TIMEOUT_S,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """Initialize client.

        Args:
            base_url: Server origin, e.g. http://127.0.0.1:3007
            api_prefix: Path prefix of the REST API
            timeout: Default request timeout in seconds
            transport: Optional httpx transport (tests use httpx.MockTransport)
        """
        self.base_url = base_url.rstrip("/")
        self.api_prefix = "/" + api_prefix.strip("/") if api_prefix.strip("/") else ""
        self.timeout = timeout
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    async def connect(self) -> None:
        """Create the underlying httpx client. Idempotent."""
        if self._client is not None:
            return
        self._client = httpx.AsyncClient(
            base_url=self.base_url + self.api_prefix,
            timeout=self.timeout,
            transport=self._transport,
        )

    @property
    def is_connected(self) -> bool:
        return self._client is not None

    async def close(self) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> TerminalAPIClient:
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:  # type: ignore[no-untyped-def]
        await self.close()

    async def _request(
        self,
        method: HTTPMethod | str,
        url: str,
        *,
        json_body: dict[str, object] | None = None,  # guard: loose-dict
    ) -> httpx.Response:
        """Make an HTTP request and convert failures.

        Raises:
            RequestFailure: On transport errors, timeouts and non-2xx responses
        """
        if not self._client:
            await self.connect()
        assert self._client is not None

        try:
            method_enum = HTTPMethod(method)
        except ValueError as e:
            raise RequestFailure(f"Unsupported HTTP method: {method}") from e

        try:
            resp = await self._client.request(method_enum.value, url, json=json_body)
            resp.raise_for_status()
            return resp
        except httpx.HTTPStatusError as e:
            status_code = e.response.status_code
            detail = None
            try:
                body = e.response.json()
                if isinstance(body, dict):
                    detail = body.get("detail") or body.get("title") or body.get("message")
            except (json.JSONDecodeError, ValueError):
                detail = e.response.text
            raise RequestFailure(
                f"API request failed: {status_code} {detail or e.response.text}",
                status_code=status_code,
                detail=detail,
            ) from e
        except httpx.TimeoutException as e:
            raise RequestFailure("API request timed out.") from e
        except httpx.ConnectError as e:
            logger.debug("api_connect_failed", method=str(method), url=url, error=str(e))
            raise RequestFailure(f"Cannot connect to terminal server at {self.base_url}.") from e
        except httpx.HTTPError as e:
            raise RequestFailure(f"API request failed: {e}") from e

    @staticmethod
    def _parse(resp: httpx.Response, model: type[ModelT]) -> ModelT:
        if not resp.content:
            return model()
        try:
            return model.model_validate_json(resp.content)
        except PydanticValidationError as e:
            raise RequestFailure(f"Invalid response payload for {model.__name__}: {e}") from e

    async def list_sessions(self, project_id: str) -> list[TerminalSession]:
        """List the sessions the server currently knows for a project."""
        resp = await self._request(HTTPMethod.GET, f"/projects/{_seg(project_id)}/terminals")
        return self._parse(resp, SessionListResponse).items

    async def create_session(self, project_id: str, options: TerminalCreateOptions) -> TerminalSession | None:
        """Create a session in a project's worktree.

        Returns:
            The created session, or None when the server returned no item
        """
        body = CreateSessionRequest(
            working_dir=options.working_dir,
            title=options.title,
            rows=options.rows,
            cols=options.cols,
        )
        resp = await self._request(
            HTTPMethod.POST,
            f"/projects/{_seg(project_id)}/worktrees/{_seg(options.worktree_id)}/terminals",
            json_body=body.model_dump(by_alias=True),
        )
        return self._parse(resp, SessionItemResponse).item

    async def rename_session(self, project_id: str, session_id: str, title: str) -> TerminalSession | None:
        body = RenameSessionRequest(title=title)
        resp = await self._request(
            HTTPMethod.POST,
            f"/projects/{_seg(project_id)}/terminals/{_seg(session_id)}/rename",
            json_body=body.model_dump(by_alias=True),
        )
        return self._parse(resp, SessionItemResponse).item

    async def close_session(self, project_id: str, session_id: str) -> None:
        await self._request(HTTPMethod.POST, f"/projects/{_seg(project_id)}/terminals/{_seg(session_id)}/close")

    async def terminal_counts(self) -> dict[str, int]:
        """Session counts per project across the whole server."""
        resp = await self._request(HTTPMethod.GET, "/terminals/counts")
        return self._parse(resp, TerminalCountsResponse).counts
