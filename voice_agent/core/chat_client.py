"""HTTP client for the completion server's chat endpoint."""

from typing import Optional
import httpx
import structlog

from .completion_engine import Reply


logger = structlog.get_logger()


class NetworkError(Exception):
    """The chat request failed in transport or returned an unusable response."""


class ChatClient:
    """Sends user utterances to ``POST {server_url}/chat``."""

    def __init__(
        self,
        server_url: str = "http://localhost:3001",
        timeout: float = 30.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.server_url = server_url.rstrip("/")
        self.timeout = timeout
        self.client = client or httpx.AsyncClient(timeout=timeout)
        self._owns_client = client is None

    async def send(
        self, scenario_id: Optional[str], message: str, session_id: Optional[str]
    ) -> Reply:
        """
        Request a reply for one user message.

        Raises:
            NetworkError: On transport failure, non-2xx status or a body
                without a ``reply``
        """
        payload = {"scenarioId": scenario_id, "message": message, "sessionId": session_id}
        logger.debug("Sending chat request", session_id=session_id, scenario_id=scenario_id)

        try:
            response = await self.client.post(f"{self.server_url}/chat", json=payload)
        except Exception as e:
            # Invalid URLs and ports raise outside httpx.HTTPError
            raise NetworkError(f"Chat request failed: {e}") from e

        if not response.is_success:
            raise NetworkError(f"Chat server returned HTTP {response.status_code}")

        try:
            data = response.json()
        except ValueError as e:
            raise NetworkError("Chat server returned invalid JSON") from e

        text = data.get("reply") if isinstance(data, dict) else None
        if not isinstance(text, str):
            raise NetworkError("Chat response has no reply")

        return Reply(text, data.get("scenario_name") or "")

    async def list_scenarios(self) -> list:
        """Fetch ``[{id, name}]`` from the server."""
        try:
            response = await self.client.get(f"{self.server_url}/scenarios")
            response.raise_for_status()
            return response.json()
        except Exception as e:
            raise NetworkError(f"Scenario request failed: {e}") from e

    async def aclose(self) -> None:
        if self._owns_client:
            await self.client.aclose()
