"""HTTP client for a running vault relay.

Usage:
    with VaultRelayClient("https://relay.example.com") as relay:
        relay.join("vault-0001", user_id, vault_type="private")
        ts = relay.post_message("msg-00001", "vault-0001", ciphertext)
        messages, count = relay.get_messages("vault-0001", since=0)
        relay.ack("vault-0001", [m["id"] for m in messages], user_id)

Any ``httpx.Client`` can be passed in, including FastAPI's TestClient.
"""

from __future__ import annotations

from typing import Any

import httpx


class RelayError(Exception):
    """Raised when the relay answers with an error envelope."""

    def __init__(self, status_code: int, message: str):
        super().__init__(f"Relay error {status_code}: {message}")
        self.status_code = status_code
        self.message = message


class VaultFullError(RelayError):
    """Private vault already has two other participants."""


class VaultRelayClient:
    """Thin wrapper over the relay's /api endpoints."""

    def __init__(
        self,
        url: str = "",
        admin_token: str | None = None,
        http_client: httpx.Client | None = None,
        timeout: float = 30.0,
    ):
        """Initialize the client.

        Args:
            url: Base URL of the relay (ignored when http_client has its own base URL)
            admin_token: Token for /admin/stats and /metrics
            http_client: Pre-built client, e.g. a TestClient
            timeout: Request timeout in seconds
        """
        self._url = url.rstrip("/")
        self._admin_token = admin_token
        self._owns_client = http_client is None
        self._client = http_client or httpx.Client(timeout=timeout)

    def close(self) -> None:
        """Close the HTTP client if we created it."""
        if self._owns_client:
            self._client.close()

    def __enter__(self) -> "VaultRelayClient":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def _request(
        self,
        method: str,
        path: str,
        *,
        json: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
    ) -> dict[str, Any]:
        response = self._client.request(method, f"{self._url}{path}", json=json, headers=headers)

        try:
            data = response.json()
        except ValueError:
            data = {}

        if response.status_code >= 400:
            message = data.get("error") if isinstance(data, dict) else None
            message = message or response.text
            if response.status_code == 403 and path == "/api/vault_join":
                raise VaultFullError(response.status_code, message)
            raise RelayError(response.status_code, message)

        return data

    def _admin_headers(self) -> dict[str, str]:
        if not self._admin_token:
            return {}
        return {"X-Admin-Token": self._admin_token}

    # --- Vault operations ---

    def create_vault(self, vault_id: str, vault_type: str = "public") -> dict[str, Any]:
        return self._request(
            "POST", "/api/vault_create", json={"vaultId": vault_id, "vaultType": vault_type}
        )

    def join(self, vault_id: str, user_id: str, vault_type: str = "public") -> dict[str, Any]:
        """Join a vault.

        Raises:
            VaultFullError: private vault already has two other members
        """
        return self._request(
            "POST",
            "/api/vault_join",
            json={"vaultId": vault_id, "userId": user_id, "vaultType": vault_type},
        )

    def leave(self, vault_id: str, user_id: str) -> None:
        self._request("POST", "/api/vault_leave", json={"vaultId": vault_id, "userId": user_id})

    def participant_count(self, vault_id: str) -> int:
        data = self._request("POST", "/api/get_participant_count", json={"vaultId": vault_id})
        return data["participantCount"]

    # --- Message operations ---

    def post_message(self, message_id: str, vault_id: str, blob: str) -> int:
        """Post a blob. Returns the relay-assigned timestamp."""
        data = self._request(
            "POST", "/api/message", json={"id": message_id, "vaultId": vault_id, "blob": blob}
        )
        return data["timestamp"]

    def get_messages(self, vault_id: str, since: int = 0) -> tuple[list[dict[str, Any]], int]:
        """Fetch messages newer than ``since``. Returns (messages, participant_count)."""
        data = self._request(
            "POST", "/api/get_messages", json={"vaultId": vault_id, "since": since}
        )
        return data["data"], data["participantCount"]

    def ack(self, vault_id: str, message_ids: list[str], user_id: str) -> None:
        self._request(
            "POST",
            "/api/ack_messages",
            json={"vaultId": vault_id, "messageIds": message_ids, "userId": user_id},
        )

    def nuke(self, vault_ids: list[str], user_id: str) -> None:
        self._request("POST", "/api/nuke_user", json={"vaultIds": vault_ids, "userId": user_id})

    # --- Server info ---

    def health(self) -> dict[str, Any]:
        return self._request("GET", "/health")

    def stats(self) -> dict[str, Any]:
        return self._request("GET", "/admin/stats", headers=self._admin_headers())

    def metrics(self) -> dict[str, Any]:
        return self._request("GET", "/metrics", headers=self._admin_headers())
