"""intent_client.py
HTTP client the assistant process uses to reach the intent server.
"""
from __future__ import annotations

from typing import Any, Dict, Optional

import httpx

import config
from intents import Intent

UNREACHABLE_REPLY = "Sorry, I couldn't reach the assistant server."


class IntentClient:
    def __init__(self, server_url: str = config.ASSISTANT_SERVER_URL,
                 timeout: float = config.SERVER_TIMEOUT_SEC,
                 http_client: httpx.Client | None = None):
        self.server_url = server_url.rstrip("/")
        self._http = http_client or httpx.Client(base_url=self.server_url, timeout=timeout)

    def resolve(self, command: str) -> Intent:
        """Asks the server to resolve command. Never raises."""
        try:
            response = self._http.post("/api/assistant/ask", json={"command": command})
            data = response.json()
            if response.status_code >= 400:
                print(f"Intent server returned {response.status_code}: {data}")
                return Intent.error(command, data.get("response") or UNREACHABLE_REPLY)
            return Intent.from_dict(data)
        except (httpx.HTTPError, ValueError, AttributeError) as e:
            print(f"Error talking to the intent server: {e}")
            return Intent.error(command, UNREACHABLE_REPLY)

    def current_user(self) -> Optional[Dict[str, Any]]:
        try:
            response = self._http.get("/api/user/current")
            response.raise_for_status()
            return response.json()
        except (httpx.HTTPError, ValueError) as e:
            print(f"Could not load the user profile: {e}")
            return None

    def close(self) -> None:
        self._http.close()
