import logging
from typing import Any

import requests

from .endpoints import EndpointResolver
from .errors import BackendUnavailable, RejectedByBackend
from .models import WalletMaterial

logger = logging.getLogger(__name__)


class BackendRecordClient:
    """Blocking HTTP client for the voting backend's record endpoints."""

    def __init__(
        self,
        resolver: EndpointResolver,
        auth_token: str | None = None,
        timeout: float = 10.0,
        session: requests.Session | None = None,
    ) -> None:
        self._resolver = resolver
        self._auth_token = auth_token
        self._timeout = timeout
        self._session = session or requests.Session()

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self._auth_token:
            headers["Authorization"] = f"Bearer {self._auth_token}"
        return headers

    def _request(self, method: str, path: str, **kwargs: Any) -> dict[str, Any]:
        base_url = self._resolver.current()
        url = f"{base_url}{path}"
        try:
            response = self._session.request(
                method,
                url,
                headers=self._headers(),
                timeout=self._timeout,
                **kwargs,
            )
        except (requests.ConnectionError, requests.Timeout) as exc:
            self._resolver.report_failure(base_url)
            raise BackendUnavailable(f"{method} {path} failed: {exc}") from exc

        if response.status_code == 429 or response.status_code >= 500:
            if response.status_code >= 502:
                self._resolver.report_failure(base_url)
            raise BackendUnavailable(f"{method} {path} returned {response.status_code}")

        try:
            payload = response.json()
        except ValueError:
            payload = {}
        if not isinstance(payload, dict):
            payload = {"data": payload}

        if response.status_code >= 400:
            message = payload.get("error") or payload.get("message") or response.reason or "Request rejected"
            raise RejectedByBackend(str(message), status_code=response.status_code)
        return payload

    def get_contract_address(self, election_id: str) -> str | None:
        data = self._request("GET", f"/elections/{election_id}")
        address = data.get("contract_address") or data.get("contractAddress")
        return str(address) if address else None

    def get_wallet_material(self) -> WalletMaterial:
        data = self._request("GET", "/users/profile")
        encrypted = data.get("encrypted_private_key")
        if not encrypted:
            raise RejectedByBackend("User wallet not found. Please contact administrator.")
        return WalletMaterial(encrypted_private_key=encrypted, wallet_address=data.get("wallet_address"))

    def has_voted(self, election_id: str, voter_id: str) -> bool:
        data = self._request("GET", "/vote/status", params={"election_id": election_id, "voter_id": voter_id})
        return bool(data.get("has_voted", False))

    def post_confirmation(self, payload: dict[str, Any]) -> str | None:
        data = self._request("POST", "/votes/confirm", json=payload)
        confirmation_id = data.get("confirmation_id") or data.get("confirmationId")
        return str(confirmation_id) if confirmation_id else None
