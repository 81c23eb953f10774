from decimal import Decimal, InvalidOperation
from typing import Any

import httpx
from loguru import logger

from medibook.domain.exceptions import InfrastructureError
from medibook.domain.models import Patient, Provider


class HttpDirectoryClient:
    """Provider/patient directory over a JSON REST API.

    ``GET {base_url}/providers/{id}`` and ``GET {base_url}/patients/{id}``
    return one record; 404 means the record does not exist.
    """

    def __init__(
        self,
        base_url: str,
        *,
        token: str = "",
        timeout: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._token = token
        self._client = client or httpx.AsyncClient(timeout=timeout)

    def _headers(self) -> dict[str, str]:
        headers = {"Accept": "application/json"}
        if self._token:
            headers["Authorization"] = f"Bearer {self._token}"
        return headers

    async def _get(self, path: str) -> dict[str, Any] | None:
        """Fetch one JSON record; None on 404."""
        url = f"{self._base_url}{path}"
        try:
            resp = await self._client.get(url, headers=self._headers())
            if resp.status_code == 404:
                return None
            resp.raise_for_status()
            data: Any = resp.json()
        except httpx.HTTPStatusError as exc:
            raise InfrastructureError(
                f"Directory request failed with status {exc.response.status_code}"
            ) from exc
        except Exception as exc:
            raise InfrastructureError(f"Directory request failed: {exc}") from exc

        if not isinstance(data, dict):
            raise InfrastructureError(f"Directory returned a malformed record for {path}")
        return data

    async def get_provider(self, provider_id: str) -> Provider | None:
        data = await self._get(f"/providers/{provider_id}")
        if data is None:
            return None

        raw_fee = data.get("fee")
        try:
            fee = Decimal(str(raw_fee)) if raw_fee is not None else None
        except InvalidOperation:
            logger.warning("Ignoring malformed fee for provider {}: {}", provider_id, raw_fee)
            fee = None

        specialty = data.get("specialty_id")
        return Provider(
            provider_id=str(data.get("id", provider_id)),
            active=bool(data.get("active", True)),
            name=data.get("name") or "",
            fee=fee,
            specialty_id=str(specialty) if specialty is not None else None,
        )

    async def get_patient(self, patient_id: str) -> Patient | None:
        data = await self._get(f"/patients/{patient_id}")
        if data is None:
            return None
        return Patient(patient_id=str(data.get("id", patient_id)), name=data.get("name") or "")

    async def health_check(self) -> bool:
        try:
            resp = await self._client.get(f"{self._base_url}/health", headers=self._headers())
            return resp.status_code < 400
        except Exception as exc:
            logger.warning("Directory health check failed: {}", exc)
            return False

    async def close(self) -> None:
        await self._client.aclose()
        logger.info("Directory client closed")
