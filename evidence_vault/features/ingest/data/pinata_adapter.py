import json
import logging
from datetime import datetime
from typing import Any, Dict, Optional

import httpx

from evidence_vault.core.common.clock import utc_now, ensure_utc
from evidence_vault.core.common.errors import (
    CollaboratorUnavailable,
    ContentNotFound,
    TerminalCollaboratorError,
)
from ..domain.interfaces import IPinStore
from ..domain.models import PinResult

logger = logging.getLogger(__name__)

RETRYABLE_STATUS_CODES = frozenset({408, 429, 500, 502, 503, 504})


class PinataPinStore(IPinStore):
    """
    Tier A on the Pinata pinning REST API.

    Error mapping:
    - transport errors, timeouts, 408/429/5xx -> CollaboratorUnavailable
    - 404 -> ContentNotFound
    - any other 4xx -> TerminalCollaboratorError
    """

    def __init__(self, jwt: str, api_url: str = "https://api.pinata.cloud",
                 timeout: float = 30.0, gateway: str = "gateway.pinata.cloud",
                 transport: Optional[httpx.BaseTransport] = None):
        if not jwt:
            raise ValueError("PINATA_JWT is required for the Pinata pin store.")
        self.gateway = gateway.rstrip("/")
        headers = {
            "Authorization": f"Bearer {jwt}",
            "Accept": "application/json",
        }
        self._client = httpx.Client(
            base_url=api_url.rstrip("/"), headers=headers, timeout=timeout, transport=transport
        )
        # Content reads go through the public gateway, which never sees the API token.
        self._gateway = httpx.Client(base_url=f"https://{self.gateway}", timeout=timeout, transport=transport)

    def __enter__(self) -> "PinataPinStore":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def close(self) -> None:
        self._client.close()
        self._gateway.close()

    def pin(self, data: bytes, metadata: Dict[str, Any]) -> PinResult:
        name = str(metadata.get("name") or "evidence")
        pinata_metadata = {
            "name": name,
            "keyvalues": {key: self._keyvalue(value) for key, value in metadata.items() if value is not None},
        }
        response = self._request(
            "POST",
            "/pinning/pinFileToIPFS",
            files={"file": (name, data)},
            data={"pinataMetadata": json.dumps(pinata_metadata)},
        )
        body = response.json()
        logger.info(f"Pinata upload successful: {body['IpfsHash']} ({body.get('PinSize', len(data))} bytes)")
        return PinResult(
            tier_a_id=body["IpfsHash"],
            size_bytes=int(body.get("PinSize", len(data))),
            timestamp=self._parse_timestamp(body.get("Timestamp")),
        )

    def unpin(self, tier_a_id: str) -> None:
        self._request("DELETE", f"/pinning/unpin/{tier_a_id}")
        logger.info(f"Unpinned {tier_a_id} from Pinata")

    def get_metadata(self, tier_a_id: str) -> Dict[str, Any]:
        response = self._request(
            "GET", "/data/pinList", params={"cid": tier_a_id, "status": "pinned", "pageLimit": 1}
        )
        rows = response.json().get("rows") or []
        if not rows:
            raise ContentNotFound(f"{tier_a_id} is not pinned on Pinata")
        row = dict(rows[0])
        row["gateway_url"] = f"https://{self.gateway}/ipfs/{tier_a_id}"
        return row

    def fetch(self, tier_a_id: str) -> bytes:
        response = self._request("GET", f"/ipfs/{tier_a_id}", client=self._gateway)
        return response.content

    def _request(self, method: str, url: str, client: Optional[httpx.Client] = None, **kwargs) -> httpx.Response:
        try:
            response = (client or self._client).request(method, url, **kwargs)
        except httpx.TimeoutException as exc:
            raise CollaboratorUnavailable(f"Pinata {method} {url} timed out") from exc
        except httpx.TransportError as exc:
            raise CollaboratorUnavailable(f"Pinata {method} {url} failed: {exc}") from exc

        if response.is_success:
            return response

        detail = response.text[:200]
        if response.status_code in RETRYABLE_STATUS_CODES:
            raise CollaboratorUnavailable(f"Pinata returned {response.status_code}: {detail}")
        if response.status_code == 404:
            raise ContentNotFound(f"Pinata returned 404 for {url}")
        raise TerminalCollaboratorError(f"Pinata rejected {method} {url} with {response.status_code}: {detail}")

    @staticmethod
    def _keyvalue(value: Any):
        # Pinata keyvalues only hold strings and numbers.
        if isinstance(value, (str, int, float)) and not isinstance(value, bool):
            return value
        return json.dumps(value)

    @staticmethod
    def _parse_timestamp(raw: Optional[str]) -> datetime:
        if not raw:
            return utc_now()
        try:
            return ensure_utc(datetime.fromisoformat(raw.replace("Z", "+00:00")))
        except ValueError:
            logger.warning(f"Unparseable Pinata timestamp '{raw}', using local time")
            return utc_now()
