"""Log Analytics sink for rule results.

Records are posted to the HTTP Data Collector API as a single JSON array.
Requests are signed with the workspace shared key (HMAC-SHA256 over the
canonical ``POST`` string), and the ``Log-Type`` header selects the custom
log table the records land in (``<Log-Type>_CL``).
"""
import base64
from collections.abc import Sequence
from email.utils import formatdate
import hashlib
import hmac
import json
import logging
import time
from typing import Protocol

import httpx

from auditflow.errors import TelemetrySendError


logger = logging.getLogger(__name__)

API_VERSION = "2016-04-01"
RESOURCE = "/api/logs"
CONTENT_TYPE = "application/json"


class TelemetrySink(Protocol):
    def send(self, log_type: str, records: Sequence[dict[str, object]]) -> None: ...


def build_signature(workspace_id: str, shared_key: str, date: str, content_length: int) -> str:
    string_to_hash = f"POST\n{content_length}\n{CONTENT_TYPE}\nx-ms-date:{date}\n{RESOURCE}"
    try:
        decoded_key = base64.b64decode(shared_key, validate=True)
    except ValueError as exc:
        raise TelemetrySendError("shared key is not valid base64", transient=False) from exc
    digest = hmac.new(decoded_key, string_to_hash.encode("utf-8"), hashlib.sha256).digest()
    return f"SharedKey {workspace_id}:{base64.b64encode(digest).decode('utf-8')}"


class LogAnalyticsClient:
    def __init__(
        self,
        workspace_id: str,
        shared_key: str,
        *,
        timeout_seconds: float = 30,
        max_retries: int = 0,
        backoff_seconds: float = 1,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.workspace_id = workspace_id
        self.shared_key = shared_key
        self.timeout_seconds = timeout_seconds
        self.max_retries = max_retries
        self.backoff_seconds = backoff_seconds
        self.transport = transport

    @property
    def endpoint(self) -> str:
        return f"https://{self.workspace_id}.ods.opinsights.azure.com{RESOURCE}?api-version={API_VERSION}"

    def send(self, log_type: str, records: Sequence[dict[str, object]]) -> None:
        if not self.workspace_id or not self.shared_key:
            raise TelemetrySendError("log analytics workspace id and shared key are required", transient=False)

        body = json.dumps(list(records), default=str).encode("utf-8")

        for attempt in range(1, self.max_retries + 2):
            try:
                self._post(log_type, body)
                break
            except TelemetrySendError as exc:
                logger.warning(
                    "telemetry send attempt failed",
                    extra={"attempt": attempt, "log_type": log_type, "error": str(exc)},
                )
                if attempt > self.max_retries or not exc.retryable:
                    raise
                time.sleep(self.backoff_seconds * attempt)

        logger.info(
            "telemetry batch sent",
            extra={"log_type": log_type, "record_count": len(records), "bytes": len(body)},
        )

    def _post(self, log_type: str, body: bytes) -> None:
        date = formatdate(usegmt=True)
        headers = {
            "Content-Type": CONTENT_TYPE,
            "Authorization": build_signature(self.workspace_id, self.shared_key, date, len(body)),
            "Log-Type": log_type,
            "x-ms-date": date,
        }

        try:
            with httpx.Client(timeout=self.timeout_seconds, transport=self.transport) as client:
                response = client.post(self.endpoint, content=body, headers=headers)
        except httpx.HTTPError as exc:
            raise TelemetrySendError(f"telemetry transport error: {exc}") from exc

        if response.status_code >= 300:
            raise TelemetrySendError(
                f"log analytics rejected batch: HTTP {response.status_code} {response.text.strip()}",
                status_code=response.status_code,
            )
