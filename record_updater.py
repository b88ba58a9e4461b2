"""
Atualização parcial (PATCH) de registros do Salesforce via REST API.

Falhas de cada registro são capturadas e devolvidas como `UpdateOutcome`,
para que o processamento em lote continue. Apenas falhas de configuração e
autenticação interrompem o fluxo.
"""
import json
import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple
from urllib.parse import urlencode

import aiohttp

import settings
from batch_processor import BatchResult, run_in_batches
from salesforce_auth import AuthenticationError

NOT_FOUND = "NOT_FOUND"
NO_RESPONSE = "NO_RESPONSE"
ERROR = "ERROR"


class SalesforceRequestError(Exception):
    def __init__(self, status: int, body: Any):
        super().__init__(f"Salesforce request failed with HTTP {status}: {body}")
        self.status = status
        self.body = body


def utc_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass(frozen=True)
class UpdateRequest:
    object_type: str
    update_data: Dict[str, Any]
    record_id: Optional[str] = None
    lookup_value: Optional[str] = None
    lookup_field: str = "Name"
    metadata: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "UpdateRequest":
        return cls(
            object_type=data["object_type"],
            update_data=dict(data.get("update_data") or {}),
            record_id=data.get("record_id"),
            lookup_value=data.get("lookup_value"),
            lookup_field=data.get("lookup_field", "Name"),
            metadata=dict(data.get("metadata") or {}),
        )


@dataclass
class UpdateOutcome:
    success: bool
    record_id: Optional[str]
    object_type: str
    update_data: Dict[str, Any]
    metadata: Dict[str, Any] = field(default_factory=dict)
    status: Any = None
    error: Any = None
    lookup_value: Optional[str] = None
    timestamp: str = field(default_factory=utc_timestamp)

    def to_row(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "record_id": self.record_id,
            "object_type": self.object_type,
            "lookup_value": self.lookup_value,
            "timestamp": self.timestamp,
            "status": self.status,
            "error": self.error,
            "update_data": self.update_data,
            "metadata": self.metadata,
        }


def escape_soql_literal(value: str) -> str:
    return value.replace("\\", "\\\\").replace("'", "\\'")


def requests_from_key_values(object_type: str, key_values: Dict[str, Dict[str, Any]]) -> List[UpdateRequest]:
    return [
        UpdateRequest(object_type=object_type, record_id=record_id, update_data=dict(update_data),
                      metadata={"source": "key_value_pairs"})
        for record_id, update_data in key_values.items()
    ]


async def read_body(response: aiohttp.ClientResponse) -> Any:
    text = await response.text()
    if not text:
        return None
    try:
        return json.loads(text)
    except ValueError:
        return text


class RecordUpdater:
    """
    Cliente REST assíncrono. Recebe um autenticador já configurado e uma
    `aiohttp.ClientSession` aberta pelo chamador.
    """

    def __init__(self, authenticator, session: aiohttp.ClientSession, api_version: str = settings.SF_API_VERSION,
                 timeout: int = settings.REQUEST_TIMEOUT_SECONDS):
        self.auth = authenticator
        self.session = session
        self.api_version = api_version
        self.timeout = aiohttp.ClientTimeout(total=timeout)
        self._refresh_lock = asyncio.Lock()

    @property
    def base_url(self) -> str:
        return f"{self.auth.session.instance_url}/services/data/{self.api_version}"

    async def _refresh_session(self, stale_header: str):
        async with self._refresh_lock:
            # Outra corrotina do mesmo lote pode já ter renovado o token
            if self.auth.auth_headers()["Authorization"] != stale_header:
                return
            logging.warning("Token expired (401 Unauthorized). Retrying with a new token...")
            await asyncio.to_thread(self.auth.refresh_credentials)

    async def _send(self, method: str, url: str, **kwargs: Any) -> Tuple[int, Any]:
        """Envia a requisição; um 401 provoca uma reautenticação e uma nova tentativa."""
        for attempt in range(2):
            headers = self.auth.auth_headers()
            async with self.session.request(method, url, headers=headers, timeout=self.timeout,
                                            ssl=settings.VERIFY_SSL, proxy=settings.aiohttp_proxy,
                                            **kwargs) as response:
                status, body = response.status, await read_body(response)
            # A conexão é liberada antes de renovar o token
            if status == 401 and attempt == 0:
                await self._refresh_session(headers["Authorization"])
                continue
            return status, body

    async def query(self, soql: str) -> List[Dict[str, Any]]:
        logging.debug(f"SOQL: {soql}")
        next_url = f"{self.base_url}/query?{urlencode({'q': soql})}"
        records: List[Dict[str, Any]] = []
        total_size = 0
        while next_url:
            status, body = await self._send("GET", next_url)
            if status >= 400:
                logging.error(f"❌ Query failed: HTTP {status} - {body}")
                raise SalesforceRequestError(status, body)
            total_size = body.get("totalSize", total_size)
            records.extend(body.get("records", []))
            next_records_url = body.get("nextRecordsUrl")
            next_url = f"{self.auth.session.instance_url}{next_records_url}" if next_records_url else None
        logging.info(f"📊 Query returned {total_size} records")
        return records

    async def describe(self, object_type: str) -> Dict[str, Any]:
        status, body = await self._send("GET", f"{self.base_url}/sobjects/{object_type}/describe")
        if status >= 400:
            raise SalesforceRequestError(status, body)
        return body

    async def lookup_by_natural_key(self, object_type: str, key_field: str, key_value: str,
                                    select_fields: Sequence[str] = ("Id", "Name")) -> Optional[Dict[str, Any]]:
        fields = list(dict.fromkeys(["Id", key_field, *select_fields]))
        soql = (f"SELECT {', '.join(fields)} FROM {object_type} "
                f"WHERE {key_field} = '{escape_soql_literal(key_value)}' LIMIT 2")
        logging.info(f"🔍 Looking up {object_type}: {key_value}")
        records = await self.query(soql)
        if not records:
            logging.warning(f"⚠️  {object_type} not found: {key_value}")
            return None
        if len(records) > 1:
            logging.warning(f"⚠️  More than one {object_type} matches {key_field}='{key_value}'. Using the first.")
        logging.info(f"✅ Found {object_type}: {records[0]['Id']} ({records[0].get(key_field)})")
        return records[0]

    async def update_record(self, object_type: str, record_id: str, update_data: Dict[str, Any],
                            metadata: Optional[Dict[str, Any]] = None,
                            lookup_value: Optional[str] = None) -> UpdateOutcome:
        metadata = metadata or {}
        url = f"{self.base_url}/sobjects/{object_type}/{record_id}"
        logging.debug(f"PATCH {url} payload={update_data}")
        try:
            status, body = await self._send("PATCH", url, json=update_data)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logging.error(f"❌ Failed to update {object_type} record {record_id}: no response ({e})")
            return UpdateOutcome(False, record_id, object_type, update_data, metadata,
                                 status=NO_RESPONSE, error=str(e) or type(e).__name__, lookup_value=lookup_value)

        if status >= 400:
            logging.error(f"❌ Failed to update {object_type} record {record_id}: HTTP {status} - {body}")
            return UpdateOutcome(False, record_id, object_type, update_data, metadata,
                                 status=status, error=body, lookup_value=lookup_value)

        logging.info(f"✅ Updated {object_type} record: {record_id}")
        return UpdateOutcome(True, record_id, object_type, update_data, metadata,
                             status=status, lookup_value=lookup_value)

    async def update_by_natural_key(self, request: UpdateRequest, select_fields: Sequence[str] = ("Id", "Name"),
                                    enrich_metadata: Optional[Callable[[Dict[str, Any]], Dict[str, Any]]] = None
                                    ) -> UpdateOutcome:
        try:
            record = await self.lookup_by_natural_key(request.object_type, request.lookup_field,
                                                      request.lookup_value, select_fields)
        except SalesforceRequestError as e:
            return self.failure_from_exception(request, e, status=e.status)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            return self.failure_from_exception(request, e, status=NO_RESPONSE)

        if record is None:
            return UpdateOutcome(False, None, request.object_type, request.update_data, request.metadata,
                                 status=NOT_FOUND, error=f"{request.object_type} not found",
                                 lookup_value=request.lookup_value)

        metadata = {**request.metadata, "lookup_value": request.lookup_value,
                    "record_name": record.get(request.lookup_field)}
        if enrich_metadata:
            metadata.update(enrich_metadata(record))
        return await self.update_record(request.object_type, record["Id"], request.update_data, metadata,
                                        lookup_value=request.lookup_value)

    @staticmethod
    def failure_from_exception(request: UpdateRequest, exc: BaseException, status: Any = ERROR) -> UpdateOutcome:
        error = exc.body if isinstance(exc, SalesforceRequestError) else (str(exc) or type(exc).__name__)
        logging.error(f"❌ Failed to update {request.object_type} "
                      f"{request.record_id or request.lookup_value}: {error}")
        return UpdateOutcome(False, request.record_id, request.object_type, request.update_data, request.metadata,
                             status=status, error=error, lookup_value=request.lookup_value)

    async def apply(self, request: UpdateRequest, select_fields: Sequence[str] = ("Id", "Name"),
                    enrich_metadata=None) -> UpdateOutcome:
        if request.record_id:
            return await self.update_record(request.object_type, request.record_id, request.update_data,
                                            request.metadata)
        if request.lookup_value:
            return await self.update_by_natural_key(request, select_fields, enrich_metadata)
        raise ValueError("Update request needs either record_id or lookup_value")

    async def process_updates(self, update_requests: Sequence[UpdateRequest],
                              batch_size: int = settings.BATCH_SIZE, delay_ms: int = settings.BATCH_DELAY_MS,
                              select_fields: Sequence[str] = ("Id", "Name"), enrich_metadata=None,
                              show_progress: bool = True) -> BatchResult:
        return await run_in_batches(
            update_requests,
            lambda request: self.apply(request, select_fields, enrich_metadata),
            batch_size=batch_size,
            delay_ms=delay_ms,
            on_error=self.failure_from_exception,
            fatal=(AuthenticationError,),
            description="Salesforce updates",
            show_progress=show_progress,
        )
