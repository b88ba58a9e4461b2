"""
Envio dos SASSIE IDs para a API de pesquisas (Cint/SASSIE).

O formato do payload não é documentado pelo fornecedor; ajuste
`build_json_payload` / `build_base64_payload` conforme o contrato da sua conta.
"""
import os
import base64
import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Sequence

import aiohttp

import settings
from batch_processor import BatchResult, run_in_batches
from csv_exporter import records_to_csv
from record_updater import read_body, utc_timestamp

UPLOAD_TIMEOUT_SECONDS = 30
STATUS_TIMEOUT_SECONDS = 10


@dataclass
class UploadOutcome:
    success: bool
    sassie_id: Any
    work_order_name: Optional[str]
    response: Any = None
    error: Any = None
    timestamp: str = field(default_factory=utc_timestamp)


def build_json_payload(record: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "surveyId": record.get("sassie_survey_id") or record.get("sassie_id"),
        "respondentId": record.get("sassie_id"),
        "data": {
            "workOrder": record.get("work_order_name"),
            "workOrderNumber": record.get("work_order_number"),
            "videoQID": record.get("sassie_video_qid"),
            "downloadQID": record.get("sassie_download_qid"),
            "timestamp": utc_timestamp(),
        },
    }


def build_base64_payload(record: Dict[str, Any]) -> Dict[str, Any]:
    csv_data = records_to_csv([{
        "respondent_id": record.get("sassie_id"),
        "work_order": record.get("work_order_name"),
        "video_qid": record.get("sassie_video_qid"),
        "download_qid": record.get("sassie_download_qid"),
    }])
    return {
        "surveyId": record.get("sassie_survey_id") or record.get("sassie_id"),
        "format": "csv",
        "data": base64.b64encode(csv_data.encode("utf-8")).decode("ascii"),
    }


class SassieUploader:
    def __init__(self, session: aiohttp.ClientSession, api_key: Optional[str] = None,
                 api_url: Optional[str] = None):
        self.session = session
        self.api_key = api_key or os.getenv("SASSIE_API_KEY")
        self.api_url = (api_url or os.getenv("SASSIE_API_URL", settings.SASSIE_API_URL)).rstrip("/")
        if not self.api_key:
            raise ValueError("SASSIE_API_KEY is required")
        self.auth = aiohttp.BasicAuth(self.api_key, "")

    async def test_connection(self) -> bool:
        logging.info("🔍 Testing SASSIE API connection...")
        try:
            async with self.session.get(f"{self.api_url}/status", auth=self.auth,
                                        headers={"Accept": "application/json"},
                                        timeout=aiohttp.ClientTimeout(total=STATUS_TIMEOUT_SECONDS),
                                        ssl=settings.VERIFY_SSL, proxy=settings.aiohttp_proxy) as response:
                if response.status >= 400:
                    logging.error(f"❌ SASSIE API connection failed: HTTP {response.status} - {await response.text()}")
                    return False
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logging.error(f"❌ SASSIE API connection failed: {e}")
            return False
        logging.info("✅ SASSIE API connection successful!")
        return True

    async def _post(self, record: Dict[str, Any], payload: Dict[str, Any]) -> UploadOutcome:
        sassie_id = record.get("sassie_id")
        logging.debug(f"SASSIE payload: {payload}")
        try:
            async with self.session.post(f"{self.api_url}/dataLoad", json=payload, auth=self.auth,
                                         headers={"Accept": "application/json"},
                                         timeout=aiohttp.ClientTimeout(total=UPLOAD_TIMEOUT_SECONDS),
                                         ssl=settings.VERIFY_SSL, proxy=settings.aiohttp_proxy) as response:
                body = await read_body(response)
                if response.status >= 400:
                    logging.error(f"❌ Failed to upload SASSIE ID {sassie_id}: HTTP {response.status}")
                    return UploadOutcome(False, sassie_id, record.get("work_order_name"), error=body)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logging.error(f"❌ Failed to upload SASSIE ID {sassie_id}: {e}")
            return UploadOutcome(False, sassie_id, record.get("work_order_name"), error=str(e) or type(e).__name__)

        logging.info(f"✅ Successfully uploaded SASSIE ID: {sassie_id}")
        return UploadOutcome(True, sassie_id, record.get("work_order_name"), response=body)

    async def upload_record(self, record: Dict[str, Any]) -> UploadOutcome:
        logging.info(f"📤 Uploading record for SASSIE ID: {record.get('sassie_id')}")
        return await self._post(record, build_json_payload(record))

    async def upload_record_base64(self, record: Dict[str, Any]) -> UploadOutcome:
        logging.info(f"📤 Uploading record (base64) for SASSIE ID: {record.get('sassie_id')}")
        return await self._post(record, build_base64_payload(record))

    async def upload_batch(self, records: Sequence[Dict[str, Any]], batch_size: int = 3, delay_ms: int = 500,
                           use_base64: bool = False) -> BatchResult:
        logging.info(f"📤 UPLOADING TO SASSIE - {len(records)} records, method: {'Base64 CSV' if use_base64 else 'JSON'}")
        upload = self.upload_record_base64 if use_base64 else self.upload_record
        return await run_in_batches(
            records,
            upload,
            batch_size=batch_size,
            delay_ms=delay_ms,
            on_error=lambda record, e: UploadOutcome(False, record.get("sassie_id"), record.get("work_order_name"),
                                                     error=str(e)),
            description="SASSIE uploads",
        )
