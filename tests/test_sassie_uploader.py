import base64
import csv
import io

import aiohttp
import pytest
from aioresponses import aioresponses

from sassie_uploader import SassieUploader, build_base64_payload, build_json_payload

API_URL = "https://sassie.example.com/api"
RECORD = {
    "work_order_name": "WO-0001",
    "work_order_number": "WO-0001",
    "sassie_id": "S-1",
    "sassie_survey_id": "SV-1",
    "sassie_video_qid": "Q10",
    "sassie_download_qid": "Q11",
}


@pytest.fixture
async def uploader():
    async with aiohttp.ClientSession() as session:
        yield SassieUploader(session, api_key="key-123", api_url=f"{API_URL}/")


def posted(mocked):
    return [call for (method, _), calls in mocked.requests.items() if method == "POST" for call in calls]


def test_json_payload_shape():
    payload = build_json_payload(RECORD)

    assert payload["surveyId"] == "SV-1"
    assert payload["respondentId"] == "S-1"
    assert payload["data"]["workOrder"] == "WO-0001"
    assert payload["data"]["videoQID"] == "Q10"
    assert payload["data"]["downloadQID"] == "Q11"


def test_json_payload_falls_back_to_sassie_id_for_survey():
    assert build_json_payload({"sassie_id": "S-2"})["surveyId"] == "S-2"


def test_base64_payload_wraps_csv():
    payload = build_base64_payload({**RECORD, "work_order_name": "WO, with comma"})

    assert payload["format"] == "csv"
    rows = list(csv.reader(io.StringIO(base64.b64decode(payload["data"]).decode("utf-8"))))
    assert rows == [["respondent_id", "work_order", "video_qid", "download_qid"],
                    ["S-1", "WO, with comma", "Q10", "Q11"]]


def test_api_key_is_required(monkeypatch):
    monkeypatch.delenv("SASSIE_API_KEY", raising=False)
    with pytest.raises(ValueError, match="SASSIE_API_KEY"):
        SassieUploader(session=None)


async def test_upload_record_success(uploader):
    with aioresponses() as m:
        m.post(f"{API_URL}/dataLoad", payload={"status": "accepted"})

        outcome = await uploader.upload_record(RECORD)

        assert outcome.success is True
        assert outcome.sassie_id == "S-1"
        assert outcome.response == {"status": "accepted"}
        call, = posted(m)
        assert call.kwargs["json"]["respondentId"] == "S-1"
        assert call.kwargs["auth"] == aiohttp.BasicAuth("key-123", "")


async def test_non_json_success_body_is_kept_as_text(uploader):
    with aioresponses() as m:
        m.post(f"{API_URL}/dataLoad", body="OK", content_type="text/plain")

        outcome = await uploader.upload_record(RECORD)

    assert outcome.success is True
    assert outcome.response == "OK"


async def test_upload_record_http_error(uploader):
    with aioresponses() as m:
        m.post(f"{API_URL}/dataLoad", status=422, payload={"error": "invalid survey"})

        outcome = await uploader.upload_record(RECORD)

    assert outcome.success is False
    assert outcome.error == {"error": "invalid survey"}


async def test_upload_record_without_response(uploader):
    with aioresponses() as m:
        m.post(f"{API_URL}/dataLoad", exception=aiohttp.ClientConnectionError("refused"))

        outcome = await uploader.upload_record_base64(RECORD)

    assert outcome.success is False
    assert outcome.error == "refused"


async def test_connection_check(uploader):
    with aioresponses() as m:
        m.get(f"{API_URL}/status", payload={"ok": True})
        m.get(f"{API_URL}/status", status=503)

        assert await uploader.test_connection() is True
        assert await uploader.test_connection() is False


async def test_upload_batch_partitions_results(uploader):
    records = [RECORD, {**RECORD, "sassie_id": "S-2"}, {**RECORD, "sassie_id": "S-3"}]
    with aioresponses() as m:
        m.post(f"{API_URL}/dataLoad", payload={"status": "accepted"})
        m.post(f"{API_URL}/dataLoad", status=500, body="error")
        m.post(f"{API_URL}/dataLoad", payload={"status": "accepted"})

        result = await uploader.upload_batch(records, batch_size=1, delay_ms=0)

    assert result.total_processed == 3
    assert [o.sassie_id for o in result.successful] == ["S-1", "S-3"]
    assert [o.sassie_id for o in result.failed] == ["S-2"]
