import json
import re
from datetime import date

import aiohttp
import pytest
from aioresponses import aioresponses

from extract_sassie_ids import extract_sassie_ids
from record_updater import RecordUpdater
from tests.conftest import API_VERSION, INSTANCE_URL
from vimeo_to_salesforce import (
    WORK_ORDER_OBJECT,
    process_export,
    read_export_file,
    transform_record,
    work_order_metadata,
)

BASE_URL = f"{INSTANCE_URL}/services/data/{API_VERSION}"
QUERY_URL = re.compile(rf"^{re.escape(BASE_URL)}/query\?q=.*")

VIMEO_ROW = {
    "work_order_name": " WO-0001 ",
    "embedUrl": "https://player.vimeo.com/video/1",
    "reviewPage": "https://vimeo.com/user/review/1",
    "created": "2023-12-31T10:00:00Z",
}


def test_read_csv_keeps_values_as_strings(tmp_path):
    source = tmp_path / "export.csv"
    source.write_text("work_order_name,embedUrl,duration\n007,https://v/1,12\n008,,\n", encoding="utf-8")

    records = read_export_file(str(source))

    assert records == [
        {"work_order_name": "007", "embedUrl": "https://v/1", "duration": "12"},
        {"work_order_name": "008", "embedUrl": "", "duration": ""},
    ]


@pytest.mark.parametrize("content", [[VIMEO_ROW], {"data": [VIMEO_ROW]}])
def test_read_json_array_or_data_wrapper(tmp_path, content):
    source = tmp_path / "export.json"
    source.write_text(json.dumps(content), encoding="utf-8")

    assert read_export_file(str(source)) == [VIMEO_ROW]


def test_read_unsupported_extension(tmp_path):
    source = tmp_path / "export.xlsx"
    source.write_text("", encoding="utf-8")
    with pytest.raises(ValueError, match="Unsupported file format"):
        read_export_file(str(source))


def test_transform_maps_fields_and_stamps_dates():
    request = transform_record(VIMEO_ROW, today=date(2024, 10, 23))

    assert request.object_type == WORK_ORDER_OBJECT
    assert request.lookup_value == "WO-0001"
    assert request.lookup_field == "Name"
    assert request.update_data == {
        "Video_Link_Vimeo__c": "https://player.vimeo.com/video/1",
        "Vimeo_Downloadable_Link__c": "https://vimeo.com/user/review/1",
        "Date_Delivered__c": "2024-10-23",
    }
    assert request.metadata["source"] == "vimeo_export"
    assert request.metadata["work_order_number"] == "WO-0001"
    assert request.metadata["original_record"] == VIMEO_ROW


def test_transform_skips_empty_values():
    request = transform_record({"work_order_name": "WO-2", "embedUrl": "", "reviewPage": None})
    assert request.update_data == {}


def test_transform_requires_identifier():
    with pytest.raises(ValueError, match="work_order_name"):
        transform_record({"work_order_name": "  ", "embedUrl": "x"})


def test_work_order_metadata_reads_through_relationship():
    record = {
        "Id": "a01A",
        "Name": "WO-0001",
        "SASSIE_ID__c": "S-1",
        "Related_Project__r": {
            "SASSIE_Survey_ID__c": "SV-1",
            "SASSIE_Survey_Name__c": "Mystery Shop",
            "Video_QID__c": "Q10",
            "Download_Video_QID__c": "Q11",
        },
    }

    assert work_order_metadata(record) == {
        "work_order_name": "WO-0001",
        "sassie_id": "S-1",
        "sassie_survey_id": "SV-1",
        "sassie_survey_name": "Mystery Shop",
        "sassie_video_qid": "Q10",
        "sassie_download_qid": "Q11",
    }


def test_work_order_metadata_without_project():
    metadata = work_order_metadata({"Id": "a01A", "Name": "WO-1", "Related_Project__r": None})
    assert metadata["sassie_survey_id"] is None


async def test_process_export_missing_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        await process_export(None, str(tmp_path / "missing.csv"))


async def test_process_export_dry_run_makes_no_calls(tmp_path):
    source = tmp_path / "export.json"
    source.write_text(json.dumps([VIMEO_ROW, {"embedUrl": "no identifier"}]), encoding="utf-8")

    summary = await process_export(None, str(source), dry_run=True)

    assert summary["dry_run"] is True
    assert summary["total_records"] == 2
    assert summary["transformed"] == 1
    assert summary["transform_errors"] == 1
    assert summary["sample_updates"][0].lookup_value == "WO-0001"


async def test_process_export_updates_work_orders_and_exports(tmp_path, fake_auth):
    source = tmp_path / "export.json"
    source.write_text(json.dumps([VIMEO_ROW, {**VIMEO_ROW, "work_order_name": "WO-MISSING"}]), encoding="utf-8")
    work_order = {"Id": "a01A", "Name": "WO-0001", "SASSIE_ID__c": "S-1",
                  "Related_Project__r": {"SASSIE_Survey_ID__c": "SV-1", "SASSIE_Survey_Name__c": "Shop",
                                         "Video_QID__c": "Q10", "Download_Video_QID__c": "Q11"}}

    with aioresponses() as m:
        m.get(QUERY_URL, payload={"totalSize": 1, "done": True, "records": [work_order]})
        m.get(QUERY_URL, payload={"totalSize": 0, "done": True, "records": []})
        m.patch(f"{BASE_URL}/sobjects/Work_Order__c/a01A", status=204)

        async with aiohttp.ClientSession() as session:
            updater = RecordUpdater(fake_auth, session, api_version=API_VERSION)
            summary = await process_export(updater, str(source), batch_size=1, delay_ms=0,
                                           export_dir=str(tmp_path / "exports"))

    results = summary["salesforce_results"]
    assert results.successful_count == 1
    assert results.failed[0].status == "NOT_FOUND"
    assert results.successful[0].metadata["sassie_survey_id"] == "SV-1"

    successful_file = next(f["path"] for f in summary["export"]["files"] if f["type"] == "successful")
    sassie = extract_sassie_ids(successful_file, write_json=False)
    assert [(s["work_order_name"], s["sassie_id"], s["sassie_video_qid"]) for s in sassie] == [
        ("WO-0001", "S-1", "Q10")]
