import csv
import json

import pytest

from extract_sassie_ids import extract_sassie_ids, sassie_ids_output_path


def write_csv(path, rows, header=("record_id", "timestamp", "metadata")):
    with open(path, "w", newline="", encoding="utf-8") as f:
        writer = csv.writer(f)
        writer.writerow(header)
        writer.writerows(rows)


def test_rows_are_parsed_independently_and_malformed_rows_skipped(tmp_path):
    source = tmp_path / "sync_successful.csv"
    write_csv(source, [
        ("a01A", "2024-01-01T00:00:00", json.dumps({"work_order_name": "WO-1", "sassie_id": "S-1",
                                                     "sassie_survey_id": "SV-9"})),
        ("a01B", "2024-01-01T00:00:01", "{not json"),
        ("a01C", "2024-01-01T00:00:02", json.dumps({"work_order_name": "WO-3", "sassie_id": None})),
        ("a01D", "2024-01-01T00:00:03", ""),
        ("a01E", "2024-01-01T00:00:04", json.dumps({"work_order_name": "WO-5", "sassie_id": "S-5"})),
    ])

    data = extract_sassie_ids(str(source))

    assert [(d["record_id"], d["sassie_id"]) for d in data] == [("a01A", "S-1"), ("a01E", "S-5")]
    assert data[0]["sassie_survey_id"] == "SV-9"
    assert data[1]["sassie_video_qid"] is None
    assert data[0]["timestamp"] == "2024-01-01T00:00:00"

    output = tmp_path / "sync_successful_sassie_ids.json"
    assert sassie_ids_output_path(str(source)) == str(output)
    assert json.loads(output.read_text(encoding="utf-8")) == data


def test_missing_metadata_column_is_rejected(tmp_path):
    source = tmp_path / "no_metadata.csv"
    write_csv(source, [("a01A", "2024-01-01")], header=("record_id", "timestamp"))

    with pytest.raises(ValueError, match="Metadata column"):
        extract_sassie_ids(str(source), write_json=False)


def test_write_json_can_be_disabled(tmp_path):
    source = tmp_path / "sync.csv"
    write_csv(source, [("a01A", "t", json.dumps({"sassie_id": "S-1"}))])

    extract_sassie_ids(str(source), write_json=False)

    assert not (tmp_path / "sync_sassie_ids.json").exists()
