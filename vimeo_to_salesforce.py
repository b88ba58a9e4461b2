"""
Lê um export do Vimeo (CSV ou JSON) e atualiza as Work Orders correspondentes
no Salesforce, localizando cada uma pelo nome (Work Order Number).
"""
import os
import json
import logging
from datetime import date, datetime, timezone
from typing import Any, Dict, List, Optional

import pandas as pd

import settings
from csv_exporter import export_update_results
from record_updater import RecordUpdater, UpdateRequest

WORK_ORDER_OBJECT = "Work_Order__c"
EXPORT_BASE_FILENAME = "vimeo_salesforce_sync"

# Campo do Vimeo -> campo do Salesforce
DEFAULT_FIELD_MAPPING = {
    "embedUrl": "Video_Link_Vimeo__c",
    "reviewPage": "Vimeo_Downloadable_Link__c",
    "created": "Date_Delivered__c",
}

WORK_ORDER_LOOKUP_FIELDS = (
    "Id",
    "Name",
    "SASSIE_ID__c",
    "Related_Project__r.SASSIE_Survey_ID__c",
    "Related_Project__r.SASSIE_Survey_Name__c",
    "Related_Project__r.Video_QID__c",
    "Related_Project__r.Download_Video_QID__c",
)


def work_order_metadata(record: Dict[str, Any]) -> Dict[str, Any]:
    """Campos SASSIE da Work Order e do projeto relacionado (Related_Project__r)."""
    project = record.get("Related_Project__r") or {}
    return {
        "work_order_name": record.get("Name"),
        "sassie_id": record.get("SASSIE_ID__c"),
        "sassie_survey_id": project.get("SASSIE_Survey_ID__c"),
        "sassie_survey_name": project.get("SASSIE_Survey_Name__c"),
        "sassie_video_qid": project.get("Video_QID__c"),
        "sassie_download_qid": project.get("Download_Video_QID__c"),
    }


def read_export_file(file_path: str) -> List[Dict[str, Any]]:
    if file_path.endswith(".json"):
        with open(file_path, "r", encoding="utf-8") as f:
            data = json.load(f)
        records = data if isinstance(data, list) else data.get("data", [])
    elif file_path.endswith(".csv"):
        # Lê tudo como string para não converter IDs e datas
        df = pd.read_csv(file_path, dtype=str, keep_default_na=False, encoding="utf-8-sig")
        df.columns = df.columns.str.strip()
        records = df.to_dict(orient="records")
    else:
        raise ValueError("Unsupported file format. Use .csv or .json")
    logging.info(f"📄 Loaded {len(records)} records from {file_path}")
    return records


def transform_record(record: Dict[str, Any], identifier_column: str = "work_order_name",
                     field_mapping: Optional[Dict[str, str]] = None, today: Optional[date] = None) -> UpdateRequest:
    work_order_name = record.get(identifier_column)
    if isinstance(work_order_name, str):
        work_order_name = work_order_name.strip()
    if not work_order_name:
        raise ValueError(f"Work Order identifier '{identifier_column}' not found in Vimeo record")

    field_mapping = field_mapping or DEFAULT_FIELD_MAPPING
    today_formatted = (today or date.today()).isoformat()

    update_data = {}
    for vimeo_field, salesforce_field in field_mapping.items():
        value = record.get(vimeo_field)
        if value is None or value == "":
            continue
        # Campos de data recebem a data do processamento, não a do Vimeo
        if "date" in salesforce_field.lower():
            value = today_formatted
        update_data[salesforce_field] = value

    return UpdateRequest(
        object_type=WORK_ORDER_OBJECT,
        lookup_value=str(work_order_name),
        lookup_field="Name",
        update_data=update_data,
        metadata={
            "source": "vimeo_export",
            "work_order_number": str(work_order_name),
            "processed_at": datetime.now(timezone.utc).isoformat(),
            "original_record": record,
        },
    )


def transform_records(records: List[Dict[str, Any]], identifier_column: str,
                      field_mapping: Optional[Dict[str, str]] = None):
    updates, transform_errors = [], []
    for index, record in enumerate(records):
        try:
            updates.append(transform_record(record, identifier_column, field_mapping))
        except ValueError as e:
            transform_errors.append({"index": index, "record": record, "error": str(e)})
    return updates, transform_errors


async def process_export(updater: Optional[RecordUpdater], file_path: str, identifier_column: str = "work_order_name",
                         batch_size: int = settings.BATCH_SIZE, delay_ms: int = settings.BATCH_DELAY_MS,
                         dry_run: bool = False, export_results: bool = True, export_dir: str = settings.EXPORT_DIR,
                         field_mapping: Optional[Dict[str, str]] = None) -> Dict[str, Any]:
    logging.info(f"📹 VIMEO TO SALESFORCE INTEGRATION - reading file: {file_path}")
    if not os.path.exists(file_path):
        raise FileNotFoundError(f"Vimeo export file not found: {file_path}")
    vimeo_records = read_export_file(file_path)

    updates, transform_errors = transform_records(vimeo_records, identifier_column, field_mapping)
    logging.info(f"✅ Transformed {len(updates)} records")
    for err in transform_errors:
        logging.warning(f"⚠️  Row {err['index'] + 1}: {err['error']}")

    summary = {
        "total_records": len(vimeo_records),
        "transformed": len(updates),
        "transform_errors": len(transform_errors),
    }
    if not updates:
        logging.error("❌ No valid records to process")
        return {**summary, "processed": 0}

    if dry_run:
        logging.info("🔍 DRY RUN - No updates will be made")
        for i, update in enumerate(updates[:3], start=1):
            logging.info(f"{i}. Work Order: {update.lookup_value} | Updates: {json.dumps(update.update_data)}")
        return {**summary, "dry_run": True, "sample_updates": updates[:5]}

    results = await updater.process_updates(updates, batch_size=batch_size, delay_ms=delay_ms,
                                            select_fields=WORK_ORDER_LOOKUP_FIELDS,
                                            enrich_metadata=work_order_metadata)

    export = None
    if export_results:
        export = export_update_results(results, output_dir=export_dir, base_filename=EXPORT_BASE_FILENAME)

    logging.info(
        f"📊 PROCESSING SUMMARY - records: {len(vimeo_records)}, transformed: {len(updates)}, "
        f"transform errors: {len(transform_errors)}, success: {results.successful_count}, "
        f"failed: {results.failed_count}, success rate: {results.success_rate_label}"
    )
    return {**summary, "salesforce_results": results, "export": export}
