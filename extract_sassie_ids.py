"""
Extrai os SASSIE IDs do CSV de atualizações bem-sucedidas, para envio à API
de pesquisas. Linhas com metadata inválida são ignoradas, não interrompem a
extração.
"""
import os
import csv
import sys
import json
import logging
import argparse
from typing import Any, Dict, List

import settings

SASSIE_FIELDS = ['work_order_name', 'work_order_number', 'sassie_id', 'sassie_survey_id',
                 'sassie_survey_name', 'sassie_video_qid', 'sassie_download_qid']


def sassie_ids_output_path(successful_updates_file: str) -> str:
    root, _ = os.path.splitext(successful_updates_file)
    return f"{root}_sassie_ids.json"


def extract_sassie_ids(successful_updates_file: str, write_json: bool = True) -> List[Dict[str, Any]]:
    logging.info(f"📋 Extracting SASSIE IDs from {successful_updates_file}")
    with open(successful_updates_file, 'r', newline='', encoding='utf-8-sig') as f:
        reader = csv.DictReader(f)
        if not reader.fieldnames or 'metadata' not in reader.fieldnames:
            raise ValueError("Metadata column not found in CSV")

        sassie_data = []
        # Linha 1 é o cabeçalho
        for row_number, row in enumerate(reader, start=2):
            try:
                metadata = json.loads(row.get('metadata') or '')
            except ValueError:
                logging.warning(f"⚠️  Could not parse metadata for row {row_number}")
                continue
            if not isinstance(metadata, dict) or not metadata.get('sassie_id'):
                continue

            entry = {name: metadata.get(name) for name in SASSIE_FIELDS}
            entry['record_id'] = row.get('record_id')
            entry['timestamp'] = row.get('timestamp')
            sassie_data.append(entry)

    logging.info(f"✅ Found {len(sassie_data)} Work Orders with SASSIE IDs")
    for index, item in enumerate(sassie_data, start=1):
        logging.debug(f"{index}. Work Order: {item['work_order_name']} | SASSIE ID: {item['sassie_id']} "
                      f"| Record ID: {item['record_id']}")

    if write_json:
        output_file = sassie_ids_output_path(successful_updates_file)
        with open(output_file, 'w', encoding='utf-8') as f:
            json.dump(sassie_data, f, indent=2, ensure_ascii=False)
        logging.info(f"✅ Exported SASSIE IDs to: {output_file}")

    return sassie_data


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Extrai os SASSIE IDs de um CSV de atualizações bem-sucedidas.")
    parser.add_argument('file', help="Ex.: ./exports/vimeo_salesforce_sync_successful_2024-10-23T10-30-00.csv")
    args = parser.parse_args()

    settings.setup_logging()
    try:
        data = extract_sassie_ids(args.file)
    except (OSError, ValueError) as e:
        logging.error(f"❌ Failed to extract SASSIE IDs: {e}")
        sys.exit(1)
    logging.info(f"🎉 Ready to push {len(data)} records to SASSIE!")
