"""
Exportação dos resultados das atualizações para arquivos CSV.
"""
import io
import os
import csv
import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence

from batch_processor import BatchResult

SUCCESS_COLUMNS = ['record_id', 'object_type', 'lookup_value', 'timestamp', 'status', 'update_data', 'metadata']
FAILURE_COLUMNS = ['record_id', 'object_type', 'lookup_value', 'timestamp', 'status', 'error',
                   'update_data', 'metadata']
ALL_COLUMNS = ['result', 'record_id', 'object_type', 'lookup_value', 'timestamp', 'status',
               'update_data', 'metadata', 'error']


def format_csv_value(value: Any) -> str:
    if value is None:
        return ''
    if isinstance(value, (dict, list)):
        return json.dumps(value, ensure_ascii=False, default=str)
    return str(value)


def _as_row(record: Any) -> Dict[str, Any]:
    return record.to_row() if hasattr(record, 'to_row') else record


def _write_rows(csvfile, records: Sequence[Any], columns: Optional[Sequence[str]] = None):
    """Cabeçalho + uma linha por registro. Colunas inferidas do primeiro registro."""
    rows = [_as_row(r) for r in records]
    headers = list(columns) if columns else list(rows[0].keys())
    # QUOTE_MINIMAL: aspas apenas em campos com vírgula, aspas ou quebra de linha
    writer = csv.DictWriter(csvfile, fieldnames=headers, extrasaction='ignore')
    writer.writeheader()
    writer.writerows({h: format_csv_value(row.get(h)) for h in headers} for row in rows)


def records_to_csv(records: Sequence[Any], columns: Optional[Sequence[str]] = None) -> str:
    if not records:
        return ''
    buffer = io.StringIO()
    _write_rows(buffer, records, columns)
    return buffer.getvalue()


def _write_csv(file_path: str, records: Sequence[Any], columns: Optional[Sequence[str]] = None):
    with open(file_path, 'w', newline='', encoding='utf-8') as f:
        if records:
            _write_rows(f, records, columns)


def export_update_results(result: BatchResult, output_dir: str = './exports',
                          base_filename: str = 'salesforce_updates', separate_files: bool = True,
                          include_timestamp: bool = True) -> Dict[str, Any]:
    """
    Grava os arquivos de sucesso/falha (ou um único arquivo) e o resumo.
    Devolve a lista de arquivos gerados com a contagem de registros.
    """
    os.makedirs(output_dir, exist_ok=True)
    suffix = f"_{datetime.now(timezone.utc).strftime('%Y-%m-%dT%H-%M-%S')}" if include_timestamp else ''
    files: List[Dict[str, Any]] = []

    if separate_files:
        if result.successful:
            success_file = os.path.join(output_dir, f"{base_filename}_successful{suffix}.csv")
            _write_csv(success_file, result.successful, SUCCESS_COLUMNS)
            files.append({'type': 'successful', 'path': success_file, 'records': result.successful_count})
            logging.info(f"✅ Exported {result.successful_count} successful updates to: {success_file}")
        if result.failed:
            failed_file = os.path.join(output_dir, f"{base_filename}_failed{suffix}.csv")
            _write_csv(failed_file, result.failed, FAILURE_COLUMNS)
            files.append({'type': 'failed', 'path': failed_file, 'records': result.failed_count})
            logging.info(f"❌ Exported {result.failed_count} failed updates to: {failed_file}")
    else:
        all_rows = [{**_as_row(o), 'result': 'success'} for o in result.successful]
        all_rows += [{**_as_row(o), 'result': 'failed'} for o in result.failed]
        all_rows.sort(key=lambda row: row.get('timestamp') or '')
        if all_rows:
            all_file = os.path.join(output_dir, f"{base_filename}_all{suffix}.csv")
            _write_csv(all_file, all_rows, ALL_COLUMNS)
            files.append({'type': 'all', 'path': all_file, 'records': len(all_rows)})
            logging.info(f"📄 Exported {len(all_rows)} total updates to: {all_file}")

    summary_file = os.path.join(output_dir, f"{base_filename}_summary{suffix}.csv")
    summary_row = {
        'timestamp': datetime.now(timezone.utc).isoformat(),
        **result.summary(),
        'files': '; '.join(f['path'] for f in files),
    }
    _write_csv(summary_file, [summary_row])
    files.append({'type': 'summary', 'path': summary_file, 'records': 1})

    total_records = sum(f['records'] for f in files)
    logging.info(f"📊 Export complete! {len(files)} files created with {total_records} total records.")
    return {'files': files, 'total_records': total_records, 'summary': result.summary()}


def export_custom_data(records: Sequence[Any], file_path: str, columns: Optional[Sequence[str]] = None
                       ) -> Dict[str, Any]:
    directory = os.path.dirname(file_path)
    if directory:
        os.makedirs(directory, exist_ok=True)
    _write_csv(file_path, records, columns)
    logging.info(f"📁 Exported {len(records)} records to: {file_path}")
    return {'success': True, 'file_path': file_path, 'records': len(records), 'size': os.path.getsize(file_path)}
