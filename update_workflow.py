"""
Atualização em massa de registros do Salesforce a partir de um arquivo JSON.

O arquivo pode conter:
- uma lista de atualizações: [{"object_type": "Account", "record_id": "001...", "update_data": {...}}, ...]
- um mapa record_id -> campos, junto com --object-type: {"001...": {"Name": "Acme"}, ...}
"""
import sys
import json
import time
import asyncio
import logging
import argparse
from typing import Any, Dict, Optional

import aiohttp

import settings
from csv_exporter import export_update_results
from record_updater import RecordUpdater, UpdateRequest, requests_from_key_values
from salesforce_auth import AuthenticationError, authenticator_from_env


def build_update_requests(updates: Any, object_type: Optional[str] = None):
    if isinstance(updates, list):
        return [u if isinstance(u, UpdateRequest) else UpdateRequest.from_dict(u) for u in updates]
    if isinstance(updates, dict) and object_type:
        return requests_from_key_values(object_type, updates)
    raise ValueError("Invalid update format. Provide a list of updates or key-value pairs with an object type.")


async def execute_update_workflow(updater: RecordUpdater, updates: Any, object_type: Optional[str] = None,
                                  batch_size: int = settings.BATCH_SIZE, delay_ms: int = settings.BATCH_DELAY_MS,
                                  export_options: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    update_requests = build_update_requests(updates, object_type)
    logging.info(f"🚀 Starting update workflow with {len(update_requests)} updates")

    results = await updater.process_updates(update_requests, batch_size=batch_size, delay_ms=delay_ms)

    export = None
    if export_options is None or export_options.get("export_to_csv", True):
        options = {k: v for k, v in (export_options or {}).items() if k != "export_to_csv"}
        export = export_update_results(results, **options)

    logging.info(f"🏁 Workflow complete: {results.successful_count}/{results.total_processed} "
                 f"successful ({results.success_rate_label})")
    return {"results": results, "export": export}


async def run(args) -> Dict[str, Any]:
    with open(args.file, "r", encoding="utf-8") as f:
        updates = json.load(f)
    # Falha de configuração/autenticação aborta antes de abrir a sessão HTTP
    build_update_requests(updates, args.object_type)
    authenticator = authenticator_from_env(args.auth_flow)
    await asyncio.to_thread(authenticator.authenticate)

    async with aiohttp.ClientSession() as session:
        updater = RecordUpdater(authenticator, session)
        return await execute_update_workflow(
            updater, updates, args.object_type, batch_size=args.batch_size, delay_ms=args.delay_ms,
            export_options={"export_to_csv": not args.no_export, "output_dir": args.output_dir,
                            "base_filename": args.base_filename},
        )


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Atualiza registros do Salesforce em lotes a partir de um JSON.")
    parser.add_argument('file', help="Arquivo JSON com a lista de atualizações ou o mapa record_id -> campos")
    parser.add_argument('--object-type', help="Objeto do Salesforce (obrigatório para o mapa record_id -> campos)")
    parser.add_argument('--auth-flow', choices=['jwt', 'password', 'webserver'], default=None,
                        help="Fluxo de autenticação (padrão: SF_AUTH_FLOW)")
    parser.add_argument('--batch-size', type=int, default=settings.BATCH_SIZE)
    parser.add_argument('--delay-ms', type=int, default=settings.BATCH_DELAY_MS)
    parser.add_argument('--output-dir', default=settings.EXPORT_DIR)
    parser.add_argument('--base-filename', default='salesforce_updates')
    parser.add_argument('--no-export', action='store_true', help="Não gera os arquivos CSV de resultado")
    args = parser.parse_args()

    settings.setup_logging()
    start_time = time.time()
    try:
        asyncio.run(run(args))
    except (AuthenticationError, OSError, ValueError) as e:
        logging.error(f"❌ Update workflow failed: {e}")
        sys.exit(1)
    finally:
        logging.info(f"⏱️  Total execution time: {time.time() - start_time:.2f} seconds")
