"""
Fluxo completo: export do Vimeo -> Work Orders no Salesforce -> SASSIE.

1. Autentica no Salesforce
2. Atualiza as Work Orders a partir do export do Vimeo
3. Extrai os SASSIE IDs das atualizações bem-sucedidas
4. Envia os dados para a API do SASSIE (opcional; falhas aqui não interrompem o fluxo)
"""
import os
import sys
import json
import time
import asyncio
import logging
import argparse
from datetime import date
from typing import Any, Dict, Optional

import aiohttp

import settings
from extract_sassie_ids import extract_sassie_ids, sassie_ids_output_path
from record_updater import RecordUpdater
from salesforce_auth import AuthenticationError, SalesforceAuthenticator, authenticator_from_env
from sassie_uploader import SassieUploader
from vimeo_to_salesforce import process_export


def upload_results_path(export_dir: str) -> str:
    return os.path.join(export_dir, f"sassie_upload_results_{date.today().isoformat()}.json")


def _successful_file(sync_results: Dict[str, Any]) -> Optional[str]:
    for exported in (sync_results.get("export") or {}).get("files", []):
        if exported["type"] == "successful":
            return exported["path"]
    return None


async def upload_to_sassie(session: aiohttp.ClientSession, sassie_data, export_dir: str,
                           sassie_config: Optional[Dict[str, Any]] = None):
    """Envia os registros ao SASSIE. Erros são registrados no log e não propagados."""
    sassie_config = dict(sassie_config or {})
    batch_options = {k: sassie_config.pop(k) for k in ("batch_size", "delay_ms", "use_base64") if k in sassie_config}
    try:
        uploader = SassieUploader(session, **sassie_config)
        if not await uploader.test_connection():
            logging.warning("⚠️  SASSIE API connection test failed - skipping upload")
            return None, None
        upload_results = await uploader.upload_batch(sassie_data, **batch_options)
    except (ValueError, aiohttp.ClientError, asyncio.TimeoutError) as e:
        logging.error(f"❌ SASSIE upload error: {e}")
        logging.error("   Continuing workflow - SASSIE data is still available for manual upload")
        return None, None

    results_file = upload_results_path(export_dir)
    with open(results_file, "w", encoding="utf-8") as f:
        json.dump({
            "successful": [vars(o) for o in upload_results.successful],
            "failed": [vars(o) for o in upload_results.failed],
            "summary": upload_results.summary(),
        }, f, indent=2, ensure_ascii=False, default=str)
    logging.info(f"✅ SASSIE upload results saved to: {results_file}")
    return upload_results, results_file


async def run_complete_workflow(authenticator: SalesforceAuthenticator, vimeo_export_file: str,
                                identifier_column: str = "work_order_name",
                                batch_size: int = settings.BATCH_SIZE, delay_ms: int = settings.BATCH_DELAY_MS,
                                dry_run: bool = False, export_dir: str = settings.EXPORT_DIR,
                                upload_enabled: bool = True,
                                sassie_config: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """O autenticador já deve ter uma sessão válida."""
    logging.info("🔄 COMPLETE WORKFLOW: VIMEO → SALESFORCE → SASSIE")

    async with aiohttp.ClientSession() as session:
        logging.info("📝 Step 2: Syncing Vimeo data to Salesforce...")
        updater = RecordUpdater(authenticator, session)
        sync_results = await process_export(updater, vimeo_export_file, identifier_column=identifier_column,
                                            batch_size=batch_size, delay_ms=delay_ms, dry_run=dry_run,
                                            export_results=True, export_dir=export_dir)
        if dry_run:
            logging.info("⚠️  DRY RUN MODE - No updates made, no SASSIE IDs to extract")
            return {"dry_run": True, "sync_results": sync_results}

        salesforce_results = sync_results.get("salesforce_results")
        if not salesforce_results or salesforce_results.successful_count == 0:
            logging.warning("⚠️  No successful updates to extract SASSIE IDs from")
            return {"sync_results": sync_results, "sassie_data": [], "sassie_upload_results": None}

        logging.info("📝 Step 3: Extracting SASSIE IDs from successful updates...")
        successful_file = _successful_file(sync_results)
        if not successful_file:
            raise FileNotFoundError("Could not find successful updates CSV file")
        sassie_data = extract_sassie_ids(successful_file)

        upload_results, results_file = None, None
        if upload_enabled and sassie_data:
            logging.info("📝 Step 4: Uploading data to SASSIE...")
            upload_results, results_file = await upload_to_sassie(session, sassie_data, export_dir, sassie_config)
        elif not upload_enabled:
            logging.info("⏭️  Step 4: Skipping SASSIE upload (upload disabled)")

    logging.info(
        f"📊 WORKFLOW COMPLETE - Vimeo records: {sync_results['total_records']}, "
        f"Salesforce success: {salesforce_results.successful_count}, "
        f"failed: {salesforce_results.failed_count}, SASSIE IDs extracted: {len(sassie_data)}"
    )
    if upload_results:
        logging.info(f"   SASSIE uploads - success: {upload_results.successful_count}, "
                     f"failed: {upload_results.failed_count}")
    return {
        "sync_results": sync_results,
        "sassie_data": sassie_data,
        "sassie_upload_results": upload_results,
        "files": {
            "successful": successful_file,
            "sassie_ids": sassie_ids_output_path(successful_file),
            "upload_results": results_file,
        },
    }


def write_workflow_results(results: Dict[str, Any], export_dir: str) -> str:
    os.makedirs(export_dir, exist_ok=True)
    output_file = os.path.join(export_dir, f"workflow_results_{time.strftime('%Y-%m-%dT%H-%M-%S')}.json")
    with open(output_file, "w", encoding="utf-8") as f:
        json.dump(results, f, indent=2, ensure_ascii=False, default=lambda o: getattr(o, "__dict__", str(o)))
    logging.info(f"💾 Workflow results saved to: {output_file}")
    return output_file


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Vimeo -> Salesforce -> SASSIE.")
    parser.add_argument('file', help="Export do Vimeo (.csv ou .json)")
    parser.add_argument('--identifier', default='work_order_name', help="Coluna com o nome da Work Order")
    parser.add_argument('--batch-size', type=int, default=settings.BATCH_SIZE)
    parser.add_argument('--delay-ms', type=int, default=settings.BATCH_DELAY_MS)
    parser.add_argument('--export-dir', default=settings.EXPORT_DIR)
    parser.add_argument('--dry-run', action='store_true', help="Mostra as atualizações sem enviá-las")
    parser.add_argument('--skip-sassie', action='store_true', help="Não envia os dados ao SASSIE")
    parser.add_argument('--base64', action='store_true', help="Envia ao SASSIE como CSV em base64")
    args = parser.parse_args()

    settings.setup_logging()
    start_time = time.time()
    try:
        logging.info("📝 Step 1: Authenticating with Salesforce...")
        auth = authenticator_from_env()
        auth.authenticate()
        results = asyncio.run(run_complete_workflow(
            auth, args.file, identifier_column=args.identifier, batch_size=args.batch_size,
            delay_ms=args.delay_ms, dry_run=args.dry_run, export_dir=args.export_dir,
            upload_enabled=not args.skip_sassie, sassie_config={"use_base64": args.base64},
        ))
        write_workflow_results(results, args.export_dir)
    except (AuthenticationError, OSError, ValueError) as e:
        logging.error(f"❌ Workflow failed: {e}")
        sys.exit(1)
    finally:
        logging.info(f"⏱️  Total execution time: {time.time() - start_time:.2f} seconds")
    logging.info("🎉 Workflow complete!")
