"""
Valida um export do Vimeo antes da sincronização: coluna de identificação,
nomes vazios e quais Work Orders existem no Salesforce.
"""
import sys
import asyncio
import logging
import argparse
from typing import Any, Dict, List, Optional

import aiohttp

import settings
from record_updater import RecordUpdater, SalesforceRequestError
from salesforce_auth import AuthenticationError, authenticator_from_env
from vimeo_to_salesforce import WORK_ORDER_OBJECT, read_export_file


def _identifier(record: Dict[str, Any], identifier_column: str) -> str:
    value = record.get(identifier_column)
    return value.strip() if isinstance(value, str) else ("" if value is None else str(value))


def check_records(records: List[Dict[str, Any]], identifier_column: str = "work_order_name") -> Dict[str, Any]:
    """Validações locais, sem acesso ao Salesforce."""
    if not records:
        raise ValueError("No records found in file")

    logging.info(f"🔍 Checking for Work Order identifier: '{identifier_column}'")
    if not all(identifier_column in r for r in records):
        logging.error(f"❌ Work Order identifier field not found! Available fields: {', '.join(records[0])}")
        raise ValueError(f"Field '{identifier_column}' not found in records")

    empty = [r for r in records if not _identifier(r, identifier_column)]
    if empty:
        logging.warning(f"⚠️  {len(empty)} records have empty Work Order names")
    else:
        logging.info("✅ All records have Work Order names")

    names = list(dict.fromkeys(n for n in (_identifier(r, identifier_column) for r in records) if n))
    logging.info(f"📋 Found {len(names)} unique Work Orders")
    for i, name in enumerate(names[:10], start=1):
        logging.info(f"   {i}. {name}")
    if len(names) > 10:
        logging.info(f"   ... and {len(names) - 10} more")
    return {"total_records": len(records), "empty_identifiers": len(empty), "work_order_names": names}


async def find_existing_work_orders(updater: RecordUpdater, names: List[str]) -> Dict[str, List[str]]:
    found, not_found = [], []
    for name in names:
        try:
            record = await updater.lookup_by_natural_key(WORK_ORDER_OBJECT, "Name", name)
        except (SalesforceRequestError, aiohttp.ClientError, asyncio.TimeoutError) as e:
            logging.debug(f"Lookup failed for {name}: {e}")
            record = None
        (found if record else not_found).append(name)
    return {"found": found, "not_found": not_found}


async def validate_vimeo_export(updater: Optional[RecordUpdater], file_path: str,
                                identifier_column: str = "work_order_name") -> Dict[str, Any]:
    logging.info(f"🔍 VIMEO EXPORT VALIDATION - {file_path}")
    checks = check_records(read_export_file(file_path), identifier_column)
    names = checks["work_order_names"]

    existence = {"found": [], "not_found": []}
    if updater is not None:
        logging.info("🔍 Validating Work Orders exist in Salesforce...")
        existence = await find_existing_work_orders(updater, names)

    logging.info(f"📊 VALIDATION RESULTS - records: {checks['total_records']}, unique Work Orders: {len(names)}, "
                 f"found: {len(existence['found'])}, not found: {len(existence['not_found'])}")
    for name in existence["not_found"]:
        logging.warning(f"   ❌ {name}")
    if existence["not_found"]:
        logging.warning("💡 These Work Orders will fail during sync. Create them in Salesforce, "
                        "remove them from the export or fix their names.")
    elif updater is not None:
        logging.info("✅ ALL WORK ORDERS VALIDATED - Ready to sync!")

    return {
        "valid": not existence["not_found"],
        "total_records": checks["total_records"],
        "unique_work_orders": len(names),
        "empty_identifiers": checks["empty_identifiers"],
        "found": existence["found"],
        "not_found": existence["not_found"],
    }


async def run(args) -> Dict[str, Any]:
    if args.offline:
        return await validate_vimeo_export(None, args.file, args.identifier)
    authenticator = authenticator_from_env()
    await asyncio.to_thread(authenticator.authenticate)
    async with aiohttp.ClientSession() as session:
        return await validate_vimeo_export(RecordUpdater(authenticator, session), args.file, args.identifier)


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Valida um export do Vimeo antes da sincronização.")
    parser.add_argument('file', help="Ex.: ./vimeo-export.csv")
    parser.add_argument('identifier', nargs='?', default='work_order_name', help="Coluna com o nome da Work Order")
    parser.add_argument('--offline', action='store_true', help="Apenas validações locais, sem consultar o Salesforce")
    args = parser.parse_args()

    settings.setup_logging()
    try:
        result = asyncio.run(run(args))
    except (AuthenticationError, OSError, ValueError) as e:
        logging.error(f"❌ Validation failed: {e}")
        sys.exit(1)
    sys.exit(0 if result["valid"] else 1)
