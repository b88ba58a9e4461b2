"""
Utilitários de inspeção da org:
  describe <objeto>       campos atualizáveis e valores de picklist
  list <objeto>           registros mais recentes
  relationships <objeto>  campos de lookup e o nome do relacionamento (__r) para SOQL
"""
import sys
import asyncio
import logging
import argparse
from typing import Any, Dict, List

import aiohttp

import settings
from record_updater import RecordUpdater, SalesforceRequestError
from salesforce_auth import AuthenticationError, authenticator_from_env


def updateable_fields(metadata: Dict[str, Any]) -> List[Dict[str, Any]]:
    fields = [f for f in metadata.get("fields", []) if f.get("updateable")]
    fields.sort(key=lambda f: f.get("label", "").lower())
    return [
        {
            "name": f["name"],
            "label": f.get("label"),
            "type": f.get("type"),
            "picklist_values": [v["value"] for v in f.get("picklistValues", []) if v.get("active")],
        }
        for f in fields
    ]


def relationship_fields(metadata: Dict[str, Any]) -> List[Dict[str, Any]]:
    return [
        {"name": f["name"], "relationship_name": f.get("relationshipName"), "reference_to": f.get("referenceTo", [])}
        for f in metadata.get("fields", [])
        if f.get("type") == "reference" and f.get("relationshipName")
    ]


async def describe_object(updater: RecordUpdater, object_type: str) -> List[Dict[str, Any]]:
    metadata = await updater.describe(object_type)
    fields = updateable_fields(metadata)
    logging.info(f"📋 {metadata.get('label')} ({metadata.get('name')}) - updateable: {metadata.get('updateable')}, "
                 f"total fields: {len(metadata.get('fields', []))}")
    logging.info(f"📝 Found {len(fields)} updateable fields:")
    for index, field in enumerate(fields, start=1):
        logging.info(f"{index:>3}. {field['label']:<40} | API: {field['name']:<40} | Type: {field['type']}")
        if field["type"] == "picklist" and field["picklist_values"]:
            logging.info(f"       Values: {', '.join(field['picklist_values'])}")
    return fields


async def list_recent_records(updater: RecordUpdater, object_type: str, limit: int = 10) -> List[Dict[str, Any]]:
    records = await updater.query(f"SELECT Id, Name, CreatedDate FROM {object_type} "
                                  f"ORDER BY CreatedDate DESC LIMIT {int(limit)}")
    if not records:
        logging.warning(f"⚠️  No {object_type} records found")
    for index, record in enumerate(records, start=1):
        logging.info(f"{index:>3}. {record.get('Name')} | ID: {record['Id']} | Created: {record.get('CreatedDate')}")
    return records


async def list_relationships(updater: RecordUpdater, object_type: str) -> List[Dict[str, Any]]:
    fields = relationship_fields(await updater.describe(object_type))
    for field in fields:
        logging.info(f"🔗 {field['name']} -> {', '.join(field['reference_to'])} "
                     f"(SOQL: {field['relationship_name']}.<Field>)")
    return fields


COMMANDS = {
    "describe": describe_object,
    "list": list_recent_records,
    "relationships": list_relationships,
}


async def run(args):
    authenticator = authenticator_from_env()
    await asyncio.to_thread(authenticator.authenticate)
    async with aiohttp.ClientSession() as session:
        updater = RecordUpdater(authenticator, session)
        if args.command == "list":
            return await list_recent_records(updater, args.object_type, args.limit)
        return await COMMANDS[args.command](updater, args.object_type)


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Inspeciona objetos da org Salesforce.")
    parser.add_argument('command', choices=list(COMMANDS))
    parser.add_argument('object_type', nargs='?', default='Work_Order__c')
    parser.add_argument('--limit', type=int, default=10, help="Quantidade de registros para o comando list")
    args = parser.parse_args()

    settings.setup_logging()
    try:
        asyncio.run(run(args))
    except (AuthenticationError, SalesforceRequestError, OSError, ValueError) as e:
        logging.error(f"❌ {args.command} failed: {e}")
        sys.exit(1)
