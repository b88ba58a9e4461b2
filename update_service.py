"""
Serviço HTTP para disparar atualizações no Salesforce sem interação.

POST /updates
    {"updates": [...] | {"<record_id>": {...}}, "object_type": "Account", "options": {...}}

Autenticação via JWT (ou password). A chave privada pode vir do AWS Secrets
Manager (SF_SECRET_ID). Os CSVs de resultado são gravados em um diretório
temporário e enviados ao S3 quando STORAGE_BUCKET está definido.
"""
import os
import json
import time
import asyncio
import logging
import tempfile
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional

import aiohttp
import boto3
from aiohttp import web

import settings
from record_updater import RecordUpdater
from salesforce_auth import authenticator_from_env
from update_workflow import build_update_requests, execute_update_workflow

EXPORT_TMP_DIR = os.path.join(tempfile.gettempdir(), "exports")
STORAGE_PREFIX = "salesforce-updates"

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "POST, OPTIONS",
    "Access-Control-Allow-Headers": "Content-Type",
}

RunUpdates = Callable[[Any, Optional[str], Dict[str, Any]], Awaitable[Dict[str, Any]]]
RUN_UPDATES = web.AppKey("run_updates", object)
STORAGE_BUCKET = web.AppKey("storage_bucket", object)


def load_private_key(secret_id: Optional[str] = None, region_name: Optional[str] = None) -> str:
    """
    Lê a chave privada do Secrets Manager. O SecretString pode ser o próprio
    PEM ou um JSON com a chave em "SF_PRIVATE_KEY".
    """
    sid = secret_id or settings.SF_SECRET_ID
    client = boto3.client("secretsmanager", region_name=region_name or settings.AWS_REGION)
    secret_string = client.get_secret_value(SecretId=sid).get("SecretString")
    if not secret_string:
        raise ValueError(f"Secret {sid!r} does not contain a SecretString")
    if secret_string.lstrip().startswith("{"):
        try:
            secret_string = json.loads(secret_string)["SF_PRIVATE_KEY"]
        except (ValueError, KeyError) as e:
            raise ValueError(f"Secret {sid!r} must be a PEM or a JSON object with SF_PRIVATE_KEY") from e
    return secret_string


def upload_exports(files: List[Dict[str, Any]], bucket: str, region_name: Optional[str] = None) -> List[str]:
    s3 = boto3.client("s3", region_name=region_name or settings.AWS_REGION)
    day = datetime.now(timezone.utc).strftime("%Y-%m-%d")
    keys = []
    for exported in files:
        key = f"{STORAGE_PREFIX}/{day}/{os.path.basename(exported['path'])}"
        s3.upload_file(exported["path"], bucket, key)
        logging.info(f"✅ Uploaded s3://{bucket}/{key}")
        keys.append(key)
    return keys


async def run_updates(updates: Any, object_type: Optional[str], options: Dict[str, Any]) -> Dict[str, Any]:
    private_key = None
    if settings.SF_SECRET_ID:
        logging.info("📥 Loading private key from Secrets Manager...")
        private_key = await asyncio.to_thread(load_private_key)

    # O fluxo web server exige um navegador; o serviço usa JWT por padrão
    flow = "password" if settings.SF_AUTH_FLOW == "password" else "jwt"
    authenticator = authenticator_from_env(flow, private_key=private_key)
    await asyncio.to_thread(authenticator.authenticate)

    async with aiohttp.ClientSession() as session:
        return await execute_update_workflow(
            RecordUpdater(authenticator, session), updates, object_type,
            batch_size=int(options.get("batch_size", settings.BATCH_SIZE)),
            delay_ms=int(options.get("delay_ms", settings.BATCH_DELAY_MS)),
            export_options={
                "export_to_csv": options.get("export_to_csv", True),
                "output_dir": EXPORT_TMP_DIR,
                "base_filename": f"update_{int(time.time() * 1000)}",
            },
        )


def validate_options(options: Any) -> Dict[str, Any]:
    """Valida `options` do corpo da requisição antes de autenticar."""
    if options is None:
        return {}
    if not isinstance(options, dict):
        raise ValueError('"options" must be an object')
    for name, minimum in (("batch_size", 1), ("delay_ms", 0)):
        if name not in options:
            continue
        value = options[name]
        message = f'"options.{name}" must be an integer (got {value!r})'
        if isinstance(value, bool) or not isinstance(value, (int, str)):
            raise ValueError(message)
        try:
            number = int(value)
        except ValueError:
            raise ValueError(message) from None
        if number < minimum:
            raise ValueError(f'"options.{name}" must be at least {minimum} (got {value!r})')
    return options


def _json_response(payload: Dict[str, Any], status: int = 200) -> web.Response:
    return web.json_response(payload, status=status, headers=CORS_HEADERS)


async def handle_updates(request: web.Request) -> web.Response:
    if request.method == "OPTIONS":
        return web.Response(status=200, headers=CORS_HEADERS)
    if request.method != "POST":
        return _json_response({"error": "Method not allowed",
                               "message": "This endpoint only accepts POST requests"}, status=405)

    start_time = time.time()
    logging.info("🚀 Salesforce update request received")
    try:
        body = await request.json()
    except ValueError:
        body = None
    updates = body.get("updates") if isinstance(body, dict) else None
    object_type = body.get("object_type") if isinstance(body, dict) else None
    try:
        if not updates:
            raise ValueError('Request must include "updates" array or object')
        build_update_requests(updates, object_type)
        options = validate_options(body.get("options"))
    except (ValueError, KeyError) as e:
        return _json_response({"error": "Invalid request", "message": str(e)}, status=400)

    try:
        workflow = await request.app[RUN_UPDATES](updates, object_type, options)
        results, export = workflow["results"], workflow.get("export")

        uploaded = []
        bucket = request.app[STORAGE_BUCKET]
        if bucket and export and export["files"]:
            logging.info("📤 Uploading files to S3...")
            uploaded = await asyncio.to_thread(upload_exports, export["files"], bucket)
    except Exception as e:
        logging.exception("❌ Update request failed")
        return _json_response({
            "success": False,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "duration": f"{int((time.time() - start_time) * 1000)}ms",
            "error": str(e),
        }, status=500)

    duration = int((time.time() - start_time) * 1000)
    logging.info(f"✅ Update completed in {duration}ms")
    return _json_response({
        "success": True,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "duration": f"{duration}ms",
        "summary": results.summary(),
        "files": [{"type": f["type"], "records": f["records"]} for f in export["files"]] if export else None,
        "uploaded": uploaded,
    })


def create_app(run_updates: RunUpdates = run_updates, storage_bucket: Optional[str] = settings.STORAGE_BUCKET
               ) -> web.Application:
    app = web.Application()
    app[RUN_UPDATES] = run_updates
    app[STORAGE_BUCKET] = storage_bucket
    app.router.add_route("*", "/updates", handle_updates)
    return app


if __name__ == "__main__":
    settings.setup_logging()
    web.run_app(create_app(), port=int(os.getenv("PORT", "8080")))
