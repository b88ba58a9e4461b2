"""
Configuração compartilhada pelos scripts de atualização do Salesforce.

Todas as opções são lidas do ambiente (ou de um arquivo .env). Nenhuma
validação é feita além da checagem de presença em `require_settings`.
"""
import os
import sys
import logging

import urllib3
from dotenv import load_dotenv

# --- Configuration ---
# Carrega as variáveis de ambiente do arquivo .env
load_dotenv()

SF_LOGIN_URL = os.getenv("SF_LOGIN_URL", "https://login.salesforce.com")
SF_API_VERSION = os.getenv("SF_API_VERSION", "v58.0")
SF_AUTH_FLOW = os.getenv("SF_AUTH_FLOW", "jwt").lower()
SF_PRIVATE_KEY_FILE = os.getenv("SF_PRIVATE_KEY_FILE", "private.pem")
SF_REDIRECT_URI = os.getenv("SF_REDIRECT_URI", "http://localhost:3000/oauth/callback")

USE_PROXY = os.getenv("USE_PROXY", "False").lower() == "true"
PROXY_URL = os.getenv("PROXY_URL")
VERIFY_SSL = os.getenv("VERIFY_SSL", "True").lower() == "true"

# --- Batch & Export ---
BATCH_SIZE = int(os.getenv("BATCH_SIZE", "5"))
BATCH_DELAY_MS = int(os.getenv("BATCH_DELAY_MS", "100"))
EXPORT_DIR = os.getenv("EXPORT_DIR", "./exports")

# --- SASSIE ---
SASSIE_API_URL = os.getenv("SASSIE_API_URL", "https://www.cint.com/survey-api")

# --- AWS (serviço HTTP) ---
STORAGE_BUCKET = os.getenv("STORAGE_BUCKET")
AWS_REGION = os.getenv("AWS_REGION", "us-east-1")
SF_SECRET_ID = os.getenv("SF_SECRET_ID")

# --- File Paths ---
LOG_FILE_PATH = 'salesforce_updates.log'
DEBUG_LOG_FILE = 'salesforce_updates_debug.log'

TOKEN_TIMEOUT_SECONDS = 15
REQUEST_TIMEOUT_SECONDS = 30

proxies = {'http': PROXY_URL, 'https': PROXY_URL} if USE_PROXY and PROXY_URL else None
aiohttp_proxy = PROXY_URL if USE_PROXY and PROXY_URL else None

# Suprime os avisos de requisição HTTPS não verificada se VERIFY_SSL for False
if not VERIFY_SSL:
    urllib3.disable_warnings(urllib3.exceptions.InsecureRequestWarning)


def require_settings(**values):
    """Levanta ValueError listando todas as opções ausentes."""
    missing = [name for name, value in values.items() if not value]
    if missing:
        raise ValueError(f"Missing required configuration: {', '.join(missing)}")


def setup_logging(log_file=LOG_FILE_PATH, debug_log_file=DEBUG_LOG_FILE):
    logger = logging.getLogger()
    if logger.hasHandlers():
        logger.handlers.clear()
    logger.setLevel(logging.DEBUG)

    info_formatter = logging.Formatter('%(asctime)s - %(levelname)s - %(message)s')
    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(logging.INFO)
    console_handler.setFormatter(info_formatter)
    logger.addHandler(console_handler)

    if log_file:
        file_handler_info = logging.FileHandler(log_file, mode='a', encoding='utf-8')
        file_handler_info.setLevel(logging.INFO)
        file_handler_info.setFormatter(info_formatter)
        logger.addHandler(file_handler_info)

    if debug_log_file:
        debug_formatter = logging.Formatter('%(asctime)s - %(levelname)s - %(funcName)s - %(message)s')
        file_handler_debug = logging.FileHandler(debug_log_file, mode='a', encoding='utf-8')
        file_handler_debug.setLevel(logging.DEBUG)
        file_handler_debug.setFormatter(debug_formatter)
        logger.addHandler(file_handler_debug)
