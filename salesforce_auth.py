"""
Autenticação no Salesforce via OAuth2.

Três fluxos intercambiáveis, todos produzindo um `SessionToken`
(access token + instance URL):
- Username-Password (resource-owner password grant)
- JWT Bearer Flow (asserção RS256 assinada com certificado)
- Web Server Flow (authorization code, com listener local para o callback)
"""
import os
import time
import asyncio
import logging
import webbrowser
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, Optional
from urllib.parse import urlencode

import jwt
import requests
from aiohttp import web
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.backends import default_backend

import settings

JWT_BEARER_GRANT = "urn:ietf:params:oauth:grant-type:jwt-bearer"
JWT_LIFETIME_SECONDS = 300
CALLBACK_PORT = 3000
INTERACTIVE_TIMEOUT_SECONDS = 300


class AuthenticationError(ConnectionError):
    """Falha ao obter um token. `reason` distingue a causa."""

    def __init__(self, message: str, reason: str = "http_error", status: Optional[int] = None,
                 description: Optional[str] = None):
        super().__init__(message)
        self.reason = reason
        self.status = status
        self.description = description


@dataclass(frozen=True)
class Credentials:
    client_id: str
    login_url: str = settings.SF_LOGIN_URL
    username: Optional[str] = None
    client_secret: Optional[str] = None
    password: Optional[str] = None
    security_token: str = ""
    private_key: Optional[str] = None
    private_key_path: Optional[str] = None
    redirect_uri: str = settings.SF_REDIRECT_URI

    @property
    def token_url(self) -> str:
        return f"{self.login_url.rstrip('/')}/services/oauth2/token"


@dataclass(frozen=True)
class SessionToken:
    access_token: str
    instance_url: str
    refresh_token: Optional[str] = None
    issued_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class SalesforceAuthenticator:
    """
    Gerencia o ciclo de vida do token de acesso do Salesforce.
    As subclasses definem apenas os parâmetros do grant.
    """
    flow = None

    def __init__(self, credentials: Credentials, api_version: str = settings.SF_API_VERSION,
                 timeout: int = settings.TOKEN_TIMEOUT_SECONDS):
        self.credentials = credentials
        self.api_version = api_version
        self.timeout = timeout
        self.session: Optional[SessionToken] = None

    def _token_request_data(self) -> Dict[str, str]:
        raise NotImplementedError

    def authenticate(self) -> SessionToken:
        data = self._token_request_data()
        self.session = self._request_token(data)
        return self.session

    def _request_token(self, data: Dict[str, str]) -> SessionToken:
        headers = {"Content-Type": "application/x-www-form-urlencoded"}
        token_url = self.credentials.token_url
        logging.info(f"[AUTH] Authenticating with Salesforce ({self.flow} flow)...")
        logging.debug(f"Token URL: {token_url}")
        try:
            response = requests.post(token_url, headers=headers, data=data, proxies=settings.proxies,
                                     verify=settings.VERIFY_SSL, timeout=self.timeout)
        except requests.exceptions.RequestException as e:
            logging.error(f"❌ No response from Salesforce. Check network connectivity and login URL: {e}")
            raise AuthenticationError(f"Authentication failed: {e}", reason="network") from e

        if not response.ok:
            raise self._classify_failure(response)

        auth_data = response.json()
        session = SessionToken(
            access_token=auth_data["access_token"],
            instance_url=auth_data["instance_url"],
            refresh_token=auth_data.get("refresh_token"),
        )
        logging.info(f"✅ Authentication successful. Instance URL: {session.instance_url}")
        return session

    def _classify_failure(self, response: requests.Response) -> AuthenticationError:
        try:
            body = response.json()
        except ValueError:
            body = {}
        error = body.get("error", "")
        description = body.get("error_description") or response.text
        logging.error(f"❌ Authentication failed: HTTP {response.status_code} - {error}: {description}")

        if error == "invalid_grant":
            reason = "invalid_grant"
            logging.error("   Verify the username has API access and is pre-authorized for the Connected App.")
        elif error in ("invalid_client_id", "invalid_client"):
            reason = "invalid_client"
            logging.error("   Consumer Key (Client ID) or secret is incorrect. Verify the Connected App settings.")
        else:
            reason = "http_error"
        return AuthenticationError(f"Authentication failed: {description}", reason=reason,
                                   status=response.status_code, description=description)

    def auth_headers(self) -> Dict[str, str]:
        if not self.session:
            raise RuntimeError("Not authenticated. Call authenticate() first.")
        return {
            "Authorization": f"Bearer {self.session.access_token}",
            "Content-Type": "application/json",
        }

    def validate_session(self) -> bool:
        """Verificação barata para saber se o token atual ainda é aceito."""
        if not self.session:
            return False
        check_url = f"{self.session.instance_url}/services/data/{self.api_version}/sobjects/"
        try:
            response = requests.get(check_url, headers=self.auth_headers(), proxies=settings.proxies,
                                    verify=settings.VERIFY_SSL, timeout=self.timeout)
        except requests.exceptions.RequestException as e:
            logging.debug(f"Session check failed: {e}")
            return False
        if not response.ok:
            logging.info("Session expired, re-authentication required")
            return False
        return True

    def ensure_authenticated(self) -> SessionToken:
        if not self.validate_session():
            self.authenticate()
        return self.session

    def refresh_credentials(self) -> SessionToken:
        logging.info("🔄 Refreshing expired access token...")
        return self.authenticate()


class PasswordAuthenticator(SalesforceAuthenticator):
    flow = "password"

    def _token_request_data(self) -> Dict[str, str]:
        c = self.credentials
        settings.require_settings(SF_CLIENT_ID=c.client_id, SF_CLIENT_SECRET=c.client_secret,
                                  SF_USERNAME=c.username, SF_PASSWORD=c.password)
        return {
            "grant_type": "password",
            "client_id": c.client_id,
            "client_secret": c.client_secret,
            "username": c.username,
            "password": f"{c.password}{c.security_token or ''}",
        }


class JWTAuthenticator(SalesforceAuthenticator):
    flow = "jwt"

    def load_private_key(self):
        c = self.credentials
        if c.private_key:
            key_bytes = c.private_key.encode("utf-8")
        elif c.private_key_path:
            try:
                with open(c.private_key_path, "rb") as key_file:
                    key_bytes = key_file.read()
            except FileNotFoundError:
                logging.error(f"❌ Authentication error: Private key file not found at '{c.private_key_path}'")
                raise
        else:
            raise AuthenticationError("No private key provided. Set either private_key or private_key_path.",
                                      reason="configuration")
        return serialization.load_pem_private_key(key_bytes, password=None, backend=default_backend())

    def create_assertion(self) -> str:
        c = self.credentials
        settings.require_settings(SF_CLIENT_ID=c.client_id, SF_USERNAME=c.username)
        payload = {
            "iss": c.client_id,
            "sub": c.username,
            "aud": c.login_url,
            "exp": int(time.time()) + JWT_LIFETIME_SECONDS,
        }
        logging.debug(f"JWT claims: iss={c.client_id[:25]}..., sub={c.username}, aud={c.login_url}")
        return jwt.encode(payload, self.load_private_key(), algorithm="RS256")

    def _token_request_data(self) -> Dict[str, str]:
        return {"grant_type": JWT_BEARER_GRANT, "assertion": self.create_assertion()}


class WebServerAuthenticator(SalesforceAuthenticator):
    """
    Authorization Code flow. Sem refresh token, `authenticate()` abre o fluxo
    interativo e deve ser chamado fora de um event loop em execução.
    """
    flow = "webserver"

    def authorization_url(self) -> str:
        params = {
            "response_type": "code",
            "client_id": self.credentials.client_id,
            "redirect_uri": self.credentials.redirect_uri,
            "scope": "api refresh_token",
        }
        return f"{self.credentials.login_url.rstrip('/')}/services/oauth2/authorize?{urlencode(params)}"

    def exchange_code(self, code: str) -> SessionToken:
        c = self.credentials
        logging.info("🔐 Exchanging authorization code for access token...")
        self.session = self._request_token({
            "grant_type": "authorization_code",
            "client_id": c.client_id,
            "client_secret": c.client_secret,
            "redirect_uri": c.redirect_uri,
            "code": code,
        })
        return self.session

    def refresh_access_token(self) -> SessionToken:
        if not self.session or not self.session.refresh_token:
            raise AuthenticationError("No refresh token available. Need to re-authenticate.",
                                      reason="configuration")
        c = self.credentials
        refresh_token = self.session.refresh_token
        refreshed = self._request_token({
            "grant_type": "refresh_token",
            "client_id": c.client_id,
            "client_secret": c.client_secret,
            "refresh_token": refresh_token,
        })
        # O Salesforce não devolve um novo refresh token nesse grant
        self.session = SessionToken(refreshed.access_token, refreshed.instance_url,
                                    refreshed.refresh_token or refresh_token)
        return self.session

    def authenticate(self) -> SessionToken:
        if self.session and self.session.refresh_token:
            return self.refresh_access_token()
        return asyncio.run(self.authenticate_interactive())

    async def authenticate_interactive(self, port: int = CALLBACK_PORT,
                                       timeout: int = INTERACTIVE_TIMEOUT_SECONDS) -> SessionToken:
        loop = asyncio.get_running_loop()
        code_future = loop.create_future()

        async def callback(request):
            error = request.query.get("error")
            code = request.query.get("code")
            if error:
                if not code_future.done():
                    code_future.set_exception(AuthenticationError(error, reason="invalid_grant"))
                return web.Response(text=f"<h1>Authentication Failed</h1><p>{error}</p>", content_type="text/html")
            if not code:
                if not code_future.done():
                    code_future.set_exception(AuthenticationError("No authorization code received",
                                                                  reason="invalid_grant"))
                return web.Response(text="<h1>Error</h1><p>No authorization code received</p>",
                                    content_type="text/html")
            if not code_future.done():
                code_future.set_result(code)
            return web.Response(text="<h1>Success!</h1><p>You can close this window.</p>",
                                content_type="text/html")

        app = web.Application()
        app.router.add_get("/oauth/callback", callback)
        runner = web.AppRunner(app)
        await runner.setup()
        site = web.TCPSite(runner, "localhost", port)
        await site.start()
        try:
            auth_url = self.authorization_url()
            logging.info("Please open this URL in your browser to authenticate:")
            logging.info(auth_url)
            webbrowser.open(auth_url)
            try:
                code = await asyncio.wait_for(code_future, timeout=timeout)
            except asyncio.TimeoutError as e:
                raise AuthenticationError("Authentication timeout", reason="network") from e
            return await asyncio.to_thread(self.exchange_code, code)
        finally:
            await runner.cleanup()


AUTHENTICATORS = {
    "password": PasswordAuthenticator,
    "jwt": JWTAuthenticator,
    "webserver": WebServerAuthenticator,
}


def create_authenticator(credentials: Credentials, flow: str = "jwt") -> SalesforceAuthenticator:
    try:
        authenticator_class = AUTHENTICATORS[flow.lower()]
    except KeyError:
        raise ValueError(f"Unknown auth flow {flow!r}. Use one of: {', '.join(AUTHENTICATORS)}") from None
    return authenticator_class(credentials)


def obtain_session(credentials: Credentials, flow: str = "jwt") -> SessionToken:
    return create_authenticator(credentials, flow).authenticate()


def credentials_from_env(private_key: Optional[str] = None) -> Credentials:
    return Credentials(
        client_id=os.getenv("SF_CLIENT_ID"),
        client_secret=os.getenv("SF_CLIENT_SECRET"),
        username=os.getenv("SF_USERNAME"),
        password=os.getenv("SF_PASSWORD"),
        security_token=os.getenv("SF_SECURITY_TOKEN", ""),
        private_key=private_key or os.getenv("SF_PRIVATE_KEY"),
        private_key_path=os.getenv("SF_PRIVATE_KEY_FILE", settings.SF_PRIVATE_KEY_FILE),
        login_url=os.getenv("SF_LOGIN_URL", settings.SF_LOGIN_URL),
        redirect_uri=os.getenv("SF_REDIRECT_URI", settings.SF_REDIRECT_URI),
    )


def authenticator_from_env(flow: Optional[str] = None, private_key: Optional[str] = None) -> SalesforceAuthenticator:
    return create_authenticator(credentials_from_env(private_key), flow or os.getenv("SF_AUTH_FLOW", settings.SF_AUTH_FLOW))
