import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa

from salesforce_auth import SessionToken

INSTANCE_URL = "https://example.my.salesforce.com"
LOGIN_URL = "https://login.example.com"
API_VERSION = "v58.0"


@pytest.fixture(scope="session")
def rsa_key_pair():
    key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    private_pem = key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    ).decode("utf-8")
    return private_pem, key.public_key()


class FakeAuthenticator:
    """Autenticador em memória: cada refresh gera um novo token."""

    def __init__(self, access_token="token-1"):
        self.session = SessionToken(access_token, INSTANCE_URL)
        self.refresh_count = 0

    def auth_headers(self):
        return {"Authorization": f"Bearer {self.session.access_token}", "Content-Type": "application/json"}

    def refresh_credentials(self):
        self.refresh_count += 1
        self.session = SessionToken(f"token-{self.refresh_count + 1}", INSTANCE_URL)
        return self.session


@pytest.fixture
def fake_auth():
    return FakeAuthenticator()
