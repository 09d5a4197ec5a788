"""Shared fixtures for the fleet agent tests."""

import httpx
import pytest
from cryptography.hazmat.primitives.asymmetric import ed25519
from cryptography.hazmat.primitives.serialization import Encoding, PublicFormat

from config import ManagementSettings
from discovery.models import Announcement


@pytest.fixture
def settings() -> ManagementSettings:
    return ManagementSettings(port="8443", allow_insecure=True)


@pytest.fixture
def store_path(tmp_path):
    return tmp_path / "state" / "discovery.json"


@pytest.fixture
def keyring_dir(tmp_path):
    return tmp_path / "keyring"


@pytest.fixture
def public_key():
    return ed25519.Ed25519PrivateKey.generate().public_key()


@pytest.fixture
def public_key_pem(public_key) -> bytes:
    return public_key.public_bytes(
        encoding=Encoding.PEM,
        format=PublicFormat.SubjectPublicKeyInfo,
    )


def make_announcement(location: str, device_id: str, service_type: str = "") -> Announcement:
    return Announcement(location=location, device_id=device_id, service_type=service_type)


def mock_transport(routes: dict[str, httpx.Response | Exception], calls: list | None = None):
    """An httpx transport answering by URL path; unknown paths get 404."""

    def handler(request: httpx.Request) -> httpx.Response:
        if calls is not None:
            calls.append(str(request.url))
        result = routes.get(request.url.path)
        if isinstance(result, Exception):
            raise result
        if result is None:
            return httpx.Response(404)
        return result

    return httpx.MockTransport(handler)
