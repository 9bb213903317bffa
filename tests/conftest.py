# tests/conftest.py
from datetime import datetime

import pytest
from fastapi.testclient import TestClient

from voice_store import schemas
from voice_store.adapters.embedded import EmbeddedDatabaseAdapter
from voice_store.adapters.remote import RemoteDatabaseAdapter
from voice_store.main import create_app
from voice_store.services.demo_config_service import DemoConfigService


@pytest.fixture
def embedded():
    store = EmbeddedDatabaseAdapter()
    yield store
    store.close()


@pytest.fixture
def api_client(embedded):
    """TestClient over the service; the lifespan is not run, so nothing is seeded."""
    with_app = create_app(embedded)
    client = TestClient(with_app)
    yield client
    client.close()


@pytest.fixture(params=["embedded", "remote"])
def adapter(request):
    """The same contract tests run against both backends."""
    backing = EmbeddedDatabaseAdapter()
    if request.param == "embedded":
        yield backing
    else:
        client = TestClient(create_app(backing))
        remote = RemoteDatabaseAdapter(client=client)
        yield remote
        remote.close()
        client.close()
    backing.close()


@pytest.fixture
def service(adapter):
    return DemoConfigService(adapter)


@pytest.fixture
def image_path(tmp_path):
    return str(tmp_path / "voice_store.db")


@pytest.fixture
def patient_id(adapter):
    return adapter.create_patient(schemas.PatientCreate(
        phone_number="+15550001111",
        parent_name="Maria Lopez",
        address=schemas.Address(street="12 Elm St", city="Springfield", state="IL", zip="62701"),
    ))


@pytest.fixture
def conversation_id(adapter, patient_id):
    return adapter.create_conversation(schemas.ConversationCreate(
        patient_id=patient_id,
        phone_number="+15550001111",
        direction="outbound",
        provider="openai",
        started_at=datetime(2025, 3, 10, 9, 0, 0),
    ))
