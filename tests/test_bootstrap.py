from services import bootstrap
from shared.config import LARGE_OPERATION_TIMEOUT


class _ClientSpy:
    def __init__(self, **kwargs):
        self.kwargs = kwargs


def test_remote_qdrant_client_gets_bulk_timeout(monkeypatch):
    monkeypatch.setattr(bootstrap, "AsyncQdrantClient", _ClientSpy)
    monkeypatch.setattr(bootstrap, "QDRANT_URL", "")

    client = bootstrap.create_qdrant_client()

    assert client.kwargs["timeout"] >= LARGE_OPERATION_TIMEOUT


def test_qdrant_url_client_gets_bulk_timeout(monkeypatch):
    monkeypatch.setattr(bootstrap, "AsyncQdrantClient", _ClientSpy)
    monkeypatch.setattr(bootstrap, "QDRANT_URL", "https://qdrant.test:6333")

    client = bootstrap.create_qdrant_client(timeout=90.5)

    assert client.kwargs["url"] == "https://qdrant.test:6333"
    assert client.kwargs["timeout"] == 91


def test_shared_vector_breaker():
    services = bootstrap.build_services(qdrant_client=_ClientSpy(location=":memory:"))

    assert services.embedder.breaker is services.vector_store.breaker
    assert services.crm.breaker is not services.embedder.breaker
