"""Tests for the stored-records HTTP API."""

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from catalog_crawler.api.deps import get_record_service
from catalog_crawler.api.record_service import READ_ONLY_WARNING, RecordService
from catalog_crawler.api.routes import records
from catalog_crawler.ingest.errors import PersistenceWriteError
from catalog_crawler.ingest.record_store import JsonFileStore

PRODUCTS = [
    {
        "category": "Lacteos",
        "subcategory": "Leche",
        "name": "Leche Gloria 1L",
        "price": 4.5,
        "image": "https://img/1.jpg",
        "link": "https://www.metro.pe/leche-gloria/p",
    },
    {
        "category": "Lacteos",
        "subcategory": "General",
        "name": "Yogurt Laive 1kg",
        "price": 8.4,
        "image": "https://img/2.jpg",
        "link": "https://www.metro.pe/yogurt-laive/p",
    },
]


class ReadOnlyStore(JsonFileStore):
    def save(self, records):
        raise PersistenceWriteError("store", "Read-only file system", path=str(self.path))


def make_client(store):
    app = FastAPI()
    app.include_router(records.router)
    service = RecordService(store)
    app.dependency_overrides[get_record_service] = lambda: service
    return TestClient(app)


@pytest.fixture
def client(tmp_path):
    return make_client(JsonFileStore(tmp_path / "metro_products.json"))


def test_replace_then_list(client):
    response = client.post("/api/guardar", json=PRODUCTS)

    assert response.status_code == 200
    assert response.json()["count"] == 2
    assert response.json()["warning"] is None

    listed = client.get("/api/productos-guardados").json()
    assert [p["name"] for p in listed] == ["Leche Gloria 1L", "Yogurt Laive 1kg"]


def test_append_deduplicates_and_reports_counts(client):
    client.post("/api/guardar", json=PRODUCTS[:1])
    updated = dict(PRODUCTS[0], price=3.9, subcategory="General")

    response = client.post("/api/agregar", json=[updated, PRODUCTS[1]])

    body = response.json()
    assert response.status_code == 200
    assert (body["total"], body["agregados"], body["actualizados"]) == (2, 1, 1)

    listed = client.get("/api/productos-guardados").json()
    assert listed[0]["price"] == 3.9
    assert listed[0]["subcategory"] == "Leche"


def test_append_accepts_legacy_field_names(client):
    legacy = {"descripcion": "Arroz Costeño 5kg", "categoria": "Abarrotes", "precio": 21.9, "imagen": ""}

    body = client.post("/api/agregar", json=[legacy, legacy]).json()

    assert (body["total"], body["agregados"]) == (1, 1)


def test_non_array_payload_is_rejected(client):
    response = client.post("/api/guardar", json={"name": "Leche"})

    assert response.status_code == 400


def test_invalid_product_is_rejected(client):
    response = client.post("/api/agregar", json=[{"name": "Leche", "price": -1}])

    assert response.status_code == 400


def test_read_only_store_falls_back_to_memory(tmp_path):
    client = make_client(ReadOnlyStore(tmp_path / "metro_products.json"))

    response = client.post("/api/agregar", json=PRODUCTS)

    assert response.status_code == 200
    assert response.json()["warning"] == READ_ONLY_WARNING
    assert len(client.get("/api/productos-guardados").json()) == 2
    assert not (tmp_path / "metro_products.json").exists()
