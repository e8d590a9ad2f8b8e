"""
Tests for the HTTP API.

The import service is replaced with one bound to the in-memory demo database.
"""

import pytest
from fastapi.testclient import TestClient

from table_importer.api.dependencies import get_import_service, job_storage
from table_importer.domain.imports.service import ImportService
from table_importer.main import app

client = TestClient(app)


@pytest.fixture
def service(engine):
    service = ImportService(engine)
    app.dependency_overrides[get_import_service] = lambda: service
    yield service
    app.dependency_overrides.clear()
    service.shutdown()


def _mapping(path, bindings=None, kind="insert"):
    return {
        "table": "person",
        "kind": kind,
        "bindings": bindings if bindings is not None else [{"column": "name", "file_column": "name"}],
        "options": {"file": str(path), "separator": "tab"},
    }


def _wait(job_id):
    job_storage[job_id].future.result(timeout=10)
    return client.get(f"/api/imports/{job_id}").json()


def test_root_and_health():
    assert client.get("/").json()["message"] == "Table Importer API"
    assert client.get("/health").json()["status"] == "healthy"


def test_list_tables(service):
    response = client.get("/api/tables")

    assert response.status_code == 200
    tables = {item["table_name"]: item["row_count"] for item in response.json()["tables"]}
    assert tables == {"country": 2, "measurement": 0, "person": 0}


def test_table_columns(service):
    response = client.get("/api/tables/person/columns")

    assert response.status_code == 200
    columns = {column["name"]: column for column in response.json()["columns"]}
    assert columns["name"]["can_be_null"] is False
    assert columns["country_id"]["is_foreign_key"] is True
    assert columns["country_id"]["foreign_key_table"] == "country"
    assert columns["height"]["is_decimal"] is True


def test_unknown_table_is_404(service):
    assert client.get("/api/tables/nope/columns").status_code == 404


def test_example_values(service):
    response = client.get("/api/tables/country/columns/name/examples", params={"limit": 5})

    assert response.status_code == 200
    assert response.json()["values"] == ["France", "Germany"]
    assert client.get("/api/tables/country/columns/code/examples").status_code == 404


def test_validate_reports_first_problem(service, tmp_path):
    response = client.post(
        "/api/mappings/validate",
        json=_mapping(tmp_path / "in.txt", bindings=[{"column": "note", "file_column": "note"}]),
    )

    assert response.status_code == 200
    body = response.json()
    assert body["valid"] is False
    assert body["error"]["code"] == "missing_required_column"
    assert body["error"]["column"] == "name"


def test_validate_accepts_valid_mapping(service, tmp_path):
    response = client.post("/api/mappings/validate", json=_mapping(tmp_path / "in.txt"))

    assert response.json() == {"success": True, "valid": True, "error": None}


def test_unknown_column_is_422(service, tmp_path):
    response = client.post(
        "/api/mappings/validate",
        json=_mapping(tmp_path / "in.txt", bindings=[{"column": "nickname", "file_column": "nick"}]),
    )

    assert response.status_code == 422


def test_conflicting_value_rules_are_422(service, tmp_path):
    bindings = [{"column": "name", "file_column": "name", "constant": "x", "regex": "\\w+"}]

    response = client.post("/api/mappings/validate", json=_mapping(tmp_path / "in.txt", bindings=bindings))

    assert response.status_code == 422


def test_export_and_import_mapping_document(service, tmp_path):
    bindings = [
        {"column": "name", "file_column": "name"},
        {"column": "country_id", "file_column": "country", "condition": {"table": "country", "column": "name"}},
        {"column": "created_on", "date_rule": {"kind": "now"}},
    ]

    exported = client.post("/api/mappings/export", json=_mapping(tmp_path / "in.txt", bindings=bindings))

    assert exported.status_code == 200
    assert exported.headers["content-type"].startswith("application/xml")
    assert b"<reference-mapping>" in exported.content

    imported = client.post("/api/mappings/import", json={"table": "person", "xml": exported.text})

    assert imported.status_code == 200
    mapping = imported.json()["mapping"]
    assert mapping["options"]["file"] == str(tmp_path / "in.txt")
    assert [binding["column"] for binding in mapping["bindings"]] == ["name", "country_id", "created_on"]
    assert mapping["bindings"][1]["condition"] == {"table": "country", "column": "name"}
    assert mapping["bindings"][2]["date_rule"]["kind"] == "now"


def test_import_invalid_document_is_422(service):
    response = client.post("/api/mappings/import", json={"table": "person", "xml": "<column-mapping>"})

    assert response.status_code == 422


def test_preview_file(service, write_input):
    path = write_input("name,height\nAlice,1.70\nBob,1.80\n")

    response = client.post(
        "/api/files/preview", json={"options": {"file": str(path), "separator": "comma"}, "rows": 1}
    )

    assert response.status_code == 200
    assert response.json()["headers"] == ["name", "height"]
    assert response.json()["rows"] == [{"name": "Alice", "height": "1.70"}]


def test_preview_missing_file_is_400(service, tmp_path):
    response = client.post("/api/files/preview", json={"options": {"file": str(tmp_path / "missing.txt")}})

    assert response.status_code == 400


def test_import_then_undo(service, write_input, engine):
    path = write_input("name\nAlice\nBob\n")

    started = client.post("/api/imports", json={"mapping": _mapping(path)})

    assert started.status_code == 202
    status = _wait(started.json()["job_id"])
    assert status["status"] == "succeeded"
    assert status["inserted"] == 2
    assert status["generated_ids"] == [1, 2]

    undo = client.post("/api/tables/person/undo")

    assert undo.status_code == 200
    assert undo.json()["success"] is True
    assert undo.json()["deleted"] == 2


def test_import_collects_row_errors_when_continuing(service, write_input):
    path = write_input("name\tborn\nAlice\tbad\nBob\t2001-01-01\n")
    bindings = [
        {"column": "name", "file_column": "name"},
        {"column": "born", "file_column": "born", "date_rule": {"kind": "pattern", "pattern": "yyyy-MM-dd"}},
    ]

    started = client.post(
        "/api/imports", json={"mapping": _mapping(path, bindings=bindings), "continue_on_error": True}
    )
    status = _wait(started.json()["job_id"])

    assert status["status"] == "succeeded"
    assert status["inserted"] == 1
    assert len(status["errors"]) == 1
    assert status["errors"][0].startswith("Row 1:")


def test_import_stops_on_first_error_by_default(service, write_input):
    path = write_input("name\tborn\nAlice\tbad\nBob\t2001-01-01\n")
    bindings = [
        {"column": "name", "file_column": "name"},
        {"column": "born", "file_column": "born", "date_rule": {"kind": "pattern", "pattern": "yyyy-MM-dd"}},
    ]

    started = client.post("/api/imports", json={"mapping": _mapping(path, bindings=bindings)})
    status = _wait(started.json()["job_id"])

    assert status["status"] == "failed"
    assert status["inserted"] == 0
    assert "Unparseable date" in status["error"]


def test_import_invalid_mapping_is_422(service, tmp_path):
    response = client.post(
        "/api/imports",
        json={"mapping": _mapping(tmp_path / "in.txt", bindings=[{"column": "note", "file_column": "note"}])},
    )

    assert response.status_code == 422
    assert response.json()["error"]["code"] == "missing_required_column"


def test_import_into_unknown_table_is_404(service, tmp_path):
    mapping = _mapping(tmp_path / "in.txt")
    mapping["table"] = "nope"

    assert client.post("/api/imports", json={"mapping": mapping}).status_code == 404


def test_unknown_job_is_404(service):
    assert client.get("/api/imports/does-not-exist").status_code == 404
    assert client.post("/api/imports/does-not-exist/cancel").status_code == 404
