import io

import openpyxl
from fastapi.testclient import TestClient

from dataviewer.main import app

client = TestClient(app)


def _upload(name, raw, content_type="application/octet-stream"):
    return client.post("/api/upload", files={"file": (name, raw, content_type)})


def test_health():
    r = client.get("/health")
    assert r.status_code == 200
    assert r.json() == {"ok": True}


def test_upload_json_tree():
    r = _upload("data.json", b'{"name": "Shop", "tags": ["a", "b"]}', "application/json")
    assert r.status_code == 200

    data = r.json()
    assert data["fileType"] == "json"
    assert data["view"] == "tree"
    assert data["parsedData"] == {"name": "Shop", "tags": ["a", "b"]}


def test_upload_json_with_bom_and_uppercase_extension():
    raw = '{"city": "Montréal"}'.encode("utf-8-sig")
    r = _upload("DATA.JSON", raw)
    assert r.status_code == 200
    assert r.json()["fileType"] == "json"
    assert r.json()["parsedData"] == {"city": "Montréal"}


def test_upload_latin1_csv():
    # Latin-1 bytes are not valid UTF-8; the encoding is detected instead
    raw = "name,city\nPaul,Montréal\n".encode("latin-1")
    r = _upload("test.csv", raw, "text/csv")
    assert r.status_code == 200

    data = r.json()
    assert data["view"] == "table"
    assert data["parsedData"] == [{"name": "Paul", "city": "Montréal"}]


def test_upload_xml_forced_array():
    raw = b"<?xml version='1.0'?><root><facility><id>1</id></facility></root>"
    r = _upload("sites.xml", raw, "application/xml")
    assert r.status_code == 200
    assert r.json()["parsedData"] == {"root": {"facility": [{"id": 1}]}}


def test_upload_xlsx_table():
    wb = openpyxl.Workbook()
    ws = wb.active
    ws.append(["name", "qty"])
    ws.append(["bolt", 12])
    buf = io.BytesIO()
    wb.save(buf)

    r = _upload("stock.xlsx", buf.getvalue())
    assert r.status_code == 200

    data = r.json()
    assert data["fileType"] == "xlsx"
    assert data["view"] == "table"
    assert data["parsedData"] == [{"name": "bolt", "qty": "12"}]


def test_parse_error_is_still_200():
    r = _upload("broken.json", b'{"a": ')
    assert r.status_code == 200

    data = r.json()
    assert data["view"] == "error"
    assert data["parsedData"]["error"] is True
    assert data["parsedData"]["message"].startswith("Failed to parse JSON")
    assert data["parsedData"]["originalDataPreview"] == '{"a": '


def test_spreadsheet_error_has_no_preview():
    r = _upload("broken.xlsx", b"definitely not a workbook")
    assert r.status_code == 200

    parsed = r.json()["parsedData"]
    assert parsed["error"] is True
    assert parsed["message"].startswith("Failed to parse Excel file")
    assert "originalDataPreview" not in parsed


def test_unsupported_extension():
    r = _upload("notes.txt", b"hello")
    assert r.status_code == 400
    assert r.json() == {
        "parsedData": {
            "error": True,
            "message": "Unsupported file format. Please upload JSON, XML, CSV, or Excel files.",
        }
    }


def test_missing_extension():
    r = _upload("README", b"hello")
    assert r.status_code == 400
    assert r.json()["parsedData"]["error"] is True


def test_wrong_content_type():
    r = client.post("/api/upload", content=b"{}", headers={"content-type": "application/json"})
    assert r.status_code == 400
    assert r.json()["parsedData"]["message"] == "Content type must be multipart/form-data"


def test_missing_file():
    r = client.post("/api/upload", files={"attachment": ("data.json", b"{}", "application/json")})
    assert r.status_code == 400
    assert r.json()["parsedData"]["message"] == "No file uploaded"


def test_upload_too_large(monkeypatch):
    monkeypatch.setattr("dataviewer.main.MAX_UPLOAD_BYTES", 8)
    r = _upload("big.csv", b"a,b\n1,2\n3,4\n")
    assert r.status_code == 413
    assert r.json()["parsedData"]["error"] is True


def test_deeply_nested_json_is_a_parse_error():
    depth = 400
    r = _upload("deep.json", ("[" * depth + "]" * depth).encode())
    assert r.status_code == 200

    data = r.json()
    assert data["view"] == "error"
    assert "Nesting exceeds" in data["parsedData"]["message"]


def test_deeply_nested_xml_is_a_parse_error():
    depth = 3000
    r = _upload("deep.xml", ("<a>" * depth + "</a>" * depth).encode())
    assert r.status_code == 200
    assert r.json()["view"] == "error"


def test_nesting_at_the_limit_still_renders():
    depth = 200
    r = _upload("nested.json", ("[" * depth + "]" * depth).encode())
    assert r.status_code == 200
    assert r.json()["view"] == "tree"


def test_lone_surrogate_escape_is_a_parse_error():
    r = _upload("odd.json", b'["\\ud800"]')
    assert r.status_code == 200

    data = r.json()
    assert data["view"] == "error"
    assert "surrogate" in data["parsedData"]["message"]
    assert data["parsedData"]["originalDataPreview"] == '["\\ud800"]'
