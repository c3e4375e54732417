"""HTTP surface of bulk status update, export, operation lookup and student import."""
import csv
import io
import uuid

import pytest
from httpx import AsyncClient
from openpyxl import load_workbook

from app.api.v1.student_import.schemas import STUDENT_IMPORT_COLUMNS
from app.auth.dependencies import get_current_user
from app.auth.schemas import CurrentUser
from app.main import app


@pytest.mark.asyncio
async def test_bulk_status_update_endpoint(client: AsyncClient, make_student) -> None:
    a = await make_student("ADM001", "Asha", "Rao")
    missing = uuid.uuid4()

    response = await client.post(
        "/api/v1/students/bulk/status",
        json={"student_ids": [str(a), str(missing)], "new_status": "graduated"},
    )
    assert response.status_code == 201
    body = response.json()
    assert body["operation_type"] == "update_status"
    assert body["status"] == "completed"
    assert body["total_count"] == 2
    assert body["success_count"] == 1
    assert body["failure_count"] == 1

    detail = await client.get(f"/api/v1/bulk-operations/{body['id']}")
    assert detail.status_code == 200
    items = {i["student_id"]: i for i in detail.json()["items"]}
    assert items[str(a)]["status"] == "success"
    assert items[str(missing)]["error_message"] == "student not found"


@pytest.mark.asyncio
async def test_bulk_status_update_rejects_bad_requests(client: AsyncClient) -> None:
    too_many = [str(uuid.uuid4()) for _ in range(1001)]
    response = await client.post("/api/v1/students/bulk/status", json={"student_ids": too_many, "new_status": "inactive"})
    assert response.status_code == 400
    assert response.json()["detail"] == "Too many students selected (max 1000)"

    response = await client.post("/api/v1/students/bulk/status", json={"student_ids": [], "new_status": "inactive"})
    assert response.status_code == 400

    response = await client.post(
        "/api/v1/students/bulk/status", json={"student_ids": [str(uuid.uuid4())], "new_status": "expelled"}
    )
    assert response.status_code == 422

    listing = await client.get("/api/v1/bulk-operations")
    assert listing.json() == {"operations": [], "total": 0}


@pytest.mark.asyncio
async def test_export_endpoint_and_result_redirect(client: AsyncClient, make_student) -> None:
    student_id = await make_student("ADM001", "Asha", "Rao")

    response = await client.post(
        "/api/v1/students/export",
        json={"student_ids": [str(student_id)], "format": "csv", "columns": ["admission_number", "full_name"]},
    )
    assert response.status_code == 201
    body = response.json()
    assert body["operation_type"] == "export"
    assert body["status"] == "completed"
    assert body["result_url"].endswith(".csv")

    redirect = await client.get(f"/api/v1/bulk-operations/{body['id']}/result")
    assert redirect.status_code == 302
    assert redirect.headers["location"] == body["result_url"]

    download = await client.get(body["result_url"])
    assert download.status_code == 200
    rows = list(csv.reader(io.StringIO(download.text)))
    assert rows == [["Admission Number", "Full Name"], ["ADM001", "Asha Rao"]]


@pytest.mark.asyncio
async def test_export_rejects_unknown_format(client: AsyncClient) -> None:
    response = await client.post("/api/v1/students/export", json={"student_ids": [str(uuid.uuid4())], "format": "pdf"})
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_operation_lookup_errors(client: AsyncClient, make_student) -> None:
    student_id = await make_student("ADM001", "Asha", "Rao")
    created = await client.post(
        "/api/v1/students/bulk/status", json={"student_ids": [str(student_id)], "new_status": "inactive"}
    )
    operation_id = created.json()["id"]

    cancel = await client.post(f"/api/v1/bulk-operations/{operation_id}/cancel")
    assert cancel.status_code == 409

    no_file = await client.get(f"/api/v1/bulk-operations/{operation_id}/result")
    assert no_file.status_code == 404
    assert no_file.json()["detail"] == "No result file available"

    unknown = await client.get(f"/api/v1/bulk-operations/{uuid.uuid4()}")
    assert unknown.status_code == 404

    listing = await client.get("/api/v1/bulk-operations", params={"limit": 5})
    assert listing.status_code == 200
    assert listing.json()["total"] == 1
    assert listing.json()["operations"][0]["id"] == operation_id
    assert listing.json()["operations"][0]["items"] is None


@pytest.mark.asyncio
async def test_missing_permission_is_forbidden(client: AsyncClient, school) -> None:
    app.dependency_overrides[get_current_user] = lambda: CurrentUser(
        id=uuid.uuid4(), tenant_id=school.tenant_id, role="TEACHER", permissions={"students": {"read": True}}
    )
    response = await client.post(
        "/api/v1/students/bulk/status", json={"student_ids": [str(uuid.uuid4())], "new_status": "inactive"}
    )
    assert response.status_code == 403

    response = await client.get("/api/v1/students/import/template")
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_template_download(client: AsyncClient) -> None:
    response = await client.get("/api/v1/students/import/template")
    assert response.status_code == 200
    assert response.headers["content-type"] == "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"
    assert "student_import_template.xlsx" in response.headers["content-disposition"]
    wb = load_workbook(io.BytesIO(response.content))
    assert wb.sheetnames[0] == "Students"


def _import_csv() -> bytes:
    buf = io.StringIO()
    writer = csv.writer(buf)
    writer.writerow([c.header for c in STUDENT_IMPORT_COLUMNS])
    writer.writerow([c.sample for c in STUDENT_IMPORT_COLUMNS])
    sample = [c.sample for c in STUDENT_IMPORT_COLUMNS]
    sample[0] = "ADM2024002"
    sample[5] = "dragon"
    writer.writerow(sample)
    return buf.getvalue().encode("utf-8")


@pytest.mark.asyncio
async def test_import_endpoint(client: AsyncClient, school) -> None:
    response = await client.post(
        "/api/v1/students/import",
        files={"file": ("students.csv", _import_csv(), "text/csv")},
        data={"branch_id": str(school.branch_id)},
    )
    assert response.status_code == 200
    body = response.json()
    assert body["total_rows"] == 2
    assert body["success_count"] == 1
    assert body["failed_count"] == 1
    assert body["errors"] == [{"row": 3, "column": "Gender", "message": "Invalid gender (use male/female/other)"}]
    assert len(body["created_ids"]) == 1


@pytest.mark.asyncio
async def test_import_endpoint_rejects_files(client: AsyncClient, school) -> None:
    response = await client.post(
        "/api/v1/students/import",
        files={"file": ("students.pdf", b"%PDF-1.4", "application/pdf")},
        data={"branch_id": str(school.branch_id)},
    )
    assert response.status_code == 400
    assert response.json()["detail"] == "Unsupported file type (use .csv or .xlsx)"

    response = await client.post(
        "/api/v1/students/import",
        files={"file": ("students.csv", _import_csv(), "text/csv")},
        data={"branch_id": str(uuid.uuid4())},
    )
    assert response.status_code == 404
    assert response.json()["detail"] == "Branch not found"
