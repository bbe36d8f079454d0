from __future__ import annotations

from uuid import UUID

from fastapi import FastAPI
from fastapi.testclient import TestClient

from lms.domain_errors import ConflictError, DomainError, NotFoundError
from lms.main import app, install_error_handlers
from lms.responses import build_error_payload, build_error_response, build_success_response


def test_error_payload_contains_stable_code_and_details() -> None:
    missing = UUID("00000000-0000-0000-0000-000000000001")
    response = build_error_response(
        DomainError(
            code="ENROLLMENT_PREREQUISITES_NOT_MET",
            http_status=422,
            message="prerequisites not met",
            details={"missing": [missing]},
        )
    )

    assert response.status_code == 422
    body = response.body.decode("utf-8")
    assert '"message":"prerequisites not met"' in body
    assert '"error":"ENROLLMENT_PREREQUISITES_NOT_MET"' in body
    assert f'"details":{{"missing":["{missing}"]}}' in body


def test_error_payload_omits_details_when_none() -> None:
    payload = build_error_payload(ConflictError("ENROLLMENT_EXISTS", "User is already enrolled in this module"))

    assert payload == {
        "message": "User is already enrolled in this module",
        "error": "ENROLLMENT_EXISTS",
    }


def test_success_response_wraps_data() -> None:
    response = build_success_response(message="Role assigned", data={"count": 2}, status_code=201)

    assert response.status_code == 201
    assert response.body.decode("utf-8") == '{"message":"Role assigned","data":{"count":2}}'


def test_installed_handler_maps_domain_errors_to_http() -> None:
    probe = FastAPI()
    install_error_handlers(probe)

    @probe.get("/probe")
    def raise_not_found():
        raise NotFoundError("MODULE_NOT_FOUND", "Module not found")

    client = TestClient(probe)
    response = client.get("/probe")

    assert response.status_code == 404
    assert response.json() == {"message": "Module not found", "error": "MODULE_NOT_FOUND"}


def test_health_check_probes_database() -> None:
    client = TestClient(app)

    response = client.get("/api/v1/system/health")

    assert response.status_code == 200
    assert response.json() == {"status": "ok", "version": "1.0.0", "database": "ok"}
