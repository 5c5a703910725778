"""Unit tests for the back-office API.

Tests cover:
- Health check endpoints
- NF-e import validation, parsing and archiving
- Discount endpoints
- Prometheus metrics endpoint
"""

import asyncio
from decimal import Decimal
from unittest.mock import patch

import pytest
from fastapi import status
from fastapi.testclient import TestClient
from nfe_samples import ACCESS_KEY, NAMESPACED_NFE

from services.api.main import app, archive_object_name
from services.nfe.parser import ERROR_INSUFFICIENT_DATA, ERROR_MALFORMED_XML, NFeParser
from services.storage.service import StorageResult

IMPORT_URL = "/api/v1/invoices/import"


@pytest.fixture
def client() -> TestClient:
    """Create test client."""
    return TestClient(app)


@pytest.fixture
def nfe_bytes() -> bytes:
    return NAMESPACED_NFE.encode("utf-8")


def test_health_check(client: TestClient) -> None:
    response = client.get("/health")

    assert response.status_code == status.HTTP_200_OK
    data = response.json()
    assert data["status"] == "healthy"
    assert "version" in data
    assert "service" in data


def test_readiness_check(client: TestClient) -> None:
    response = client.get("/ready")

    assert response.status_code == status.HTTP_200_OK
    assert response.json()["ready"] is True


class TestInvoiceImport:
    """POST /api/v1/invoices/import"""

    def test_import_valid_nfe(self, client: TestClient, nfe_bytes: bytes) -> None:
        files = {"file": ("nota.xml", nfe_bytes, "application/xml")}

        with patch("services.api.main.archive_service.is_available", return_value=False):
            response = client.post(IMPORT_URL, files=files)

        assert response.status_code == status.HTTP_200_OK
        data = response.json()
        assert data["success"] is True
        assert "document_id" in data
        assert data["storage_path"] is None
        assert data["warnings"] == []

        invoice = data["invoice"]
        assert invoice["invoice_number"] == "123"
        assert invoice["access_key"] == ACCESS_KEY
        assert invoice["supplier_name"] == "Acme Corp"
        assert Decimal(invoice["total_amount"]) == Decimal("25.00")
        assert len(invoice["items"]) == 2

        draft = data["draft"]
        assert draft["nfe_key"] == ACCESS_KEY
        assert draft["supplier_cnpj"] == "12345678000190"
        assert draft["xml_content"] == NAMESPACED_NFE
        assert draft["xml_file_path"] is None
        assert all(item["inventory_item_id"] is None for item in draft["items"])

    def test_import_archives_xml_when_storage_enabled(
        self, client: TestClient, nfe_bytes: bytes
    ) -> None:
        files = {"file": ("nota.xml", nfe_bytes, "application/xml")}

        with (
            patch("services.api.main.archive_service.is_available", return_value=True),
            patch("services.api.main.archive_service.archive_xml") as mock_archive,
        ):
            mock_archive.return_value = StorageResult(success=True, bucket="invoices")
            response = client.post(IMPORT_URL, files=files)

        assert response.status_code == status.HTTP_200_OK
        data = response.json()
        object_name = f"nfe/{ACCESS_KEY}/{data['document_id']}.xml"
        assert data["storage_path"] == f"invoices/{object_name}"
        assert data["draft"]["xml_file_path"] == f"invoices/{object_name}"
        mock_archive.assert_called_once_with(nfe_bytes, object_name)

    def test_import_with_forged_access_key_archives_under_document_id(
        self, client: TestClient
    ) -> None:
        forged = NAMESPACED_NFE.replace(f"NFe{ACCESS_KEY}", "NFe../../other/key")
        files = {"file": ("nota.xml", forged.encode("utf-8"), "application/xml")}

        with (
            patch("services.api.main.archive_service.is_available", return_value=True),
            patch("services.api.main.archive_service.archive_xml") as mock_archive,
        ):
            mock_archive.return_value = StorageResult(success=True, bucket="invoices")
            response = client.post(IMPORT_URL, files=files)

        assert response.status_code == status.HTTP_200_OK
        doc_id = response.json()["document_id"]
        mock_archive.assert_called_once_with(forged.encode("utf-8"), f"nfe/{doc_id}.xml")
        assert response.json()["storage_path"] == f"invoices/nfe/{doc_id}.xml"

    def test_import_runs_parse_and_archive_off_the_event_loop(
        self, client: TestClient, nfe_bytes: bytes
    ) -> None:
        on_event_loop: dict[str, bool] = {}
        real_parse = NFeParser().parse

        def running_loop() -> bool:
            try:
                asyncio.get_running_loop()
            except RuntimeError:
                return False
            return True

        def parse(xml_text: str):  # type: ignore[no-untyped-def]
            on_event_loop["parse"] = running_loop()
            return real_parse(xml_text)

        def archive(content: bytes, object_name: str) -> StorageResult:
            on_event_loop["archive"] = running_loop()
            return StorageResult(success=True, object_name=object_name, bucket="invoices")

        with (
            patch("services.api.main.nfe_parser.parse", side_effect=parse),
            patch("services.api.main.archive_service.is_available", return_value=True),
            patch("services.api.main.archive_service.archive_xml", side_effect=archive),
        ):
            response = client.post(
                IMPORT_URL, files={"file": ("nota.xml", nfe_bytes, "application/xml")}
            )

        assert response.status_code == status.HTTP_200_OK
        assert on_event_loop == {"parse": False, "archive": False}

    def test_import_survives_archive_failure(self, client: TestClient, nfe_bytes: bytes) -> None:
        files = {"file": ("nota.xml", nfe_bytes, "application/xml")}

        with (
            patch("services.api.main.archive_service.is_available", return_value=True),
            patch("services.api.main.archive_service.archive_xml") as mock_archive,
        ):
            mock_archive.return_value = StorageResult(success=False, error="S3 error")
            response = client.post(IMPORT_URL, files=files)

        assert response.status_code == status.HTTP_200_OK
        assert response.json()["storage_path"] is None

    def test_import_no_file(self, client: TestClient) -> None:
        response = client.post(IMPORT_URL)

        assert response.status_code == 422

    @pytest.mark.parametrize(
        ("filename", "content"),
        [
            ("nota.pdf", b"<NFe/>"),
            ("nota.xml", b""),
        ],
        ids=["wrong-extension", "empty"],
    )
    def test_import_rejected_file(self, client: TestClient, filename: str, content: bytes) -> None:
        files = {"file": (filename, content, "application/xml")}

        response = client.post(IMPORT_URL, files=files)

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert "detail" in response.json()

    def test_import_file_too_large(self, client: TestClient, nfe_bytes: bytes) -> None:
        files = {"file": ("nota.xml", nfe_bytes, "application/xml")}

        with patch("services.api.main.settings.nfe_max_file_size_bytes", 100):
            response = client.post(IMPORT_URL, files=files)

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert "too large" in response.json()["detail"]

    def test_import_non_utf8_content(self, client: TestClient) -> None:
        files = {"file": ("nota.xml", b"<NFe>\xff\xfe</NFe>", "application/xml")}

        response = client.post(IMPORT_URL, files=files)

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert "UTF-8" in response.json()["detail"]

    def test_import_malformed_xml(self, client: TestClient) -> None:
        files = {"file": ("nota.xml", b"<NFe><infNFe>", "application/xml")}

        response = client.post(IMPORT_URL, files=files)

        assert response.status_code == 422
        assert response.json()["detail"] == ERROR_MALFORMED_XML

    def test_import_insufficient_data(self, client: TestClient) -> None:
        files = {"file": ("nota.xml", b"<NFe><infNFe><ide/></infNFe></NFe>", "application/xml")}

        response = client.post(IMPORT_URL, files=files)

        assert response.status_code == 422
        assert response.json()["detail"] == ERROR_INSUFFICIENT_DATA

    def test_import_metrics_recorded(self, client: TestClient, nfe_bytes: bytes) -> None:
        from services.api import metrics

        initial_success = metrics.invoice_imports_total.labels(status="success")._value.get()
        initial_failed = metrics.invoice_imports_total.labels(status="failed")._value.get()

        with patch("services.api.main.archive_service.is_available", return_value=False):
            client.post(IMPORT_URL, files={"file": ("a.xml", nfe_bytes, "application/xml")})
        client.post(IMPORT_URL, files={"file": ("b.xml", b"<x/>", "application/xml")})

        assert metrics.invoice_imports_total.labels(status="success")._value.get() == (
            initial_success + 1
        )
        assert metrics.invoice_imports_total.labels(status="failed")._value.get() == (
            initial_failed + 1
        )


class TestDiscountEndpoints:
    """Discount calculation and validation endpoints."""

    def test_apply_discount(self, client: TestClient) -> None:
        body = {
            "base_price": "100",
            "discount": {"discount_type": "fixed", "discount_value": "10", "applies_to": ["Cash"]},
            "payment_method": "Cash",
        }

        response = client.post("/api/v1/discounts/apply", json=body)

        assert response.status_code == status.HTTP_200_OK
        assert Decimal(response.json()["final_price"]) == 90

    def test_apply_discount_other_method(self, client: TestClient) -> None:
        body = {
            "base_price": 100,
            "discount": {"discount_type": "fixed", "discount_value": 10, "applies_to": ["Cash"]},
            "payment_method": "PIX",
        }

        response = client.post("/api/v1/discounts/apply", json=body)

        assert Decimal(response.json()["final_price"]) == 100

    def test_apply_discount_unknown_payment_method(self, client: TestClient) -> None:
        body = {"base_price": 100, "discount": {}, "payment_method": "Bitcoin"}

        response = client.post("/api/v1/discounts/apply", json=body)

        assert response.status_code == 422

    def test_order_discount(self, client: TestClient) -> None:
        body = {"subtotal": 200, "discount_type": "percentage", "discount_value": 10}

        response = client.post("/api/v1/discounts/order", json=body)

        assert response.status_code == status.HTTP_200_OK
        data = response.json()
        assert Decimal(data["subtotal"]) == 200
        assert Decimal(data["total"]) == 180

    def test_validate_with_explicit_limit(self, client: TestClient) -> None:
        body = {
            "discount_type": "fixed",
            "discount_value": 30,
            "subtotal": 100,
            "limit": {"limit_type": "percentage", "limit_value": 20},
        }

        response = client.post("/api/v1/discounts/validate", json=body)

        assert response.status_code == status.HTTP_200_OK
        data = response.json()
        assert data["valid"] is False
        assert "R$ 20,00" in data["reason"]

    def test_validate_uses_deployment_limit(self, client: TestClient) -> None:
        body = {"discount_type": "percentage", "discount_value": 10, "subtotal": 100}

        with (
            patch("services.api.main.settings.discount_limit_type", "fixed"),
            patch("services.api.main.settings.discount_limit_value", Decimal("5")),
        ):
            response = client.post("/api/v1/discounts/validate", json=body)

        data = response.json()
        assert data["valid"] is False
        assert "R$ 5,00" in data["reason"]

    def test_validate_without_limit_configured(self, client: TestClient) -> None:
        body = {"discount_type": "percentage", "discount_value": 90, "subtotal": 100}

        with patch("services.api.main.settings.discount_limit_type", "none"):
            response = client.post("/api/v1/discounts/validate", json=body)

        assert response.json() == {"valid": True, "reason": None}


def test_metrics_endpoint(client: TestClient) -> None:
    response = client.get("/metrics")

    assert response.status_code == status.HTTP_200_OK
    content_type = response.headers["content-type"]
    assert "openmetrics-text" in content_type or "text/plain" in content_type
    assert "invoice_imports_total" in response.text


def test_metrics_recorded_on_requests(client: TestClient) -> None:
    client.get("/health")

    response = client.get("/metrics")

    assert "http_requests_total" in response.text


@pytest.mark.parametrize(
    ("access_key", "expected"),
    [
        (ACCESS_KEY, f"nfe/{ACCESS_KEY}/doc-1.xml"),
        (None, "nfe/doc-1.xml"),
        ("", "nfe/doc-1.xml"),
        ("../../other/key", "nfe/doc-1.xml"),
        (ACCESS_KEY[:-1], "nfe/doc-1.xml"),
        (f"{ACCESS_KEY}\n", "nfe/doc-1.xml"),
    ],
)
def test_archive_object_name(access_key: str | None, expected: str) -> None:
    assert archive_object_name(access_key, "doc-1") == expected
