"""FastAPI application for the restaurant back office.

Endpoints:
- Health and readiness checks
- NF-e XML import into a purchase invoice draft
- Payment-method and order discount calculation
- Checkout discount validation against the deployment limit
- Prometheus metrics

Based on FastAPI docs:
https://fastapi.tiangolo.com/
"""

import logging
import re
import time
import uuid
from decimal import Decimal

from fastapi import FastAPI, File, HTTPException, Request, Response, UploadFile, status
from fastapi.concurrency import run_in_threadpool
from pydantic import BaseModel

from services.api import metrics
from services.discounts.engine import apply_discount, apply_order_discount, validate_discount
from services.discounts.schema import (
    DiscountLimit,
    DiscountRule,
    DiscountType,
    DiscountValidation,
    PaymentMethod,
)
from services.nfe.parser import (
    NFeParser,
    build_purchase_invoice_draft,
    decode_xml_content,
    validate_xml_upload,
)
from services.nfe.schema import Invoice, PurchaseInvoiceDraft
from services.shared.config import get_settings
from services.storage.service import XMLArchiveService

settings = get_settings()

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(
    title="Restaurant Back Office",
    description="NF-e purchase invoice import and discount rules",
    version=settings.service_version,
)

nfe_parser = NFeParser()
archive_service = XMLArchiveService(settings)

# Access keys are 44 digits; anything else is not trusted as an object name.
_ACCESS_KEY_PATTERN = re.compile(r"\d{44}")


def archive_object_name(access_key: str | None, doc_id: str) -> str:
    """Object name for an imported XML, unique per import.

    Imports of the same access key are grouped under that key; a missing or
    malformed key falls back to the document id alone.
    """
    if access_key and _ACCESS_KEY_PATTERN.fullmatch(access_key):
        return f"nfe/{access_key}/{doc_id}.xml"
    return f"nfe/{doc_id}.xml"


@app.middleware("http")
async def metrics_middleware(request: Request, call_next):  # type: ignore[no-untyped-def]
    """Record request count and duration per endpoint."""
    if request.url.path == "/metrics":
        return await call_next(request)

    start_time = time.time()
    response = await call_next(request)
    duration = time.time() - start_time

    metrics.http_requests_total.labels(
        method=request.method,
        endpoint=request.url.path,
        status=response.status_code,
    ).inc()

    metrics.http_request_duration_seconds.labels(
        method=request.method,
        endpoint=request.url.path,
    ).observe(duration)

    return response


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    version: str
    service: str


class ReadinessResponse(BaseModel):
    """Readiness check response."""

    ready: bool


class InvoiceImportResponse(BaseModel):
    """NF-e import response."""

    success: bool
    document_id: str
    invoice: Invoice
    draft: PurchaseInvoiceDraft
    warnings: list[str] = []
    storage_path: str | None = None


class ApplyDiscountRequest(BaseModel):
    """Item price and its payment-method discount."""

    base_price: Decimal
    discount: DiscountRule
    payment_method: PaymentMethod


class ApplyDiscountResponse(BaseModel):
    final_price: Decimal


class OrderDiscountRequest(BaseModel):
    """Order subtotal and the discount typed in for the order."""

    subtotal: Decimal
    discount_type: DiscountType | None = None
    discount_value: Decimal | None = None


class OrderDiscountResponse(BaseModel):
    subtotal: Decimal
    total: Decimal


class ValidateDiscountRequest(BaseModel):
    """Checkout discount to validate.

    `limit` overrides the deployment limit from settings when sent.
    """

    discount_type: DiscountType | None = None
    discount_value: Decimal | None = None
    subtotal: Decimal
    limit: DiscountLimit | None = None


@app.get("/health", response_model=HealthResponse, tags=["Health"])
def health_check() -> HealthResponse:
    """Liveness probe."""
    return HealthResponse(
        status="healthy", version=settings.service_version, service=settings.service_name
    )


@app.get("/ready", response_model=ReadinessResponse, tags=["Health"])
def readiness_check() -> ReadinessResponse:
    """Readiness probe."""
    return ReadinessResponse(ready=True)


@app.get("/metrics", tags=["Monitoring"])
def get_metrics() -> Response:
    """Prometheus metrics endpoint."""
    metrics_data, content_type = metrics.get_metrics()
    return Response(content=metrics_data, media_type=content_type)


@app.post("/api/v1/invoices/import", response_model=InvoiceImportResponse, tags=["Invoices"])
async def import_invoice(
    file: UploadFile = File(..., description="NF-e XML file (.xml, max 10MB)"),  # noqa: B008
) -> InvoiceImportResponse:
    """Import a supplier NF-e XML as a purchase invoice draft.

    Steps:
    1. Validate the file (extension, empty file, size limit)
    2. Parse the NF-e XML into invoice data and line items
    3. Archive the raw XML when object storage is enabled
    4. Build the purchase invoice draft with unlinked stock items

    ## Usage

    ```bash
    curl -X POST "http://localhost:8000/api/v1/invoices/import" \\
      -F "file=@nfe.xml"
    ```

    ## Error Handling

    - 400 if the file is not .xml, is empty, too large, or not UTF-8
    - 422 if the XML is not a usable NF-e (reason in `detail`)
    - Archive failures do not fail the import (`storage_path` is null)

    Raises:
        HTTPException: If the file is rejected or cannot be parsed
    """
    content = await file.read()

    validation = validate_xml_upload(file.filename, len(content), settings.nfe_max_file_size_bytes)
    if not validation.valid:
        metrics.invoice_imports_total.labels(status="rejected").inc()
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=validation.error)

    metrics.invoice_upload_size_bytes.observe(len(content))

    try:
        xml_text = decode_xml_content(content)
    except ValueError as e:
        metrics.invoice_imports_total.labels(status="rejected").inc()
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e)) from e

    parse_start = time.time()
    result = await run_in_threadpool(nfe_parser.parse, xml_text)
    metrics.nfe_parse_duration_seconds.observe(time.time() - parse_start)

    if not result.success or result.invoice is None:
        metrics.invoice_imports_total.labels(status="failed").inc()
        raise HTTPException(status_code=422, detail=result.error)

    invoice = result.invoice
    doc_id = str(uuid.uuid4())

    storage_path = None
    if archive_service.is_available():
        object_name = archive_object_name(invoice.access_key, doc_id)
        storage_result = await run_in_threadpool(archive_service.archive_xml, content, object_name)
        if storage_result.success:
            storage_path = f"{storage_result.bucket}/{object_name}"
        else:
            logger.warning(f"NF-e {invoice.invoice_number} imported without archive copy")

    metrics.invoice_imports_total.labels(status="success").inc()

    return InvoiceImportResponse(
        success=True,
        document_id=doc_id,
        invoice=invoice,
        draft=build_purchase_invoice_draft(invoice, xml_text, storage_path),
        warnings=result.warnings,
        storage_path=storage_path,
    )


@app.post("/api/v1/discounts/apply", response_model=ApplyDiscountResponse, tags=["Discounts"])
def apply_item_discount(body: ApplyDiscountRequest) -> ApplyDiscountResponse:
    """Price of an item after its payment-method discount."""
    final_price = apply_discount(
        body.base_price,
        body.discount.discount_type,
        body.discount.discount_value,
        body.discount.applies_to,
        body.payment_method,
    )
    return ApplyDiscountResponse(final_price=final_price)


@app.post("/api/v1/discounts/order", response_model=OrderDiscountResponse, tags=["Discounts"])
def apply_order_level_discount(body: OrderDiscountRequest) -> OrderDiscountResponse:
    """Order total after an order-level discount."""
    total = apply_order_discount(body.subtotal, body.discount_type, body.discount_value)
    return OrderDiscountResponse(subtotal=body.subtotal, total=total)


@app.post("/api/v1/discounts/validate", response_model=DiscountValidation, tags=["Discounts"])
def validate_checkout_discount(body: ValidateDiscountRequest) -> DiscountValidation:
    """Check a checkout discount against the configured limit.

    An invalid discount is still a 200 response; the caller decides whether
    to block the payment or only warn.
    """
    limit = body.limit or DiscountLimit(
        limit_type=settings.discount_limit_type,
        limit_value=settings.discount_limit_value,
    )
    validation = validate_discount(
        body.discount_type,
        body.discount_value,
        limit.limit_type,
        limit.limit_value,
        body.subtotal,
    )
    metrics.discount_validations_total.labels(
        result="valid" if validation.valid else "invalid"
    ).inc()
    return validation
