"""Data models for NF-e (Nota Fiscal Eletrônica) purchase invoice import."""

from decimal import Decimal

from pydantic import BaseModel, Field


class InvoiceItem(BaseModel):
    """One line item (`det/prod`) of an NF-e."""

    product_name: str = Field(..., min_length=1, description="Product description (xProd)")
    quantity: Decimal = Field(..., gt=0, description="Commercial quantity (qCom)")
    unit: str = Field("UN", description="Commercial unit (uCom)")
    unit_price: Decimal = Field(..., description="Unit price (vUnCom)")
    total_price: Decimal = Field(..., description="Line total (vProd)")


class Invoice(BaseModel):
    """Structured data extracted from one NF-e XML document.

    Items keep document order and are not deduplicated.
    """

    invoice_number: str = Field(..., description="Invoice number (ide/nNF)")
    invoice_series: str | None = Field(None, description="Invoice series (ide/serie)")
    access_key: str | None = Field(None, description="44-digit access key from infNFe/@Id")

    # Issuer (emit)
    supplier_name: str = Field(..., description="Issuer legal or trade name")
    supplier_tax_id: str | None = Field(None, description="Issuer CNPJ or CPF")
    supplier_address: str | None = Field(None, description="Comma-joined issuer address")

    invoice_date: str = Field("", description="Issue date, normally YYYY-MM-DD")
    items: list[InvoiceItem] = Field(default_factory=list)

    # Totals (total/ICMSTot)
    subtotal: Decimal | None = Field(None, description="Products total (vProd)")
    taxes: Decimal | None = Field(None, description="Approximate tax total (vTotTrib)")
    total_amount: Decimal = Field(Decimal("0"), description="Invoice total (vNF)")


class NFeParseResult(BaseModel):
    """Result of parsing an NF-e XML document.

    Attributes:
        success: Whether a valid invoice was extracted
        invoice: Parsed invoice, None on failure
        error: Human-readable failure reason
        warnings: Non-fatal inconsistencies found while parsing
    """

    success: bool
    invoice: Invoice | None = None
    error: str | None = None
    warnings: list[str] = Field(default_factory=list)


class FileValidationResult(BaseModel):
    """Outcome of checking an uploaded file before parsing."""

    valid: bool
    error: str | None = None


class PurchaseInvoiceItemDraft(BaseModel):
    """Line item of a purchase invoice ready to be stored."""

    inventory_item_id: int | None = None
    product_name: str
    quantity: Decimal
    unit: str = "UN"
    unit_price: Decimal
    total_price: Decimal


class PurchaseInvoiceDraft(BaseModel):
    """Purchase invoice payload pre-filled from an imported NF-e.

    Stock items are linked later (manually or by matching), so every
    `inventory_item_id` starts empty.
    """

    invoice_number: str
    invoice_series: str | None = None
    nfe_key: str | None = None
    supplier_name: str
    supplier_cnpj: str | None = None
    supplier_address: str | None = None
    invoice_date: str
    total_amount: Decimal
    xml_file_path: str | None = None
    xml_content: str | None = None
    notes: str | None = None
    items: list[PurchaseInvoiceItemDraft] = Field(default_factory=list)
