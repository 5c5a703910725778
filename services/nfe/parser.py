"""NF-e (Brazilian electronic invoice) XML parser.

Turns a supplier's NF-e XML export into an Invoice so a purchase invoice and
its stock entries can be pre-filled. Handles:
- documents with or without the portalfiscal namespace
- bare NFe roots and NFe wrapped in nfeProc
- ISO-8601 and DD/MM/YYYY issue dates
- comma decimal separators

Data-quality problems never raise; they come back as a failed NFeParseResult.
"""

import logging
import operator
from collections.abc import Callable
from decimal import Decimal
from pathlib import PurePath

from lxml import etree

from services.nfe.schema import (
    FileValidationResult,
    Invoice,
    InvoiceItem,
    NFeParseResult,
    PurchaseInvoiceDraft,
    PurchaseInvoiceItemDraft,
)
from services.nfe.xml_utils import (
    LENIENT_NUMBER_DEFAULT,
    find_all,
    find_first,
    get_number,
    get_text,
    local_name,
    normalize_date,
    parse_xml_document,
)

logger = logging.getLogger(__name__)

DEFAULT_MAX_FILE_SIZE_BYTES = 10 * 1024 * 1024
DEFAULT_UNIT = "UN"
ACCESS_KEY_PREFIX = "NFe"

ERROR_MALFORMED_XML = "Could not process the XML. Check that the file is a valid XML document."
ERROR_NFE_NOT_FOUND = "XML does not contain a valid NF-e structure. NFe element not found."
ERROR_INFNFE_NOT_FOUND = "infNFe element not found in the XML."
ERROR_INSUFFICIENT_DATA = (
    "XML does not contain enough invoice data. Check the invoice number, supplier and items."
)
ERROR_UNKNOWN = "Unknown error while processing the NF-e XML"


class NFeParser:
    """Parser for NF-e XML documents.

    Stateless: the same instance can parse any number of documents and
    parsing the same text twice gives equal results.
    """

    def parse(self, xml_text: str) -> NFeParseResult:
        """Parse NF-e XML text into an Invoice.

        Args:
            xml_text: Raw XML document text

        Returns:
            NFeParseResult with the invoice, or with the reason it failed
        """
        try:
            return self._parse(xml_text)
        except Exception as e:
            logger.error(f"Error parsing NF-e XML: {e}", exc_info=True)
            return NFeParseResult(success=False, error=str(e) or ERROR_UNKNOWN)

    def _parse(self, xml_text: str) -> NFeParseResult:
        try:
            root = parse_xml_document(xml_text)
        except etree.XMLSyntaxError as e:
            logger.warning(f"Rejected malformed NF-e XML: {e}")
            return NFeParseResult(success=False, error=ERROR_MALFORMED_XML)

        nfe = root if local_name(root) == "NFe" else find_first(root, "NFe")
        if nfe is None:
            return NFeParseResult(success=False, error=ERROR_NFE_NOT_FOUND)

        inf_nfe = find_first(nfe, "infNFe")
        if inf_nfe is None:
            return NFeParseResult(success=False, error=ERROR_INFNFE_NOT_FOUND)

        warnings: list[str] = []

        # Identification (ide)
        ide = find_first(inf_nfe, "ide")
        invoice_number = get_text(ide, "nNF")
        invoice_series = get_text(ide, "serie")
        raw_date = get_text(ide, "dhEmi") or get_text(ide, "dEmi")
        invoice_date, recognised = normalize_date(raw_date)
        if not recognised:
            message = (
                f"Unrecognised issue date format: '{raw_date}'"
                if raw_date
                else "Issue date missing"
            )
            logger.warning(f"NF-e {invoice_number or '?'}: {message}")
            warnings.append(message)

        access_key = (inf_nfe.get("Id") or "").removeprefix(ACCESS_KEY_PREFIX)

        # Issuer (emit)
        emit = find_first(inf_nfe, "emit")
        supplier_name = get_text(emit, "xNome") or get_text(emit, "xFant")
        supplier_tax_id = get_text(emit, "CNPJ") or get_text(emit, "CPF")
        supplier_address = self._build_address(find_first(emit, "enderEmit"))

        items = self._extract_items(inf_nfe)

        # Totals (total/ICMSTot)
        icms_tot = find_first(find_first(inf_nfe, "total"), "ICMSTot")
        subtotal = get_number(icms_tot, "vProd")
        taxes = get_number(icms_tot, "vTotTrib")
        total_amount = get_number(icms_tot, "vNF") or subtotal or Decimal("0")

        if not invoice_number or not supplier_name or not items:
            logger.info(
                f"Insufficient NF-e data (number={invoice_number!r}, "
                f"supplier={supplier_name!r}, items={len(items)})"
            )
            return NFeParseResult(success=False, error=ERROR_INSUFFICIENT_DATA, warnings=warnings)

        invoice = Invoice(
            invoice_number=invoice_number,
            invoice_series=invoice_series or None,
            access_key=access_key or None,
            supplier_name=supplier_name,
            supplier_tax_id=supplier_tax_id or None,
            supplier_address=supplier_address or None,
            invoice_date=invoice_date,
            items=items,
            subtotal=subtotal or None,
            taxes=taxes or None,
            total_amount=total_amount,
        )
        logger.info(
            f"Parsed NF-e {invoice.invoice_number} from {invoice.supplier_name} "
            f"({len(items)} items)"
        )
        return NFeParseResult(success=True, invoice=invoice, warnings=warnings)

    @staticmethod
    def _build_address(ender_emit: etree._Element | None) -> str:
        """Join the issuer address fragments, skipping empty ones."""
        parts = [
            get_text(ender_emit, "xLgr"),
            get_text(ender_emit, "nro"),
            get_text(ender_emit, "xBairro"),
            get_text(ender_emit, "xMun"),
            get_text(ender_emit, "UF"),
            get_text(ender_emit, "CEP"),
        ]
        return ", ".join(part for part in parts if part)

    @staticmethod
    def _extract_items(inf_nfe: etree._Element) -> list[InvoiceItem]:
        """Read every det/prod block, dropping unnamed or zero-quantity lines."""
        items: list[InvoiceItem] = []

        for det in find_all(inf_nfe, "det"):
            prod = find_first(det, "prod")
            if prod is None:
                continue

            product_name = get_text(prod, "xProd")
            quantity = get_number(prod, "qCom")
            unit = get_text(prod, "uCom") or DEFAULT_UNIT
            unit_price = get_number(prod, "vUnCom")
            total_price = get_number(prod, "vProd")

            if not product_name or quantity <= 0:
                continue

            if not unit_price:
                unit_price = _derived_amount(operator.truediv, total_price, quantity, product_name)
            if not total_price:
                total_price = _derived_amount(operator.mul, unit_price, quantity, product_name)

            items.append(
                InvoiceItem(
                    product_name=product_name,
                    quantity=quantity,
                    unit=unit,
                    unit_price=unit_price,
                    total_price=total_price,
                )
            )

        return items


def _derived_amount(
    operation: Callable[[Decimal, Decimal], Decimal],
    left: Decimal,
    right: Decimal,
    product_name: str,
) -> Decimal:
    """Result of a price derivation, or LENIENT_NUMBER_DEFAULT when out of range."""
    try:
        return operation(left, right)
    except ArithmeticError:
        logger.warning(
            f"Item '{product_name}' has amounts out of range, derived price read as "
            f"{LENIENT_NUMBER_DEFAULT}"
        )
        return LENIENT_NUMBER_DEFAULT


_default_parser = NFeParser()


def parse_nfe_xml(xml_text: str) -> NFeParseResult:
    """Parse NF-e XML text with a shared parser instance."""
    return _default_parser.parse(xml_text)


def validate_xml_upload(
    filename: str | None,
    size: int,
    max_size_bytes: int = DEFAULT_MAX_FILE_SIZE_BYTES,
) -> FileValidationResult:
    """Check an uploaded file before it is read and parsed.

    Args:
        filename: Client-supplied file name
        size: File size in bytes
        max_size_bytes: Largest accepted size

    Returns:
        FileValidationResult, with the first problem found
    """
    if not filename or PurePath(filename).suffix.lower() != ".xml":
        return FileValidationResult(valid=False, error="The file must be an XML file (.xml)")

    if size == 0:
        return FileValidationResult(valid=False, error="The file is empty")

    if size > max_size_bytes:
        max_mb = max_size_bytes / (1024 * 1024)
        return FileValidationResult(
            valid=False, error=f"The file is too large (maximum {max_mb:g}MB)"
        )

    return FileValidationResult(valid=True)


def decode_xml_content(content: bytes) -> str:
    """Read uploaded XML bytes as UTF-8 text.

    Raises:
        ValueError: If the content is not valid UTF-8
    """
    try:
        return content.decode("utf-8-sig")
    except UnicodeDecodeError as e:
        raise ValueError(f"Could not read the file as UTF-8 text: {e.reason}") from e


def build_purchase_invoice_draft(
    invoice: Invoice,
    xml_content: str | None = None,
    xml_file_path: str | None = None,
) -> PurchaseInvoiceDraft:
    """Map a parsed NF-e to the purchase invoice payload the back office stores.

    Args:
        invoice: Successfully parsed invoice
        xml_content: Raw XML kept alongside the invoice
        xml_file_path: Object storage path of the archived XML, if any

    Returns:
        PurchaseInvoiceDraft with unlinked items
    """
    return PurchaseInvoiceDraft(
        invoice_number=invoice.invoice_number,
        invoice_series=invoice.invoice_series,
        nfe_key=invoice.access_key,
        supplier_name=invoice.supplier_name,
        supplier_cnpj=invoice.supplier_tax_id,
        supplier_address=invoice.supplier_address,
        invoice_date=invoice.invoice_date,
        total_amount=invoice.total_amount,
        xml_file_path=xml_file_path,
        xml_content=xml_content,
        items=[
            PurchaseInvoiceItemDraft(
                product_name=item.product_name,
                quantity=item.quantity,
                unit=item.unit,
                unit_price=item.unit_price,
                total_price=item.total_price,
            )
            for item in invoice.items
        ],
    )
