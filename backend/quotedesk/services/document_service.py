# Overview: Quote document generation; snapshot, pure pagination, PDF rendering and artifact persistence.

"""
Quote Document Generator

PIPELINE:
    build_quote_snapshot(order_id)   resolved, app-independent dict
    layout_quote(snapshot)           pure pagination (blocks on pages)
    fetch_item_images(snapshot)      httpx, bounded timeout, failures ignored
    render_quote_pdf(...)            reportlab canvas
    ArtifactStore.put(...)           overwrite by order_number
    QuoteDocument upsert             one row per order

Pagination works on a vertical write cursor measured from the top of the
page. Before each block, if cursor + block height would pass the usable
bottom, a new page starts and the branding header is emitted again (plus the
table header when the page break falls inside the items table).

layout_quote() depends only on the snapshot, so regenerating an unchanged
order yields the same page_count and row_count.
"""

from __future__ import annotations

import io
import threading
from dataclasses import dataclass, field

import httpx
from flask import current_app
from reportlab.lib.pagesizes import A4
from reportlab.lib.units import mm
from reportlab.lib.utils import ImageReader, simpleSplit
from reportlab.pdfgen import canvas

from ..extensions import db, tasks
from ..errors import ExternalServiceError
from ..models import Product, Profile, QuoteDocument
from ..tasks import TaskHandle, check_cancelled
from ..time_utils import utcnow
from .audit_service import format_money, STATUS_LABELS
from .concurrency import run_in_transaction
from .order_service import RESOURCE_ORDERS, get_order, get_order_by_number
from .permission_service import Actor, require_permission
from .storage_service import get_artifact_store


PAGE_WIDTH, PAGE_HEIGHT = A4
MARGIN = 15 * mm
BOTTOM_LIMIT = PAGE_HEIGHT - 27 * mm

FONT = "Helvetica"
FONT_BOLD = "Helvetica-Bold"
FONT_SIZE = 10

HEADER_HEIGHT = 42 * mm
TEXT_LINE_HEIGHT = 5 * mm
TABLE_HEADER_HEIGHT = 10 * mm
ROW_LINE_HEIGHT = 7 * mm
IMAGE_SIZE = 18 * mm
MIN_ROW_HEIGHT = 10 * mm
ROW_GAP = 3 * mm
SIGNATURE_HEIGHT = 30 * mm

# Table columns (x offsets from the left page edge)
COL_IMAGE = MARGIN + 2
COL_DESCRIPTION = MARGIN + 24 * mm
COL_QUANTITY = PAGE_WIDTH - MARGIN - 75 * mm
COL_UNIT_PRICE = PAGE_WIDTH - MARGIN - 55 * mm
COL_TOTAL = PAGE_WIDTH - MARGIN
DESCRIPTION_WIDTH = COL_QUANTITY - COL_DESCRIPTION - 4 * mm
TERMS_WIDTH = PAGE_WIDTH - 2 * MARGIN


def storage_key_for(order_number: str) -> str:
    return f"quotes/{order_number}.pdf"


# =============================================================================
# Snapshot
# =============================================================================

def _profile_view(profile: Profile | None) -> dict | None:
    if profile is None:
        return None
    return {
        "name": profile.display_name,
        "company": profile.company,
        "contact_name": profile.contact_name,
        "email": profile.email,
        "phone": profile.phone,
        "tax_id": profile.tax_id,
        "address": profile.address,
        "address_number": profile.address_number,
        "city": profile.city,
        "state": profile.state,
        "postal_code": profile.postal_code,
    }


def build_quote_snapshot(order_id: int) -> dict:
    """
    Fully resolved view of an order for rendering.

    Item names come from the catalog when the product still exists, else
    from custom_name. The customer profile is found by customer_email, the
    salesperson profile by salesperson_id (user_id).
    """
    order = get_order(order_id)

    product_ids = {i.product_id for i in order.items if i.product_id is not None}
    products = {}
    if product_ids:
        products = {
            p.id: p for p in db.session.query(Product).filter(Product.id.in_(product_ids)).all()
        }

    items = []
    for item in order.items:
        product = products.get(item.product_id)
        items.append({
            "id": item.id,
            "name": product.name if product else (item.custom_name or f"Produto #{item.product_id}"),
            "image_url": item.custom_image_url or (product.image_url if product else None),
            "variants": dict(item.selected_variants or {}),
            "quantity": item.quantity,
            "unit_price_cents": item.unit_price_cents,
            "line_total_cents": item.line_total_cents,
        })

    customer = (
        db.session.query(Profile)
        .filter(db.func.lower(Profile.email) == order.customer_email.lower())
        .first()
    )
    salesperson = None
    if order.salesperson_id:
        salesperson = db.session.query(Profile).filter_by(user_id=order.salesperson_id).first()

    cfg = current_app.config
    return {
        "order": {
            "id": order.id,
            "order_number": order.order_number,
            "status": order.status,
            "status_label": STATUS_LABELS.get(order.status, order.status),
            "customer_email": order.customer_email,
            "created_at": order.created_at.strftime("%d/%m/%Y") if order.created_at else "",
            "subtotal_cents": order.subtotal_cents,
            "shipping_cost_cents": order.shipping_cost_cents,
            "total_cents": order.total_cents,
            "notes": order.notes,
        },
        "items": items,
        "customer": _profile_view(customer),
        "salesperson": _profile_view(salesperson),
        "terms": {
            "payment": order.payment_terms or cfg.get("DEFAULT_PAYMENT_TERMS"),
            "delivery": order.delivery_terms or cfg.get("DEFAULT_DELIVERY_TERMS"),
            "validity": order.validity_terms or cfg.get("DEFAULT_VALIDITY_TERMS"),
            "legal": cfg.get("QUOTE_LEGAL_TEXT", ""),
        },
        "company": {
            "name": cfg.get("COMPANY_NAME", ""),
            "email": cfg.get("COMPANY_EMAIL", ""),
        },
        "currency_symbol": cfg.get("CURRENCY_SYMBOL", "R$"),
    }


# =============================================================================
# Layout (pure)
# =============================================================================

@dataclass
class Block:
    kind: str
    page: int
    top: float
    height: float
    data: dict = field(default_factory=dict)


@dataclass
class QuoteLayout:
    blocks: list[Block]
    page_count: int
    row_count: int

    def blocks_on(self, page: int) -> list[Block]:
        return [b for b in self.blocks if b.page == page]


def _party_lines(snapshot: dict) -> list[str]:
    lines = []
    customer = snapshot.get("customer")
    if customer:
        lines.append(f"Empresa: {customer.get('company') or ''}")
        lines.append(f"Contato: {customer.get('contact_name') or ''}")
        lines.append(f"E-mail: {customer.get('email') or ''}    Telefone: {customer.get('phone') or ''}")
        if customer.get("tax_id"):
            lines.append(f"CNPJ/CPF: {customer['tax_id']}")
        if customer.get("address"):
            lines.append(f"Endereço: {customer['address']}, {customer.get('address_number') or ''}")
            lines.append(
                f"{customer.get('city') or ''} - {customer.get('state') or ''} - CEP: {customer.get('postal_code') or ''}"
            )
    else:
        lines.append(f"E-mail: {snapshot['order']['customer_email']}")

    salesperson = snapshot.get("salesperson")
    if salesperson:
        lines.append(f"Vendedor: {salesperson.get('name') or ''}    {salesperson.get('email') or ''}")
    return lines


def _item_description(item: dict) -> str:
    if not item.get("variants"):
        return item["name"]
    variants = ", ".join(f"{k}: {v}" for k, v in sorted(item["variants"].items()))
    return f"{item['name']} ({variants})"


def _terms_paragraphs(snapshot: dict) -> list[tuple[str, list[str], bool]]:
    """(title, wrapped lines, small print) per terms paragraph."""
    terms = snapshot["terms"]
    paragraphs = [
        ("Condições de Pagamento", terms.get("payment") or ""),
        ("Prazo de Entrega", terms.get("delivery") or ""),
        ("Validade", terms.get("validity") or ""),
    ]
    result = [
        (title, simpleSplit(text, FONT, FONT_SIZE - 1, TERMS_WIDTH), False)
        for title, text in paragraphs
    ]
    if terms.get("legal"):
        result.append(("", simpleSplit(terms["legal"], FONT, FONT_SIZE - 2, TERMS_WIDTH), True))
    return result


def layout_quote(snapshot: dict) -> QuoteLayout:
    """
    Paginate the quote. Deterministic for a given snapshot.

    Row height = max(image size, wrapped line count x row line height,
    minimum row height) plus a fixed gap.

    A block that fits on an empty page is moved whole to the next page when
    it does not fit the current one. Taller blocks (long terms, item rows
    with huge descriptions) are split by lines; every page still starts
    with the header, plus the table header inside the items table.
    """
    blocks: list[Block] = []
    page = 1
    cursor = MARGIN
    in_table = False

    def new_page() -> None:
        nonlocal page, cursor
        page += 1
        cursor = MARGIN
        blocks.append(Block("header", page, cursor, HEADER_HEIGHT, {"continued": True}))
        cursor += HEADER_HEIGHT
        if in_table:
            blocks.append(Block("table_header", page, cursor, TABLE_HEADER_HEIGHT))
            cursor += TABLE_HEADER_HEIGHT

    def emit(kind: str, height: float, data: dict | None = None) -> None:
        nonlocal cursor
        if cursor + height > BOTTOM_LIMIT:
            new_page()
        blocks.append(Block(kind, page, cursor, height, data or {}))
        cursor += height

    def emit_lines(kind: str, lines: list[str], height_for, first_data: dict, rest_kind: str, rest_data: dict) -> None:
        """
        Emit a block of wrapped lines, splitting it across pages if needed.

        height_for(line_count, first) -> block height. The first chunk gets
        first_data, continuation chunks rest_kind/rest_data.
        """
        empty_room = BOTTOM_LIMIT - MARGIN - HEADER_HEIGHT - (TABLE_HEADER_HEIGHT if in_table else 0)
        remaining = list(lines)
        first = True
        while True:
            room = BOTTOM_LIMIT - cursor
            if height_for(len(remaining), first) <= room:
                chunk, remaining = remaining, []
            else:
                count = 0
                while count < len(remaining) and height_for(count + 1, first) <= room:
                    count += 1
                # Keep a block whole when an empty page can hold it
                if count < 1 or (first and height_for(len(remaining), first) <= empty_room):
                    new_page()
                    continue
                chunk, remaining = remaining[:count], remaining[count:]
            data = dict(first_data if first else rest_data, lines=chunk)
            emit(kind if first else rest_kind, height_for(len(chunk), first), data)
            first = False
            if not remaining:
                break

    blocks.append(Block("header", page, cursor, HEADER_HEIGHT, {"continued": False}))
    cursor += HEADER_HEIGHT

    party = _party_lines(snapshot)
    emit_lines(
        "party", party, lambda n, first: n * TEXT_LINE_HEIGHT + 8 * mm,
        {}, "party", {},
    )

    emit("table_header", TABLE_HEADER_HEIGHT)
    in_table = True

    symbol = snapshot.get("currency_symbol", "R$")
    for item in snapshot["items"]:
        lines = simpleSplit(_item_description(item), FONT, FONT_SIZE, DESCRIPTION_WIDTH) or [""]
        image_height = IMAGE_SIZE + 2 if item.get("image_url") else 0

        def row_height(n: int, first: bool, image_height=image_height) -> float:
            return max(image_height if first else 0, ROW_LINE_HEIGHT * n, MIN_ROW_HEIGHT) + ROW_GAP

        emit_lines(
            "item", lines, row_height,
            {
                "item_id": item["id"],
                "image_url": item.get("image_url"),
                "quantity": str(item["quantity"]),
                "unit_price": format_money(item["unit_price_cents"], symbol),
                "line_total": format_money(item["line_total_cents"], symbol),
            },
            "item_continued", {"item_id": item["id"]},
        )
    in_table = False

    order = snapshot["order"]
    emit("totals", 3 * TEXT_LINE_HEIGHT + 12 * mm, {
        "subtotal": format_money(order["subtotal_cents"], symbol),
        "shipping": format_money(order["shipping_cost_cents"], symbol),
        "total": format_money(order["total_cents"], symbol),
    })

    for title, lines, small in _terms_paragraphs(snapshot):

        def terms_height(n: int, first: bool, title=title) -> float:
            return (n + (1 if title and first else 0)) * TEXT_LINE_HEIGHT + 2 * mm

        emit_lines(
            "terms", lines, terms_height,
            {"title": title, "small": small},
            "terms", {"title": "", "small": small, "continued": True},
        )

    emit("signatures", SIGNATURE_HEIGHT, {
        "left": snapshot["company"].get("name") or "",
        "right": (snapshot.get("customer") or {}).get("name") or order["customer_email"],
    })

    row_count = sum(1 for b in blocks if b.kind == "item")
    return QuoteLayout(blocks=blocks, page_count=page, row_count=row_count)


# =============================================================================
# Rendering
# =============================================================================

def fetch_item_images(
    snapshot: dict,
    *,
    timeout: float | None = None,
    cancel_event: threading.Event | None = None,
) -> dict[str, bytes]:
    """Download item images; any failure just leaves the image out."""
    urls = []
    for item in snapshot["items"]:
        url = item.get("image_url")
        if url and url not in urls and url.startswith(("http://", "https://")):
            urls.append(url)
    if not urls:
        return {}

    if timeout is None:
        timeout = float(current_app.config.get("IMAGE_FETCH_TIMEOUT_SECONDS", 5))

    images: dict[str, bytes] = {}
    with httpx.Client(timeout=timeout, follow_redirects=True) as client:
        for url in urls:
            check_cancelled(cancel_event)
            try:
                resp = client.get(url)
                resp.raise_for_status()
            except httpx.HTTPError as exc:
                current_app.logger.warning("Quote image fetch failed: url=%s error=%s", url, exc)
                continue
            images[url] = resp.content
    return images


def _y(top: float) -> float:
    """Top-down cursor -> reportlab bottom-up coordinate."""
    return PAGE_HEIGHT - top


def _draw_header(c: canvas.Canvas, block: Block, snapshot: dict) -> None:
    y = _y(block.top) - 8 * mm
    c.setFont(FONT_BOLD, 16)
    c.drawCentredString(PAGE_WIDTH / 2, y, snapshot["company"].get("name") or "")
    y -= 8 * mm
    c.setFont(FONT, FONT_SIZE)
    c.drawCentredString(PAGE_WIDTH / 2, y, snapshot["company"].get("email") or "")
    y -= 6 * mm
    c.line(MARGIN, y, PAGE_WIDTH - MARGIN, y)
    y -= 8 * mm
    order = snapshot["order"]
    c.setFont(FONT_BOLD, 11)
    c.drawString(MARGIN, y, f"Orçamento No. {order['order_number']}")
    c.drawRightString(PAGE_WIDTH - MARGIN, y, f"Data: {order['created_at']}")


def _draw_party(c: canvas.Canvas, block: Block) -> None:
    y = _y(block.top) - TEXT_LINE_HEIGHT
    c.setFont(FONT, FONT_SIZE)
    for line in block.data["lines"]:
        c.drawString(MARGIN, y, line)
        y -= TEXT_LINE_HEIGHT
    c.line(MARGIN, y, PAGE_WIDTH - MARGIN, y)


def _draw_table_header(c: canvas.Canvas, block: Block) -> None:
    y = _y(block.top) - 6 * mm
    c.setFillGray(0.9)
    c.rect(MARGIN, y - 2 * mm, PAGE_WIDTH - 2 * MARGIN, 8 * mm, stroke=0, fill=1)
    c.setFillGray(0)
    c.setFont(FONT_BOLD, FONT_SIZE)
    c.drawString(COL_DESCRIPTION, y, "Descrição")
    c.drawString(COL_QUANTITY, y, "Qtd")
    c.drawString(COL_UNIT_PRICE, y, "Valor Unit.")
    c.drawRightString(COL_TOTAL, y, "Total")


def _draw_item_lines(c: canvas.Canvas, block: Block) -> None:
    y = _y(block.top) - 5 * mm
    c.setFont(FONT, FONT_SIZE)
    for i, line in enumerate(block.data["lines"]):
        c.drawString(COL_DESCRIPTION, y - i * ROW_LINE_HEIGHT, line)


def _draw_item(c: canvas.Canvas, block: Block, images: dict[str, bytes]) -> None:
    top = _y(block.top)
    url = block.data.get("image_url")
    if url and url in images:
        try:
            c.drawImage(
                ImageReader(io.BytesIO(images[url])),
                COL_IMAGE,
                top - IMAGE_SIZE,
                IMAGE_SIZE,
                IMAGE_SIZE,
                preserveAspectRatio=True,
                mask="auto",
            )
        except Exception as exc:  # undecodable image data; keep the row
            current_app.logger.warning("Quote image render failed: url=%s error=%s", url, exc)

    y = top - 5 * mm
    _draw_item_lines(c, block)
    c.drawString(COL_QUANTITY, y, block.data["quantity"])
    c.drawString(COL_UNIT_PRICE, y, block.data["unit_price"])
    c.drawRightString(COL_TOTAL, y, block.data["line_total"])


def _draw_totals(c: canvas.Canvas, block: Block) -> None:
    y = _y(block.top) - 4 * mm
    c.line(MARGIN, y, PAGE_WIDTH - MARGIN, y)
    y -= 6 * mm
    c.setFont(FONT, FONT_SIZE)
    label_x = PAGE_WIDTH - MARGIN - 50 * mm
    c.drawRightString(label_x, y, "Subtotal:")
    c.drawRightString(COL_TOTAL, y, block.data["subtotal"])
    y -= TEXT_LINE_HEIGHT
    c.drawRightString(label_x, y, "Frete:")
    c.drawRightString(COL_TOTAL, y, block.data["shipping"])
    y -= TEXT_LINE_HEIGHT + 1 * mm
    c.setFont(FONT_BOLD, 12)
    c.drawRightString(label_x, y, "TOTAL GERAL:")
    c.drawRightString(COL_TOTAL, y, block.data["total"])


def _draw_terms(c: canvas.Canvas, block: Block) -> None:
    y = _y(block.top) - TEXT_LINE_HEIGHT
    if block.data["title"]:
        c.setFont(FONT_BOLD, FONT_SIZE - 1)
        c.drawString(MARGIN, y, block.data["title"])
        y -= TEXT_LINE_HEIGHT
    c.setFont(FONT, FONT_SIZE - 2 if block.data.get("small") else FONT_SIZE - 1)
    for line in block.data["lines"]:
        c.drawString(MARGIN, y, line)
        y -= TEXT_LINE_HEIGHT


def _draw_signatures(c: canvas.Canvas, block: Block) -> None:
    y = _y(block.top) - SIGNATURE_HEIGHT + 8 * mm
    width = 70 * mm
    left_x = MARGIN
    right_x = PAGE_WIDTH - MARGIN - width
    c.setFont(FONT, FONT_SIZE - 1)
    for x, label in ((left_x, block.data["left"]), (right_x, block.data["right"])):
        c.line(x, y, x + width, y)
        c.drawCentredString(x + width / 2, y - 4 * mm, label)


def render_quote_pdf(
    snapshot: dict,
    layout: QuoteLayout,
    images: dict[str, bytes] | None = None,
    *,
    cancel_event: threading.Event | None = None,
) -> bytes:
    images = images or {}
    buf = io.BytesIO()
    c = canvas.Canvas(buf, pagesize=A4)
    c.setTitle(f"Orçamento {snapshot['order']['order_number']}")
    c.setAuthor(snapshot["company"].get("name") or "")

    for page in range(1, layout.page_count + 1):
        for block in layout.blocks_on(page):
            if block.kind == "header":
                _draw_header(c, block, snapshot)
            elif block.kind == "party":
                _draw_party(c, block)
            elif block.kind == "table_header":
                _draw_table_header(c, block)
            elif block.kind == "item":
                check_cancelled(cancel_event)
                _draw_item(c, block, images)
            elif block.kind == "item_continued":
                _draw_item_lines(c, block)
            elif block.kind == "totals":
                _draw_totals(c, block)
            elif block.kind == "terms":
                _draw_terms(c, block)
            elif block.kind == "signatures":
                _draw_signatures(c, block)
        c.drawRightString(PAGE_WIDTH - MARGIN, 10 * mm, f"{page}/{layout.page_count}")
        c.showPage()

    c.save()
    return buf.getvalue()


# =============================================================================
# Generation
# =============================================================================

def generate_quote_document(
    order_id: int,
    actor: Actor,
    *,
    cancel_event: threading.Event | None = None,
) -> QuoteDocument:
    """
    Render and persist the quote document for an order.

    The stored artifact is overwritten on regeneration; the QuoteDocument
    row is upserted. Storage failures raise ExternalServiceError.
    """
    require_permission(actor, RESOURCE_ORDERS, "edit")
    order = get_order(order_id, actor)

    snapshot = build_quote_snapshot(order.id)
    layout = layout_quote(snapshot)
    check_cancelled(cancel_event)
    images = fetch_item_images(snapshot, cancel_event=cancel_event)
    pdf_bytes = render_quote_pdf(snapshot, layout, images, cancel_event=cancel_event)
    check_cancelled(cancel_event)

    key = storage_key_for(snapshot["order"]["order_number"])
    try:
        get_artifact_store().put(key, pdf_bytes)
    except ExternalServiceError:
        current_app.logger.exception("Quote document store failed: order=%s", snapshot["order"]["order_number"])
        raise

    def _op() -> QuoteDocument:
        doc = db.session.query(QuoteDocument).filter_by(order_id=order_id).first()
        if doc is None:
            doc = QuoteDocument(order_id=order_id)
            db.session.add(doc)
        doc.storage_key = key
        doc.content_type = "application/pdf"
        doc.page_count = layout.page_count
        doc.row_count = layout.row_count
        doc.byte_size = len(pdf_bytes)
        doc.generated_at = utcnow()
        doc.generated_by_user_id = actor.id
        return doc

    doc = run_in_transaction(_op)
    current_app.logger.info(
        "Quote document generated: order=%s pages=%s rows=%s bytes=%s",
        snapshot["order"]["order_number"], doc.page_count, doc.row_count, doc.byte_size,
    )
    return doc


def get_quote_document(order_id: int) -> QuoteDocument | None:
    return db.session.query(QuoteDocument).filter_by(order_id=order_id).first()


def regenerate_by_order_number(order_number: str, actor: Actor) -> QuoteDocument:
    return generate_quote_document(get_order_by_number(order_number).id, actor)


def _generate_task(order_id: int, actor: Actor, *, cancel_event: threading.Event) -> dict:
    return generate_quote_document(order_id, actor, cancel_event=cancel_event).to_dict()


def generate_quote_document_async(order_id: int, actor: Actor) -> TaskHandle:
    """
    Schedule generation on the task runner.

    handle.wait(DOCUMENT_TIMEOUT_SECONDS) returns the QuoteDocument dict;
    on timeout the cancel token stops rendering between rows.
    """
    return tasks.submit("generate_quote_document", _generate_task, order_id, actor)
