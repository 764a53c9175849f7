"""
Order mail rendering.

Mails are always built from a fresh read of the order, never from the request
that created it, so they show what was actually persisted.
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from html import escape
from typing import Dict, List, Optional, Tuple

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from db.database import Order, OrderItem
from services.pricing import resolve_line_price

LineKey = Tuple[int, Optional[int]]


@dataclass
class Party:
    id: int
    name: str
    email: Optional[str]


@dataclass
class MailLine:
    product_id: int
    variant_id: Optional[int]
    product_name: str
    sku_id: Optional[str]
    variant: str
    quantity: int
    unit_price: Decimal

    @property
    def key(self) -> LineKey:
        return (self.product_id, self.variant_id)

    @property
    def amount(self) -> Decimal:
        return self.unit_price * self.quantity


@dataclass
class OrderSnapshot:
    order_id: int
    order_date: datetime
    delivery_date: date
    delivery_slot: Optional[str]
    status: str
    total_amount: Decimal
    shopkeeper: Party
    distributor: Party
    salesperson: Party
    lines: List[MailLine] = field(default_factory=list)


async def load_order_snapshot(session: AsyncSession, order_id: int) -> Optional[OrderSnapshot]:
    res = await session.execute(
        select(Order)
        .options(
            selectinload(Order.shopkeeper),
            selectinload(Order.distributor),
            selectinload(Order.salesperson),
            selectinload(Order.items).selectinload(OrderItem.product),
            selectinload(Order.items).selectinload(OrderItem.variant),
        )
        .where(Order.id == order_id)
    )
    o = res.scalar_one_or_none()
    if o is None:
        return None

    lines: List[MailLine] = []
    for it in o.items or []:
        product = it.product
        variant = it.variant if it.variant is not None and it.variant.product_id == it.product_id else None
        product_prices = {it.product_id: Decimal(product.retailer_price)} if product is not None else {}
        variant_prices = (
            {(it.product_id, variant.id): Decimal(variant.price)}
            if variant is not None and variant.price is not None
            else {}
        )
        price = resolve_line_price(it.product_id, it.variant_id, product_prices, variant_prices)
        lines.append(
            MailLine(
                product_id=it.product_id,
                variant_id=it.variant_id,
                product_name=getattr(product, "name", None) or f"Product #{it.product_id}",
                sku_id=getattr(product, "sku_id", None),
                variant=variant.label if variant is not None else "",
                quantity=int(it.quantity),
                unit_price=price if price is not None else Decimal("0"),
            )
        )

    return OrderSnapshot(
        order_id=o.id,
        order_date=o.order_date,
        delivery_date=o.delivery_date,
        delivery_slot=o.delivery_slot,
        status=o.status,
        total_amount=Decimal(o.total_amount or 0),
        shopkeeper=Party(o.shopkeeper_id, getattr(o.shopkeeper, "name", ""), getattr(o.shopkeeper, "email", None)),
        distributor=Party(o.distributor_id, getattr(o.distributor, "name", ""), getattr(o.distributor, "email", None)),
        salesperson=Party(o.salesperson_id, getattr(o.salesperson, "name", ""), getattr(o.salesperson, "email", None)),
        lines=lines,
    )


def recipients_for(snapshot: OrderSnapshot) -> List[str]:
    out: List[str] = []
    for party in (snapshot.shopkeeper, snapshot.salesperson, snapshot.distributor):
        email = (party.email or "").strip()
        if email and email.lower() not in {e.lower() for e in out}:
            out.append(email)
    return out


def previous_quantities(previous_items: List[dict]) -> Dict[LineKey, int]:
    out: Dict[LineKey, int] = {}
    for row in previous_items or []:
        key = (int(row["product_id"]), row.get("variant_id"))
        out[key] = out.get(key, 0) + int(row.get("quantity") or 0)
    return out


_STYLE = """
    body { font-family: Arial, sans-serif; margin: 20px; padding: 20px; background-color: #f9f9f9; }
    .container { max-width: 600px; margin: auto; background: #fff; padding: 20px; border-radius: 10px;
                 box-shadow: 0px 0px 10px rgba(0, 0, 0, 0.1); }
    h2 { color: #333; text-align: center; }
    .highlight { font-weight: bold; color: #d9534f; }
    table { width: 100%; border-collapse: collapse; margin-top: 20px; }
    th, td { border: 1px solid #ddd; padding: 10px; text-align: left; }
    th { background-color: #f4f4f4; }
    .total { font-weight: bold; color: #d9534f; }
    .revised { background-color: #fff3cd; font-weight: bold; }
    .removed { color: #999; text-decoration: line-through; }
    .footer { text-align: center; margin-top: 20px; font-size: 14px; color: #777; }
"""


def _money(symbol: str, value: Decimal) -> str:
    return f"{escape(symbol)}{Decimal(value):.2f}"


def _party(label: str, party: Party, highlight: bool = False) -> str:
    name = escape(party.name or "")
    if highlight:
        name = f'<span class="highlight">{name}</span>'
    email = f" ({escape(party.email)})" if party.email else ""
    return f"<p><strong>{label}:</strong> {name}{email}</p>"


def _product_cell(line: MailLine) -> str:
    name = escape(line.product_name)
    if line.variant:
        name += f" <small>({escape(line.variant)})</small>"
    return name


def _page(title: str, snapshot: OrderSnapshot, table: str, signature: str) -> str:
    slot = f" ({escape(snapshot.delivery_slot)})" if snapshot.delivery_slot else ""
    return f"""<html>
<head><style>{_STYLE}</style></head>
<body>
  <div class="container">
    <h2>{escape(title)}</h2>
    <p><strong>Order ID:</strong> {snapshot.order_id}</p>
    {_party("Shopkeeper", snapshot.shopkeeper, highlight=True)}
    {_party("Salesperson", snapshot.salesperson)}
    {_party("Distributor", snapshot.distributor)}
    <p><strong>Expected Delivery Date:</strong> {snapshot.delivery_date.strftime("%a %b %d %Y")}{slot}</p>
    {table}
    <p class="footer">Thanks &amp; Regards,<br>{escape(signature)}</p>
  </div>
</body>
</html>"""


def render_order_confirmation(snapshot: OrderSnapshot, currency: str, signature: str) -> Tuple[str, str]:
    rows = "".join(
        f"<tr><td>{_product_cell(ln)}</td><td>{ln.quantity}</td><td>{_money(currency, ln.amount)}</td></tr>"
        for ln in snapshot.lines
    )
    table = (
        "<table>"
        "<tr><th>Product Name</th><th>Quantity Ordered</th><th>Amount</th></tr>"
        f"{rows}"
        f'<tr><td colspan="2" class="total">Total Amount</td><td class="total">{_money(currency, snapshot.total_amount)}</td></tr>'
        "</table>"
    )
    subject = f"Order Confirmation - Order #{snapshot.order_id}"
    return subject, _page("Order Confirmation", snapshot, table, signature)


def render_order_update(
    snapshot: OrderSnapshot,
    previous_items: List[dict],
    currency: str,
    signature: str,
) -> Tuple[str, str]:
    """Like the confirmation, plus a column with the quantity before the edit; changed lines are highlighted."""
    before = previous_quantities(previous_items)
    current_keys = {ln.key for ln in snapshot.lines}

    rows = []
    for ln in snapshot.lines:
        prev = before.get(ln.key)
        if prev is None:
            cls, prev_cell = ' class="revised"', "new"
        elif prev != ln.quantity:
            cls, prev_cell = ' class="revised"', str(prev)
        else:
            cls, prev_cell = "", str(prev)
        rows.append(
            f"<tr{cls}><td>{_product_cell(ln)}</td><td>{prev_cell}</td><td>{ln.quantity}</td>"
            f"<td>{_money(currency, ln.amount)}</td></tr>"
        )
    for (product_id, variant_id), prev in before.items():
        if (product_id, variant_id) in current_keys:
            continue
        label = f"Product #{product_id}" + (f" / variant #{variant_id}" if variant_id is not None else "")
        rows.append(f'<tr class="removed"><td>{label}</td><td>{prev}</td><td>0</td><td>removed</td></tr>')

    table = (
        "<table>"
        "<tr><th>Product Name</th><th>Previous Quantity</th><th>Revised Quantity</th><th>Amount</th></tr>"
        f"{''.join(rows)}"
        f'<tr><td colspan="3" class="total">Total Amount</td><td class="total">{_money(currency, snapshot.total_amount)}</td></tr>'
        "</table>"
    )
    status = f"<p><strong>Status:</strong> {escape(snapshot.status)}</p>"
    subject = f"Order Updated - Order #{snapshot.order_id}"
    return subject, _page("Order Updated", snapshot, status + table, signature)
