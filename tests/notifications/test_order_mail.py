from datetime import date, datetime, timezone
from decimal import Decimal

from services.order_mail import (
    MailLine,
    OrderSnapshot,
    Party,
    recipients_for,
    render_order_confirmation,
    render_order_update,
)


def _snapshot(**overrides):
    data = dict(
        order_id=12,
        order_date=datetime(2024, 6, 1, tzinfo=timezone.utc),
        delivery_date=date(2024, 6, 3),
        delivery_slot="Morning",
        status="PENDING",
        total_amount=Decimal("250.00"),
        shopkeeper=Party(5, "Tom & Jerry's <Store>", " Shop@Example.com "),
        distributor=Party(7, "Depot", "depot@example.com"),
        salesperson=Party(3, "Ravi", "shop@example.com"),
        lines=[
            MailLine(1, None, "Rice", "RICE-5", "", 2, Decimal("100.00")),
            MailLine(2, 11, "Oil", "OIL-1", "Size: 5L", 1, Decimal("50.00")),
        ],
    )
    data.update(overrides)
    return OrderSnapshot(**data)


def test_recipients_are_trimmed_and_deduplicated():
    assert recipients_for(_snapshot()) == ["Shop@Example.com", "depot@example.com"]


def test_recipients_skip_missing_addresses():
    snap = _snapshot(shopkeeper=Party(6, "No Mail", None))
    assert recipients_for(snap) == ["shop@example.com", "depot@example.com"]


def test_confirmation_escapes_names():
    subject, html = render_order_confirmation(_snapshot(), "$", "Team")
    assert subject == "Order Confirmation - Order #12"
    assert "Tom &amp; Jerry&#x27;s &lt;Store&gt;" in html
    assert "<Store>" not in html
    assert "$200.00" in html
    assert "$250.00" in html
    assert "Mon Jun 03 2024 (Morning)" in html


def test_update_marks_changed_new_and_removed_lines():
    previous = [
        {"product_id": 1, "variant_id": None, "quantity": 2},
        {"product_id": 3, "variant_id": None, "quantity": 5},
    ]
    subject, html = render_order_update(_snapshot(), previous, "$", "Team")
    assert subject == "Order Updated - Order #12"
    # Rice unchanged, Oil new, product 3 removed
    assert html.count('class="revised"') == 1
    assert ">new<" in html
    assert 'class="removed"><td>Product #3</td><td>5</td>' in html
