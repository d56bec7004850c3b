"""CSV export of a merchant's orders."""

import csv
from typing import Iterable, TextIO

from django.utils import timezone

from .models import OrderModel

COLUMNS = (
    "Order Number",
    "Date",
    "Time",
    "Status",
    "Customer Name",
    "Customer Phone",
    "Customer Email",
    "Delivery Method",
    "Delivery Address",
    "Items",
    "Subtotal",
    "Delivery Fee",
    "Total",
    "Payment Status",
    "Payment Reference",
    "Notes",
)

# spreadsheet apps evaluate cells starting with these
_FORMULA_PREFIXES = ("=", "+", "-", "@", "\t", "\r")


def _cell(value) -> str:
    text = "" if value is None else str(value)
    if text.startswith(_FORMULA_PREFIXES):
        return "'" + text
    return text


def _address(data) -> str:
    if not data:
        return ""
    parts = [data.get("line1"), data.get("line2"), data.get("postal_code")]
    return " ".join(p for p in parts if p)


def _items(order: OrderModel) -> str:
    described = []
    for item in order.items.all():
        text = f"{item.product_name} x{item.quantity}"
        if item.variant:
            text += f" [{item.variant}]"
        if item.notes:
            text += f" ({item.notes})"
        described.append(text)
    return "; ".join(described)


def order_row(order: OrderModel) -> list:
    created = timezone.localtime(order.created_at)
    return [_cell(v) for v in (
        order.order_number,
        created.strftime("%Y-%m-%d"),
        created.strftime("%H:%M:%S"),
        order.status,
        order.customer_name,
        order.customer_phone,
        order.customer_email,
        order.delivery_method,
        _address(order.delivery_address),
        _items(order),
        f"{order.subtotal:.2f}",
        f"{order.delivery_fee:.2f}",
        f"{order.total:.2f}",
        order.payment_status,
        order.payment_reference,
        order.delivery_notes,
    )]


def write_orders_csv(orders: Iterable[OrderModel], out: TextIO) -> int:
    """Write the header and one row per order; return the number of orders."""
    writer = csv.writer(out)
    writer.writerow(COLUMNS)
    count = 0
    for order in orders:
        writer.writerow(order_row(order))
        count += 1
    return count
