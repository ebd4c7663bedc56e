# smaragdus/services/exports.py
import csv
import io
from datetime import date
from typing import Any, Dict, Iterable, List

USER_HEADERS = [
    "ID", "Name", "Email", "Phone", "Role", "Preferred Currency",
    "Discount %", "Language", "Created At", "Last Sign In",
]
ORDER_HEADERS = [
    "Order Number", "Customer Name", "Customer Email", "Status", "Payment Type",
    "Currency", "Subtotal", "Discount", "Total", "Items", "Created At",
]


def to_csv(headers: List[str], rows: Iterable[List[Any]]) -> str:
    """Every cell quoted, embedded quotes doubled, None as empty."""
    buf = io.StringIO()
    writer = csv.writer(buf, quoting=csv.QUOTE_ALL, lineterminator="\n")
    writer.writerow(headers)
    for row in rows:
        writer.writerow(["" if v is None else v for v in row])
    return buf.getvalue()


def users_csv(users: List[Dict[str, Any]]) -> str:
    return to_csv(USER_HEADERS, (
        [
            u["user_id"], u["name"], u["email"], u["phone"], u["role"], u["preferred_currency"],
            u["discount_percentage"], u["language_preference"], u["created_at"], u["last_sign_in_at"],
        ]
        for u in users
    ))


def orders_csv(orders: List[Dict[str, Any]]) -> str:
    return to_csv(ORDER_HEADERS, (
        [
            o["order_number"], o["customer"]["name"], o["customer"]["email"], o["status"],
            o["payment_type"], o["currency_code"], f'{o["subtotal_amount"]:.2f}',
            f'{o["discount_amount"]:.2f}', f'{o["total_amount"]:.2f}',
            sum(i["quantity"] for i in o["items"]), o["created_at"],
        ]
        for o in orders
    ))


def export_filename(prefix: str, today: date = None) -> str:
    return f"{prefix}-export-{(today or date.today()).isoformat()}.csv"
