"""
Order intake: stock decrement, order log append and notification text.
"""

from datetime import datetime, timezone
from html import escape
from typing import Iterable, List, Optional, Tuple
from urllib.parse import quote
from zoneinfo import ZoneInfo

import structlog

from schemas import Order, OrderCreate, id_key
from storage import Store

logger = structlog.get_logger(__name__)


def order_time(tz_name: str = "Asia/Baghdad", now: Optional[datetime] = None) -> str:
    """Civil time in the store's zone, e.g. ``10/17/2026, 3:04:05 PM``."""
    now = now or datetime.now(timezone.utc)
    local = now.astimezone(ZoneInfo(tz_name))
    hour = local.hour % 12 or 12
    return (
        f"{local.month}/{local.day}/{local.year}, "
        f"{hour}:{local.minute:02d}:{local.second:02d} {'AM' if local.hour < 12 else 'PM'}"
    )


def normalize_phone(phone: str, country_code: str = "964") -> str:
    phone = phone.strip()
    if phone.startswith("0"):
        return country_code + phone[1:]
    if phone.startswith(country_code):
        return phone
    return country_code + phone


def decrement_stock(products: List[dict], product_ids: Iterable) -> List[int]:
    """Take one unit off each referenced product that still has stock.

    Ids are compared numerically when they look like numbers ("7" and "007"
    both match 7). Unknown, null and sold-out ids are skipped.
    Returns the ids that were actually decremented, in request order.
    """
    by_id = {id_key(p.get("id")): p for p in products}
    changed = []
    for pid in product_ids:
        product = None if pid is None else by_id.get(id_key(pid))
        if product is None or (product.get("stock") or 0) <= 0:
            continue
        product["stock"] -= 1
        changed.append(product["id"])
    return changed


def customer_message(order: Order, store_name: str = "Sky Store") -> str:
    return (
        "السلام عليكم\n"
        f"فريق {store_name} لتأكيد الطلبات 🤍\n"
        "🧾 تفاصيل الطلب:\n"
        f"📍 المحافظة: {order.governorate}\n"
        f"📍 المنطقة: {order.area}\n"
        f"📞 رقم الهاتف: {order.phone}\n"
        f"📦 المنتجات: {order.items}\n"
        f"💰 السعر النهائي: {format_total(order.total)}\n"
        f"⏰ Order Time: {order.createdAt}\n"
        "✅ تم تأكيد الطلب\n"
        "سيتم تجهيز الطلب وشحنه إلى عنوانكم في أقرب وقت ممكن 🚚\n"
        f"شكرًا لاختياركم {store_name} 🤍"
    )


def whatsapp_link(phone: str, text: str, country_code: str = "964") -> str:
    return f"https://wa.me/{quote(normalize_phone(phone, country_code), safe='')}?text={quote(text, safe='')}"


def telegram_message(order: Order, wa_link: str, store_name: str = "Sky Store") -> str:
    """Internal chat notification (HTML parse mode); every order field is escaped."""
    e = escape
    return (
        f"🌟 <b>طلب جديد من {e(store_name)}</b> 🌟\n\n"
        f"👤 <b>الزبون:</b> {e(order.customerName)}\n"
        f"📦 <b>المنتجات:</b> {e(order.items)}\n"
        f"💰 <b>الإجمالي:</b> {e(format_total(order.total))}\n\n"
        f"📍 <b>الموقع:</b> {e(order.governorate)} - {e(order.area)}\n"
        f"📞 <b>الهاتف:</b> <code>{e(order.phone)}</code>\n\n"
        f"⏰ <b>Order Time:</b> {e(order.createdAt)}\n\n"
        f'✅ <a href="{e(wa_link, quote=True)}">تأكيد عبر واتساب</a>'
    )


def format_total(total: float) -> str:
    return str(int(total)) if float(total).is_integer() else str(total)


async def place_order(
    store: Store,
    payload: OrderCreate,
    tz_name: str = "Asia/Baghdad",
    store_name: str = "Sky Store",
    country_code: str = "964",
) -> Tuple[Order, str]:
    """Run the intake workflow and return the stored order and its chat message.

    The caller has already checked ``payload.missing_fields()``. Raises
    ``StorageError`` if either collection can't be written; stock changes
    already written are not rolled back.
    """
    created_at = order_time(tz_name)

    if payload.productIds is not None:
        async with store.products.transaction() as products:
            changed = decrement_stock(products, payload.productIds)
        logger.info("stock_decremented", requested=len(payload.productIds), product_ids=changed)

    order = Order(
        id=store.ids.next(),
        customerName=payload.customerName,
        phone=payload.phone,
        governorate=payload.governorate,
        area=payload.area,
        items=payload.items,
        total=payload.total,
        createdAt=created_at,
    )
    async with store.orders.transaction() as orders:
        orders.append(order.model_dump())

    logger.info("order_created", order_id=order.id, total=order.total, governorate=order.governorate)

    link = whatsapp_link(order.phone, customer_message(order, store_name), country_code)
    return order, telegram_message(order, link, store_name)
