import asyncio
from datetime import datetime, timezone
from urllib.parse import unquote

import pytest

from orders import (
    customer_message,
    decrement_stock,
    normalize_phone,
    order_time,
    place_order,
    telegram_message,
    whatsapp_link,
)
from schemas import Order, OrderCreate, id_key
from storage import Store


def _order(**overrides):
    fields = dict(
        id=1,
        customerName="Ali",
        phone="0771234567",
        governorate="Baghdad",
        area="Mansour",
        items="Shirt",
        total=15000,
        createdAt="1/1/2026, 3:00:00 PM",
    )
    fields.update(overrides)
    return Order(**fields)


class TestNormalizePhone:
    @pytest.mark.parametrize(
        "phone, expected",
        [
            ("0771234567", "964771234567"),
            ("9647701234567", "9647701234567"),
            ("7701234567", "9647701234567"),
            (" 07701234567 ", "9647701234567"),
        ],
    )
    def test_country_code(self, phone, expected):
        assert normalize_phone(phone) == expected

    def test_other_country_code(self):
        assert normalize_phone("0501234567", country_code="966") == "966501234567"


class TestOrderTime:
    def test_uses_baghdad_time(self):
        now = datetime(2026, 1, 1, 12, 0, 0, tzinfo=timezone.utc)
        assert order_time(now=now) == "1/1/2026, 3:00:00 PM"

    def test_rolls_over_midnight(self):
        now = datetime(2026, 3, 31, 21, 30, 5, tzinfo=timezone.utc)
        assert order_time(now=now) == "4/1/2026, 12:30:05 AM"

    def test_noon(self):
        now = datetime(2026, 6, 15, 9, 0, 0, tzinfo=timezone.utc)
        assert order_time(now=now) == "6/15/2026, 12:00:00 PM"


class TestDecrementStock:
    def test_only_matching_products_change(self):
        products = [{"id": 1, "stock": 2}, {"id": 2, "stock": 5}]

        changed = decrement_stock(products, [1])

        assert changed == [1]
        assert products == [{"id": 1, "stock": 1}, {"id": 2, "stock": 5}]

    def test_stops_at_zero(self):
        products = [{"id": 1, "stock": 1}]

        changed = decrement_stock(products, [1, 1, 1])

        assert changed == [1]
        assert products[0]["stock"] == 0

    def test_skips_unknown_and_missing_stock(self):
        products = [{"id": 1}, {"id": 2, "stock": None}]
        assert decrement_stock(products, [1, 2, 3]) == []


class TestIdKey:
    @pytest.mark.parametrize(
        "value, expected",
        [(7, 7), ("007", 7), ("7.0", 7), (" 7 ", 7), (2.5, 2.5), ("abc", "abc"), ("nan", "nan")],
    )
    def test_forms(self, value, expected):
        assert id_key(value) == expected

    def test_skips_null_ids(self):
        products = [{"id": "None", "stock": 3}]
        assert decrement_stock(products, [None]) == []


class TestMessages:
    def test_customer_message_has_order_details(self):
        text = customer_message(_order())

        assert "Baghdad" in text
        assert "Mansour" in text
        assert "15000" in text
        assert "1/1/2026, 3:00:00 PM" in text
        assert "Sky Store" in text

    def test_whatsapp_link_encodes_text(self):
        link = whatsapp_link("0771234567", "hi & bye")

        assert link == "https://wa.me/964771234567?text=hi%20%26%20bye"

    def test_whatsapp_link_round_trips_arabic(self):
        text = customer_message(_order())
        link = whatsapp_link("0771234567", text)
        assert unquote(link.split("?text=", 1)[1]) == text

    def test_telegram_message_escapes_fields(self):
        order = _order(customerName="<i>x</i>", area='"Karkh"', items="[a](http://evil)")

        text = telegram_message(order, "https://wa.me/1?text=a&b")

        assert "&lt;i&gt;x&lt;/i&gt;" in text
        assert "&quot;Karkh&quot;" in text
        assert 'href="https://wa.me/1?text=a&amp;b"' in text

    def test_fractional_total_is_kept(self):
        assert "12.5" in telegram_message(_order(total=12.5), "https://wa.me/1")


class TestPlaceOrder:
    def test_decrements_then_appends(self, tmp_path):
        store = Store(tmp_path)
        store.ensure()
        (tmp_path / "products.json").write_text('[{"id": 5, "name": "Cap", "stock": 1}]', encoding="utf-8")
        payload = OrderCreate(
            customerName="Sara",
            phone="7701234567",
            gov="Erbil",
            area="Ankawa",
            items="Cap",
            total=9000,
            productIds=[5, 5],
        )

        order, message = asyncio.run(place_order(store, payload))

        assert store.products.read()[0]["stock"] == 0
        assert store.orders.read() == [order.model_dump()]
        assert order.governorate == "Erbil"
        assert "https://wa.me/9647701234567?text=" in message
