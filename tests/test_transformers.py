from datetime import datetime

import pytest
from sqlmodel import select

from app.core.exceptions import MalformedPayload, UnknownCollection
from app.models.nuvemshop import NuvemshopCoupon, NuvemshopCustomer, NuvemshopOrder, NuvemshopProduct
from app.services.nuvemshop.reconciler import CollectionReconciler, get_collection_mapping
from app.services.nuvemshop.transformers import (
    extract_coupon_code,
    extract_portuguese_name,
    parse_amount,
    transform_coupon,
    transform_customer,
    transform_order,
    transform_product,
)

from conftest import order_record


@pytest.mark.parametrize("value,expected", [
    ("123.45", 123.45),
    (10, 10.0),
    (None, 0.0),
    ("", 0.0),
    ("abc", None),
])
def test_parse_amount(value, expected):
    assert parse_amount(value) == expected


def test_extract_portuguese_name():
    assert extract_portuguese_name({"es": "Maceta", "pt": "Vaso"}) == "Vaso"
    assert extract_portuguese_name({"es": "Maceta"}) == "Maceta"
    assert extract_portuguese_name("Vaso") == "Vaso"
    assert extract_portuguese_name(None) is None


def test_extract_coupon_code():
    assert extract_coupon_code([{"code": "PROMO10"}]) == "PROMO10"
    assert extract_coupon_code({"code": "FRETE"}) == "FRETE"
    assert extract_coupon_code("null") is None
    assert extract_coupon_code([]) is None


def test_transform_order():
    row = transform_order(order_record(
        42,
        coupon=[{"code": "PROMO10"}],
        payment_details={"method": "credit_card"},
        shipping_address={"province": "São Paulo"},
        discount_coupon="5.00",
    ))
    assert row["order_id"] == "42"
    assert row["order_number"] == "1042"
    assert row["coupon"] == "PROMO10"
    assert row["payment_method"] == "credit_card"
    assert row["province"] == "São Paulo"
    assert row["discount_coupon"] == 5.0
    assert row["total"] == 110.5
    assert row["api_updated_at"] == datetime(2025, 9, 1, 10, 0)
    assert row["sync_status"] == "synced"
    assert row["raw"]["id"] == 42


def test_transform_product():
    row = transform_product({
        "id": 9,
        "name": {"pt": "Vaso de cerâmica", "es": "Maceta"},
        "handle": {"pt": "vaso-de-ceramica"},
        "brand": "",
        "tags": ["casa", "jardim"],
        "published": True,
        "images": [{"id": 1, "src": "a.jpg"}, {"id": 2, "src": "b.jpg", "featured": True}],
        "variants": [{"id": 99, "price": "10.00"}],
        "updated_at": "2025-09-01T10:00:00-0300",
    })
    assert row["product_id"] == "9"
    assert row["name_pt"] == "Vaso de cerâmica"
    assert row["handle"] == "vaso-de-ceramica"
    assert row["brand"] is None
    assert row["tags"] == "casa, jardim"
    assert row["featured_image_id"] == "2"
    assert row["featured_image_src"] == "b.jpg"
    assert row["published"] is True
    assert row["api_updated_at"] == datetime(2025, 9, 1, 13, 0)


def test_transform_coupon_and_customer():
    coupon = transform_coupon({"id": 3, "code": "FRETE", "type": "shipping", "valid": True, "used": None,
                               "start_date": "2025-09-01", "end_date": None})
    assert coupon["coupon_id"] == "3"
    assert coupon["used"] == 0
    assert coupon["start_date"] == datetime(2025, 9, 1)
    assert coupon["end_date"] is None

    customer = transform_customer({"id": 5, "name": "Ana", "total_spent": "300.10", "last_order_id": 42})
    assert customer["customer_id"] == "5"
    assert customer["total_spent"] == 300.1
    assert customer["last_order_id"] == "42"


def test_record_without_id_is_malformed():
    with pytest.raises(MalformedPayload):
        transform_order({"number": 1})


def test_unknown_collection():
    with pytest.raises(UnknownCollection):
        get_collection_mapping("invoices")


def test_upsert_is_idempotent_by_key(session):
    reconciler = CollectionReconciler(session, "orders")
    assert reconciler.upsert_records([order_record(1), order_record(2)]) == 2
    assert reconciler.upsert_records([order_record(2, status="closed"), order_record(3)]) == 2

    session.expire_all()
    orders = session.exec(select(NuvemshopOrder)).all()
    assert sorted(o.order_id for o in orders) == ["1", "2", "3"]
    assert session.get(NuvemshopOrder, "2").status == "closed"
    assert all(o.sync_status == "synced" for o in orders)


def test_upsert_skips_malformed_and_duplicate_keys(session):
    reconciler = CollectionReconciler(session, "customers")
    written = reconciler.upsert_records([
        {"id": 1, "name": "Ana"},
        {"name": "no id"},
        {"id": 1, "name": "Ana Maria"},
    ])
    assert written == 1
    assert session.get(NuvemshopCustomer, "1").name == "Ana Maria"


def test_mark_deleted(session):
    reconciler = CollectionReconciler(session, "coupons")
    reconciler.upsert_records([{"id": 3, "code": "FRETE"}])
    assert reconciler.mark_deleted("3") == 1
    assert reconciler.mark_deleted("404") == 0
    session.expire_all()
    assert session.get(NuvemshopCoupon, "3").sync_status == "deleted"
    deleted = session.exec(select(NuvemshopCoupon).where(NuvemshopCoupon.sync_status == "deleted")).all()
    assert [c.coupon_id for c in deleted] == ["3"]


def test_product_upsert_roundtrip(session):
    CollectionReconciler(session, "products").upsert_records([{"id": 9, "name": {"pt": "Vaso"}, "tags": "casa"}])
    product = session.get(NuvemshopProduct, "9")
    assert product.name_pt == "Vaso"
    assert product.tags == "casa"
    assert product.raw == {"id": 9, "name": {"pt": "Vaso"}, "tags": "casa"}
