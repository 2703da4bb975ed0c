"""
 * @file: transformers.py
 * @description: Преобразование записей API NuvemShop в строки локальных таблиц
 * @dependencies: date_utils
 * @created: 2025-09-02
"""

from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Optional, Tuple

from app.core.exceptions import MalformedPayload
from app.utils.date_utils import parse_api_datetime, utcnow


def parse_amount(value: Any) -> Optional[float]:
    """NuvemShop отдаёт суммы строками: "123.45". Пустое значение -> 0."""
    if value is None or value == "":
        return 0.0
    try:
        return float(Decimal(str(value)))
    except (InvalidOperation, ValueError):
        return None


def extract_portuguese_name(name: Any) -> Optional[str]:
    """Название на португальском из мультиязычного объекта {"pt": ..., "es": ...}."""
    if not name:
        return None
    if isinstance(name, str):
        return name
    if isinstance(name, dict):
        for lang in ("pt", "por", "en", "es"):
            if name.get(lang):
                return name[lang]
        return next((v for v in name.values() if v), None)
    return None


def featured_image_info(images: Any) -> Tuple[Optional[str], Optional[str]]:
    if not images or not isinstance(images, list):
        return None, None
    featured = next((img for img in images if isinstance(img, dict) and img.get("featured")), images[0])
    if not isinstance(featured, dict):
        return None, None
    image_id = featured.get("id")
    return (str(image_id) if image_id is not None else None), featured.get("src")


def extract_coupon_code(coupon: Any) -> Optional[str]:
    """Код применённого купона: строка, объект {"code": ...} или список таких объектов."""
    if not coupon:
        return None
    if isinstance(coupon, str):
        text = coupon.strip()
        return None if text in ("", "null", "undefined") else text
    if isinstance(coupon, list):
        first = coupon[0]
        return first.get("code") if isinstance(first, dict) else None
    if isinstance(coupon, dict):
        return coupon.get("code")
    return None


def extract_payment_method(payment_details: Any) -> Optional[str]:
    if isinstance(payment_details, dict):
        payment_details = [payment_details]
    if not payment_details or not isinstance(payment_details, list):
        return None
    first = payment_details[0] or {}
    method = first.get("payment_method")
    if isinstance(method, dict):
        return method.get("name")
    return method or first.get("method") or first.get("type")


def extract_province(address: Any) -> Optional[str]:
    if not isinstance(address, dict):
        return None
    return address.get("province") or address.get("state")


def _record_id(record: Dict[str, Any]) -> str:
    record_id = record.get("id") if isinstance(record, dict) else None
    if record_id is None or record_id == "":
        raise MalformedPayload("record without id", field_name="id")
    return str(record_id)


def _base_fields(record: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "sync_status": "synced",
        "last_synced_at": utcnow(),
        "api_updated_at": parse_api_datetime(record.get("updated_at")),
        "raw": record,
    }


def transform_order(order: Dict[str, Any]) -> Dict[str, Any]:
    row = _base_fields(order)
    row.update({
        "order_id": _record_id(order),
        "order_number": str(order.get("number") or order.get("name") or "") or None,
        "contact_name": order.get("contact_name"),
        "status": order.get("status"),
        "payment_status": order.get("payment_status"),
        "fulfillment_status": order.get("shipping_status") or order.get("fulfillment_status"),
        "payment_method": extract_payment_method(order.get("payment_details")),
        "province": extract_province(order.get("shipping_address")),
        "coupon": extract_coupon_code(order.get("coupon")),
        "subtotal": parse_amount(order.get("subtotal")),
        "shipping_cost_customer": parse_amount(order.get("shipping_cost_customer")),
        "promotional_discount": parse_amount(order.get("promotional_discount")),
        "discount_coupon": parse_amount(order.get("discount_coupon")),
        "discount_gateway": parse_amount(order.get("discount_gateway")),
        "total_discount_amount": parse_amount(order.get("total_discount_amount")),
        "total": parse_amount(order.get("total")),
        "products": order.get("products") or [],
        "created_at_nuvemshop": parse_api_datetime(order.get("created_at")),
        "completed_at": parse_api_datetime(order.get("completed_at")),
    })
    return row


def transform_product(product: Dict[str, Any]) -> Dict[str, Any]:
    image_id, image_src = featured_image_info(product.get("images"))
    tags = product.get("tags")
    if isinstance(tags, list):
        tags = ", ".join(str(t) for t in tags)
    row = _base_fields(product)
    row.update({
        "product_id": _record_id(product),
        "name_pt": extract_portuguese_name(product.get("name")),
        "brand": product.get("brand") or None,
        "handle": extract_portuguese_name(product.get("handle")),
        "published": bool(product.get("published")),
        "free_shipping": bool(product.get("free_shipping")),
        "featured_image_id": image_id,
        "featured_image_src": image_src,
        "tags": tags or None,
        "variants": product.get("variants") or [],
    })
    return row


def transform_coupon(coupon: Dict[str, Any]) -> Dict[str, Any]:
    row = _base_fields(coupon)
    row.update({
        "coupon_id": _record_id(coupon),
        "code": coupon.get("code"),
        "type": coupon.get("type"),
        "value": parse_amount(coupon.get("value")),
        "valid": bool(coupon.get("valid")),
        "used": int(coupon.get("used") or 0),
        "max_uses": coupon.get("max_uses"),
        "start_date": parse_api_datetime(coupon.get("start_date")),
        "end_date": parse_api_datetime(coupon.get("end_date")),
    })
    return row


def transform_customer(customer: Dict[str, Any]) -> Dict[str, Any]:
    last_order_id = customer.get("last_order_id")
    row = _base_fields(customer)
    row.update({
        "customer_id": _record_id(customer),
        "name": customer.get("name"),
        "total_spent": parse_amount(customer.get("total_spent")),
        "last_order_id": str(last_order_id) if last_order_id is not None else None,
        "accepts_marketing": bool(customer.get("accepts_marketing")),
    })
    return row
