"""
 * @file: nuvemshop.py
 * @description: Локальные копии коллекций NuvemShop (заказы, товары, купоны, покупатели)
 * @dependencies: SQLModel, datetime
 * @created: 2025-09-02
"""

from datetime import datetime
from typing import Optional, Dict, Any, List

from sqlalchemy import JSON
from sqlmodel import SQLModel, Field

from app.utils.date_utils import utcnow


class NuvemshopRecordBase(SQLModel):
    """Общие поля синхронизируемых записей."""
    sync_status: str = Field(default="synced", index=True, max_length=16, description="synced, deleted")
    last_synced_at: datetime = Field(default_factory=utcnow, index=True)
    api_updated_at: Optional[datetime] = Field(default=None, description="updated_at записи на платформе")
    raw: Optional[Dict[str, Any]] = Field(default=None, sa_type=JSON, description="Исходная запись API")


class NuvemshopOrder(NuvemshopRecordBase, table=True):
    __tablename__ = "nuvemshop_orders"

    order_id: str = Field(primary_key=True, max_length=64)
    order_number: Optional[str] = Field(default=None, max_length=64)
    contact_name: Optional[str] = Field(default=None)
    status: Optional[str] = Field(default=None, max_length=32)
    payment_status: Optional[str] = Field(default=None, index=True, max_length=32)
    fulfillment_status: Optional[str] = Field(default=None, max_length=32)
    payment_method: Optional[str] = Field(default=None)
    province: Optional[str] = Field(default=None)
    coupon: Optional[str] = Field(default=None, max_length=128)
    subtotal: Optional[float] = Field(default=None)
    shipping_cost_customer: Optional[float] = Field(default=None)
    promotional_discount: Optional[float] = Field(default=None)
    discount_coupon: Optional[float] = Field(default=None)
    discount_gateway: Optional[float] = Field(default=None)
    total_discount_amount: Optional[float] = Field(default=None)
    total: Optional[float] = Field(default=None)
    products: Optional[List[Dict[str, Any]]] = Field(default=None, sa_type=JSON)
    created_at_nuvemshop: Optional[datetime] = Field(default=None, index=True)
    completed_at: Optional[datetime] = Field(default=None)


class NuvemshopProduct(NuvemshopRecordBase, table=True):
    __tablename__ = "nuvemshop_products"

    product_id: str = Field(primary_key=True, max_length=64)
    name_pt: Optional[str] = Field(default=None)
    brand: Optional[str] = Field(default=None, index=True)
    handle: Optional[str] = Field(default=None)
    published: bool = Field(default=False)
    free_shipping: bool = Field(default=False)
    featured_image_id: Optional[str] = Field(default=None, max_length=64)
    featured_image_src: Optional[str] = Field(default=None)
    tags: Optional[str] = Field(default=None)
    variants: Optional[List[Dict[str, Any]]] = Field(default=None, sa_type=JSON)


class NuvemshopCoupon(NuvemshopRecordBase, table=True):
    __tablename__ = "nuvemshop_coupons"

    coupon_id: str = Field(primary_key=True, max_length=64)
    code: Optional[str] = Field(default=None, index=True, max_length=128)
    type: Optional[str] = Field(default=None, max_length=16, description="percentage, absolute, shipping")
    value: Optional[float] = Field(default=None)
    valid: bool = Field(default=False)
    used: int = Field(default=0)
    max_uses: Optional[int] = Field(default=None)
    start_date: Optional[datetime] = Field(default=None)
    end_date: Optional[datetime] = Field(default=None)


class NuvemshopCustomer(NuvemshopRecordBase, table=True):
    __tablename__ = "nuvemshop_customers"

    customer_id: str = Field(primary_key=True, max_length=64)
    name: Optional[str] = Field(default=None)
    total_spent: Optional[float] = Field(default=None)
    last_order_id: Optional[str] = Field(default=None, max_length=64)
    accepts_marketing: bool = Field(default=False)
