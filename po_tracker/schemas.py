from __future__ import annotations

from datetime import date
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field

from po_tracker.models import (
    CostItemType,
    DeliveryStatus,
    InventoryTransactionType,
    OrderStatus,
    PackagingUnit,
    PaymentSourceType,
    PaymentType,
)


class PurchaseOrderCreate(BaseModel):
    product_name: str
    supplier_name: str | None = None
    main_image_url: str | None = None
    quantity: int = 0
    unit_price: Decimal = Decimal('0')
    back_margin: Decimal | None = None
    commission_rate: Decimal = Decimal('0')
    commission_type: str | None = None
    shipping_cost: Decimal = Decimal('0')
    warehouse_shipping_cost: Decimal = Decimal('0')
    advance_payment_rate: Decimal = Decimal('0')
    is_confirmed: bool = False
    delivery_status: DeliveryStatus | None = None
    order_date: date | None = None
    estimated_shipment_date: date | None = None
    work_start_date: date | None = None
    work_end_date: date | None = None


class PurchaseOrderUpdate(BaseModel):
    # Unknown and derived fields are passed through so the service can reject them by name.
    model_config = ConfigDict(extra='allow')

    product_name: str | None = None
    supplier_name: str | None = None
    main_image_url: str | None = None
    quantity: int | None = None
    unit_price: Decimal | None = None
    back_margin: Decimal | None = None
    commission_rate: Decimal | None = None
    commission_type: str | None = None
    shipping_cost: Decimal | None = None
    warehouse_shipping_cost: Decimal | None = None
    advance_payment_rate: Decimal | None = None
    advance_payment_date: date | None = None
    balance_payment_date: date | None = None
    is_confirmed: bool | None = None
    order_status: OrderStatus | None = None
    delivery_status: DeliveryStatus | None = None
    order_date: date | None = None
    estimated_shipment_date: date | None = None
    work_start_date: date | None = None
    work_end_date: date | None = None


class ReorderRequest(BaseModel):
    quantity: int
    unit_price: Decimal | None = None
    order_date: date | None = None
    estimated_shipment_date: date | None = None


class FactoryShipmentCreate(BaseModel):
    quantity: int
    shipment_date: date | None = None
    tracking_number: str | None = None
    receive_date: date | None = None


class FactoryShipmentUpdate(BaseModel):
    quantity: int | None = None
    shipment_date: date | None = None
    tracking_number: str | None = None
    receive_date: date | None = None
    display_order: int | None = None


class CostItemPayload(BaseModel):
    item_type: CostItemType
    name: str
    unit_price: Decimal = Decimal('0')
    quantity: int = 0
    is_admin_only: bool = False
    display_order: int | None = None


class CostItemsSave(BaseModel):
    items: list[CostItemPayload]


class PackingListCreate(BaseModel):
    code: str
    shipment_date: date
    logistics_company: str | None = None
    warehouse_arrival_date: date | None = None
    actual_weight: Decimal | None = None
    weight_ratio: Decimal | None = None
    shipping_cost: Decimal = Decimal('0')
    payment_date: date | None = None


class PackingListUpdate(BaseModel):
    code: str | None = None
    shipment_date: date | None = None
    logistics_company: str | None = None
    warehouse_arrival_date: date | None = None
    actual_weight: Decimal | None = None
    weight_ratio: Decimal | None = None
    shipping_cost: Decimal | None = None
    payment_date: date | None = None


class PackingListItemCreate(BaseModel):
    purchase_order_id: int | None = None
    product_name: str | None = None
    entry_quantity: str | None = None
    box_count: int = 0
    unit: PackagingUnit = PackagingUnit.BOX
    total_quantity: int = 0
    is_factory_to_warehouse: bool = False


class PackingListItemUpdate(BaseModel):
    purchase_order_id: int | None = None
    product_name: str | None = None
    entry_quantity: str | None = None
    box_count: int | None = None
    unit: PackagingUnit | None = None
    total_quantity: int | None = None


class ArrivalCreate(BaseModel):
    arrival_date: date
    quantity: int


class ArrivalUpdate(BaseModel):
    arrival_date: date | None = None
    quantity: int | None = None


class PaymentRequestCreate(BaseModel):
    source_type: PaymentSourceType
    source_id: str
    payment_type: PaymentType
    amount: Decimal | None = None
    request_date: date | None = None
    memo: str | None = None


class PaymentRequestUpdate(BaseModel):
    amount: Decimal | None = None
    memo: str | None = None
    request_date: date | None = None


class PaymentCompletion(BaseModel):
    payment_date: date


class BatchPaymentCompletion(BaseModel):
    ids: list[int] = Field(min_length=1)
    payment_date: date


class MaterialCreate(BaseModel):
    product_name: str
    category: str
    product_name_chinese: str | None = None
    type_count: int = 1
    link: str | None = None
    price: Decimal | None = None
    purchase_complete: bool = False
    initial_stock: int = 0


class MaterialUpdate(BaseModel):
    product_name: str | None = None
    product_name_chinese: str | None = None
    category: str | None = None
    type_count: int | None = None
    link: str | None = None
    price: Decimal | None = None
    purchase_complete: bool | None = None


class InventoryTransactionCreate(BaseModel):
    transaction_type: InventoryTransactionType
    quantity: int
    transaction_date: date
    related_order: str | None = None
    notes: str | None = None
