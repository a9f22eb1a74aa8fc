from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from enum import Enum

from sqlalchemy import (
    BigInteger,
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    Enum as SQLEnum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    Text,
    UniqueConstraint,
    func,
    text,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


# SQLite only autoincrements INTEGER PRIMARY KEY columns.
BigIntegerPK = BigInteger().with_variant(Integer, 'sqlite')


class Base(DeclarativeBase):
    pass


class DeliveryStatus(str, Enum):
    PENDING = 'PENDING'
    INLAND_TRANSIT = 'INLAND_TRANSIT'
    AIR_TRANSIT = 'AIR_TRANSIT'
    SEA_TRANSIT = 'SEA_TRANSIT'
    CUSTOMS_AND_DELIVERY = 'CUSTOMS_AND_DELIVERY'
    IN_TRANSIT = 'IN_TRANSIT'
    ARRIVED = 'ARRIVED'


class OrderStatus(str, Enum):
    PENDING = 'PENDING'
    CONFIRMED = 'CONFIRMED'
    CANCELLED = 'CANCELLED'


class PaymentStatus(str, Enum):
    UNPAID = 'UNPAID'
    ADVANCE_PAID = 'ADVANCE_PAID'
    PAID = 'PAID'


class CostItemType(str, Enum):
    OPTION = 'OPTION'
    LABOR = 'LABOR'


class PackagingUnit(str, Enum):
    BOX = 'BOX'
    SACK = 'SACK'


class PaymentSourceType(str, Enum):
    PURCHASE_ORDER = 'PURCHASE_ORDER'
    PACKING_LIST = 'PACKING_LIST'


class PaymentType(str, Enum):
    ADVANCE = 'ADVANCE'
    BALANCE = 'BALANCE'
    SHIPPING = 'SHIPPING'


class PaymentRequestStatus(str, Enum):
    REQUESTED = 'REQUESTED'
    COMPLETED = 'COMPLETED'


class InventoryTransactionType(str, Enum):
    IN = 'IN'
    OUT = 'OUT'


class PurchaseOrder(Base):
    __tablename__ = 'purchase_orders'

    id: Mapped[int] = mapped_column(BigIntegerPK, primary_key=True)
    po_number: Mapped[str] = mapped_column(Text, nullable=False, unique=True)
    product_name: Mapped[str] = mapped_column(Text, nullable=False)
    supplier_name: Mapped[str | None] = mapped_column(Text)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default='0')
    unit_price: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False, default=Decimal('0.00'), server_default='0')
    back_margin: Mapped[Decimal | None] = mapped_column(Numeric(14, 2))
    order_unit_price: Mapped[Decimal | None] = mapped_column(Numeric(14, 2))
    expected_final_unit_price: Mapped[Decimal | None] = mapped_column(Numeric(14, 4))
    commission_rate: Mapped[Decimal] = mapped_column(Numeric(6, 2), nullable=False, default=Decimal('0.00'), server_default='0')
    commission_type: Mapped[str | None] = mapped_column(Text)
    shipping_cost: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False, default=Decimal('0.00'), server_default='0')
    warehouse_shipping_cost: Mapped[Decimal] = mapped_column(
        Numeric(14, 2), nullable=False, default=Decimal('0.00'), server_default='0'
    )
    advance_payment_rate: Mapped[Decimal] = mapped_column(
        Numeric(6, 2), nullable=False, default=Decimal('0.00'), server_default='0'
    )
    advance_payment_amount: Mapped[Decimal | None] = mapped_column(Numeric(14, 2))
    advance_payment_date: Mapped[date | None] = mapped_column(Date)
    balance_payment_amount: Mapped[Decimal | None] = mapped_column(Numeric(14, 2))
    balance_payment_date: Mapped[date | None] = mapped_column(Date)
    payment_status: Mapped[PaymentStatus] = mapped_column(
        SQLEnum(PaymentStatus, name='payment_status'),
        nullable=False,
        default=PaymentStatus.UNPAID,
        server_default='UNPAID',
    )
    is_confirmed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default='false')
    order_status: Mapped[OrderStatus] = mapped_column(
        SQLEnum(OrderStatus, name='order_status'),
        nullable=False,
        default=OrderStatus.PENDING,
        server_default='PENDING',
    )
    delivery_status: Mapped[DeliveryStatus] = mapped_column(
        SQLEnum(DeliveryStatus, name='delivery_status'),
        nullable=False,
        default=DeliveryStatus.PENDING,
        server_default='PENDING',
    )
    order_date: Mapped[date | None] = mapped_column(Date)
    estimated_shipment_date: Mapped[date | None] = mapped_column(Date)
    work_start_date: Mapped[date | None] = mapped_column(Date)
    work_end_date: Mapped[date | None] = mapped_column(Date)
    main_image_url: Mapped[str | None] = mapped_column(Text)
    created_by: Mapped[str | None] = mapped_column(Text)
    updated_by: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class FactoryShipment(Base):
    __tablename__ = 'factory_shipments'

    id: Mapped[int] = mapped_column(BigIntegerPK, primary_key=True)
    purchase_order_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey('purchase_orders.id', ondelete='CASCADE'), nullable=False, index=True
    )
    shipment_date: Mapped[date | None] = mapped_column(Date)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default='0')
    tracking_number: Mapped[str | None] = mapped_column(Text)
    receive_date: Mapped[date | None] = mapped_column(Date)
    display_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default='0')
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class CostItem(Base):
    __tablename__ = 'po_cost_items'

    id: Mapped[int] = mapped_column(BigIntegerPK, primary_key=True)
    purchase_order_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey('purchase_orders.id', ondelete='CASCADE'), nullable=False, index=True
    )
    item_type: Mapped[CostItemType] = mapped_column(SQLEnum(CostItemType, name='cost_item_type'), nullable=False)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    unit_price: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False, default=Decimal('0.00'), server_default='0')
    quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default='0')
    cost: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False, default=Decimal('0.00'), server_default='0')
    is_admin_only: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default='false')
    display_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default='0')
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class PackingList(Base):
    __tablename__ = 'packing_lists'
    __table_args__ = (
        UniqueConstraint('code', 'shipment_date', name='packing_lists_code_shipment_date_uniq'),
    )

    id: Mapped[int] = mapped_column(BigIntegerPK, primary_key=True)
    code: Mapped[str] = mapped_column(Text, nullable=False, index=True)
    shipment_date: Mapped[date] = mapped_column(Date, nullable=False)
    logistics_company: Mapped[str | None] = mapped_column(Text)
    warehouse_arrival_date: Mapped[date | None] = mapped_column(Date)
    actual_weight: Mapped[Decimal | None] = mapped_column(Numeric(12, 2))
    weight_ratio: Mapped[Decimal | None] = mapped_column(Numeric(6, 2))
    calculated_weight: Mapped[Decimal | None] = mapped_column(Numeric(12, 2))
    shipping_cost: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False, default=Decimal('0.00'), server_default='0')
    payment_date: Mapped[date | None] = mapped_column(Date)
    wk_payment_date: Mapped[date | None] = mapped_column(Date)
    created_by: Mapped[str | None] = mapped_column(Text)
    updated_by: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class PackingListItem(Base):
    __tablename__ = 'packing_list_items'

    id: Mapped[int] = mapped_column(BigIntegerPK, primary_key=True)
    packing_list_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey('packing_lists.id', ondelete='CASCADE'), nullable=False, index=True
    )
    purchase_order_id: Mapped[int | None] = mapped_column(
        BigInteger, ForeignKey('purchase_orders.id', ondelete='SET NULL'), index=True
    )
    product_name: Mapped[str] = mapped_column(Text, nullable=False)
    entry_quantity: Mapped[str | None] = mapped_column(Text)
    box_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default='0')
    unit: Mapped[PackagingUnit] = mapped_column(
        SQLEnum(PackagingUnit, name='packaging_unit'),
        nullable=False,
        default=PackagingUnit.BOX,
        server_default='BOX',
    )
    total_quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default='0')
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class KoreaArrival(Base):
    __tablename__ = 'korea_arrivals'

    id: Mapped[int] = mapped_column(BigIntegerPK, primary_key=True)
    packing_list_item_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey('packing_list_items.id', ondelete='CASCADE'), nullable=False, index=True
    )
    arrival_date: Mapped[date] = mapped_column(Date, nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default='0')
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class PaymentRequest(Base):
    __tablename__ = 'payment_requests'
    __table_args__ = (
        Index(
            'payment_requests_open_source_uniq',
            'source_type',
            'source_id',
            'payment_type',
            unique=True,
            postgresql_where=text("status = 'REQUESTED'"),
            sqlite_where=text("status = 'REQUESTED'"),
        ),
    )

    id: Mapped[int] = mapped_column(BigIntegerPK, primary_key=True)
    request_number: Mapped[str] = mapped_column(Text, nullable=False, unique=True)
    source_type: Mapped[PaymentSourceType] = mapped_column(
        SQLEnum(PaymentSourceType, name='payment_source_type'), nullable=False
    )
    source_id: Mapped[str] = mapped_column(Text, nullable=False)
    payment_type: Mapped[PaymentType] = mapped_column(SQLEnum(PaymentType, name='payment_type'), nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    status: Mapped[PaymentRequestStatus] = mapped_column(
        SQLEnum(PaymentRequestStatus, name='payment_request_status'),
        nullable=False,
        default=PaymentRequestStatus.REQUESTED,
        server_default='REQUESTED',
    )
    request_date: Mapped[date] = mapped_column(Date, nullable=False)
    payment_date: Mapped[date | None] = mapped_column(Date)
    requested_by: Mapped[str | None] = mapped_column(Text)
    completed_by: Mapped[str | None] = mapped_column(Text)
    memo: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class Material(Base):
    __tablename__ = 'materials'
    __table_args__ = (
        CheckConstraint('current_stock >= 0', name='materials_current_stock_non_negative'),
    )

    id: Mapped[int] = mapped_column(BigIntegerPK, primary_key=True)
    code: Mapped[str] = mapped_column(Text, nullable=False, unique=True)
    product_name: Mapped[str] = mapped_column(Text, nullable=False)
    product_name_chinese: Mapped[str | None] = mapped_column(Text)
    category: Mapped[str] = mapped_column(Text, nullable=False)
    type_count: Mapped[int] = mapped_column(Integer, nullable=False, default=1, server_default='1')
    link: Mapped[str | None] = mapped_column(Text)
    price: Mapped[Decimal | None] = mapped_column(Numeric(14, 2))
    purchase_complete: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default='false')
    current_stock: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default='0')
    created_by: Mapped[str | None] = mapped_column(Text)
    updated_by: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class MaterialInventoryTransaction(Base):
    __tablename__ = 'material_inventory_transactions'
    __table_args__ = (
        CheckConstraint('quantity > 0', name='material_inventory_transactions_quantity_positive'),
    )

    id: Mapped[int] = mapped_column(BigIntegerPK, primary_key=True)
    material_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey('materials.id', ondelete='CASCADE'), nullable=False, index=True
    )
    transaction_date: Mapped[date] = mapped_column(Date, nullable=False)
    transaction_type: Mapped[InventoryTransactionType] = mapped_column(
        SQLEnum(InventoryTransactionType, name='inventory_transaction_type'), nullable=False
    )
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    related_order: Mapped[str | None] = mapped_column(Text)
    notes: Mapped[str | None] = mapped_column(Text)
    created_by: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
