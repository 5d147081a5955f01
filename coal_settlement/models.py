from __future__ import annotations

from typing import Dict, Type

from sqlalchemy import JSON, Column, Float, ForeignKey, Integer, String, Text
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()


class Customer(Base):
    __tablename__ = "customers"

    id: str = Column(String, primary_key=True)
    name: str = Column(String, nullable=False)
    contact: str = Column(String, default="")
    phone: str = Column(String, default="")
    address: str = Column(String, default="")
    created_at: str = Column(String, nullable=False)


class Supplier(Base):
    __tablename__ = "suppliers"

    id: str = Column(String, primary_key=True)
    name: str = Column(String, nullable=False)
    contact: str = Column(String, default="")
    phone: str = Column(String, default="")
    address: str = Column(String, default="")
    created_at: str = Column(String, nullable=False)


class Driver(Base):
    __tablename__ = "drivers"

    id: str = Column(String, primary_key=True)
    name: str = Column(String, nullable=False)
    phone: str = Column(String, default="")
    team_name: str = Column(String, default="")
    plate_numbers: list = Column(JSON, default=list)
    created_at: str = Column(String, nullable=False)


class DeliveryBatch(Base):
    __tablename__ = "delivery_batches"

    id: str = Column(String, primary_key=True)
    customer_id: str = Column(String, default="")
    customer_name: str = Column(String, default="")
    supplier_id: str = Column(String, default="")
    supplier_name: str = Column(String, default="")
    departure_date: str = Column(String, default="")
    coal_price: float = Column(Float, nullable=False, default=0.0)
    total_weight: float = Column(Float, nullable=False, default=0.0)
    total_amount: float = Column(Float, nullable=False, default=0.0)
    paid_amount: float = Column(Float, nullable=False, default=0.0)
    remaining_amount: float = Column(Float, nullable=False, default=0.0)
    status: str = Column(String, nullable=False, default="pending")
    created_at: str = Column(String, nullable=False, index=True)

    vehicles = relationship("DeliveryVehicle", back_populates="batch", cascade="all, delete-orphan")
    payment_records = relationship(
        "BatchPaymentRecord", back_populates="batch", cascade="all, delete-orphan"
    )


class DeliveryVehicle(Base):
    __tablename__ = "delivery_vehicles"

    id: str = Column(String, primary_key=True)
    batch_id: str = Column(
        String, ForeignKey("delivery_batches.id", ondelete="CASCADE"), nullable=False, index=True
    )
    position: int = Column(Integer, nullable=False, default=0)  # order within the batch
    plate_number: str = Column(String, default="")
    driver_name: str = Column(String, default="")
    weight: float = Column(Float, nullable=False, default=0.0)
    amount: float = Column(Float, nullable=False, default=0.0)
    created_at: str = Column(String, nullable=False)

    batch = relationship("DeliveryBatch", back_populates="vehicles")


class BatchPaymentRecord(Base):
    __tablename__ = "batch_payment_records"

    id: str = Column(String, primary_key=True)
    batch_id: str = Column(
        String, ForeignKey("delivery_batches.id", ondelete="CASCADE"), nullable=False, index=True
    )
    amount: float = Column(Float, nullable=False, default=0.0)
    payment_date: str = Column(String, nullable=False)
    remark: str = Column(Text, default="")
    created_at: str = Column(String, nullable=False)

    batch = relationship("DeliveryBatch", back_populates="payment_records")


class CargoPayment(Base):
    __tablename__ = "cargo_payments"

    id: str = Column(String, primary_key=True)
    shipment_id: str = Column(String, default="", index=True)
    customer_id: str = Column(String, default="")
    customer_name: str = Column(String, default="")
    calculated_amount: float = Column(Float, default=0.0)
    actual_amount: float = Column(Float, default=0.0)
    payment_date: str = Column(String, nullable=False)
    remark: str = Column(Text, default="")
    created_at: str = Column(String, nullable=False)


class FreightPayment(Base):
    __tablename__ = "freight_payments"

    id: str = Column(String, primary_key=True)
    driver_id: str = Column(String, default="")
    driver_name: str = Column(String, default="")
    plate_numbers: list = Column(JSON, default=list)
    calculated_amount: float = Column(Float, default=0.0)
    actual_amount: float = Column(Float, default=0.0)
    payment_date: str = Column(String, nullable=False)
    remark: str = Column(Text, default="")
    # Plain tag, not a foreign key: rows outlive the arrival record they point at.
    arrival_record_id: str = Column(String, nullable=True, index=True)
    created_at: str = Column(String, nullable=False)


class CustomerPayment(Base):
    __tablename__ = "customer_payments"

    id: str = Column(String, primary_key=True)
    customer_id: str = Column(String, default="")
    customer_name: str = Column(String, default="")
    amount: float = Column(Float, default=0.0)
    payment_date: str = Column(String, nullable=False)
    remark: str = Column(Text, default="")
    arrival_record_id: str = Column(String, nullable=True, index=True)
    created_at: str = Column(String, nullable=False)


class ArrivalRecord(Base):
    __tablename__ = "arrival_records"

    id: str = Column(String, primary_key=True)
    arrival_date: str = Column(String, nullable=False)
    customer_id: str = Column(String, default="")
    customer_name: str = Column(String, default="")
    selling_price_per_ton: float = Column(Float, default=0.0)
    freight_per_ton: float = Column(Float, default=0.0)
    total_weight: float = Column(Float, default=0.0)
    total_loss: float = Column(Float, default=0.0)
    total_receivable: float = Column(Float, default=0.0)
    total_freight_payable: float = Column(Float, default=0.0)
    actual_freight_paid: float = Column(Float, default=0.0)
    freight_payment_status: str = Column(String, default="unpaid")
    actual_received: float = Column(Float, default=0.0)
    receivable_payment_status: str = Column(String, default="unpaid")
    status: str = Column(String, default="pending")
    remark: str = Column(Text, default="")
    # Embedded snapshot rows; they have no lifecycle outside the record.
    related_shipments: list = Column(JSON, default=list)
    created_at: str = Column(String, nullable=False, index=True)


TABLES: Dict[str, Type[Base]] = {
    model.__tablename__: model
    for model in (
        Customer,
        Supplier,
        Driver,
        DeliveryBatch,
        DeliveryVehicle,
        BatchPaymentRecord,
        CargoPayment,
        FreightPayment,
        CustomerPayment,
        ArrivalRecord,
    )
}
