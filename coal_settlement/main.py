from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import List, Optional

from fastapi import Depends, FastAPI, Query, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from coal_settlement.arrivals import ArrivalReconciliation
from coal_settlement.batches import BatchLedger
from coal_settlement.drivers import DriverAggregator
from coal_settlement.exceptions import SettlementError, StorageError
from coal_settlement.payments import PaymentLedgers
from coal_settlement.reference import ReferenceStore
from coal_settlement.schemas import (
    ArrivalFreightPaymentCreate,
    ArrivalRecordCreate,
    ArrivalRecordRead,
    ArrivalRecordUpdate,
    BatchCreate,
    BatchPaymentCreate,
    BatchPaymentRead,
    BatchRead,
    CargoPaymentCreate,
    CargoPaymentRead,
    CustomerPaymentCreate,
    CustomerPaymentRead,
    DriverCreate,
    DriverRead,
    FreightPaymentCreate,
    FreightPaymentRead,
    FreightSettleRequest,
    FreightSummary,
    PartyCreate,
    PartyRead,
    ReceivablePaymentCreate,
    ShipmentRead,
    describe_errors,
)
from coal_settlement.settings import Settings, configure_logging
from coal_settlement.shipments import ShipmentProjector
from coal_settlement.store import Store, build_store

logger = logging.getLogger(__name__)


@dataclass
class Services:
    """Every service bound to one store."""

    store: Store
    references: ReferenceStore
    batches: BatchLedger
    shipments: ShipmentProjector
    drivers: DriverAggregator
    payments: PaymentLedgers
    arrivals: ArrivalReconciliation

    @classmethod
    def build(cls, store: Store) -> "Services":
        references = ReferenceStore(store)
        shipments = ShipmentProjector(store)
        payments = PaymentLedgers(store, references)
        return cls(
            store=store,
            references=references,
            batches=BatchLedger(store, references),
            shipments=shipments,
            drivers=DriverAggregator(store, references),
            payments=payments,
            arrivals=ArrivalReconciliation(store, shipments, payments, references),
        )


def get_services(request: Request) -> Services:
    return request.app.state.services


def _no_content() -> Response:
    return Response(status_code=204)


def create_app(store: Optional[Store] = None, settings: Optional[Settings] = None) -> FastAPI:
    """Build the API. Without *store* one is built from *settings* at startup."""
    settings = settings or Settings.from_env()
    configure_logging(settings.log_level)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        owned = store is None
        active = build_store(settings) if owned else store
        app.state.services = Services.build(active)
        try:
            yield
        finally:
            if owned:
                active.close()

    app = FastAPI(
        title="Coal Settlement API",
        description="Delivery batches, arrival reconciliation and payment ledgers for coal haulage.",
        version="1.0.0",
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(SettlementError)
    async def settlement_error_handler(request: Request, exc: SettlementError) -> JSONResponse:
        if isinstance(exc, StorageError) or exc.status_code >= 500:
            logger.error("%s %s failed: %s", request.method, request.url.path, exc.message, exc_info=exc)
            return JSONResponse(status_code=exc.status_code, content={"error": "storage failure"})
        return JSONResponse(status_code=exc.status_code, content={"error": exc.message})

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        return JSONResponse(status_code=400, content={"error": describe_errors(exc.errors())})

    @app.get("/health")
    def health_check(services: Services = Depends(get_services)):
        return {"status": "running", "storage": services.store.backend}

    # -- batches ------------------------------------------------------------

    @app.get("/batches", response_model=List[BatchRead])
    def list_batches(services: Services = Depends(get_services)):
        return services.batches.list_batches()

    @app.get("/batches/{batch_id}", response_model=BatchRead)
    def get_batch(batch_id: str, services: Services = Depends(get_services)):
        return services.batches.get_batch(batch_id)

    @app.post("/batches", response_model=BatchRead, status_code=201)
    def create_batch(payload: BatchCreate, services: Services = Depends(get_services)):
        return services.batches.create_batch(payload)

    @app.post("/batches/{batch_id}/payments", response_model=BatchPaymentRead, status_code=201)
    def apply_batch_payment(
        batch_id: str,
        payload: BatchPaymentCreate,
        services: Services = Depends(get_services),
    ):
        return services.batches.apply_payment(batch_id, payload)

    @app.delete("/batches/{batch_id}", status_code=204)
    def delete_batch(batch_id: str, services: Services = Depends(get_services)):
        services.batches.delete_batch(batch_id)
        return _no_content()

    # -- shipments and drivers ----------------------------------------------

    @app.get("/shipments", response_model=List[ShipmentRead])
    def list_shipments(
        customer_id: Optional[str] = Query(None, alias="customerId"),
        services: Services = Depends(get_services),
    ):
        return services.shipments.list_shipments(customer_id=customer_id)

    @app.get("/drivers", response_model=List[DriverRead])
    def list_drivers(services: Services = Depends(get_services)):
        return services.drivers.list_drivers()

    @app.post("/drivers", response_model=DriverRead, status_code=201)
    def create_driver(payload: DriverCreate, services: Services = Depends(get_services)):
        return services.references.put("drivers", payload.model_dump())

    @app.delete("/drivers/{driver_id}", status_code=204)
    def delete_driver(driver_id: str, services: Services = Depends(get_services)):
        services.references.delete("drivers", driver_id)
        return _no_content()

    # -- customers and suppliers --------------------------------------------

    @app.get("/customers", response_model=List[PartyRead])
    def list_customers(services: Services = Depends(get_services)):
        return services.references.list("customers")

    @app.post("/customers", response_model=PartyRead, status_code=201)
    def create_customer(payload: PartyCreate, services: Services = Depends(get_services)):
        return services.references.put("customers", payload.model_dump())

    @app.delete("/customers/{customer_id}", status_code=204)
    def delete_customer(customer_id: str, services: Services = Depends(get_services)):
        services.references.delete("customers", customer_id)
        return _no_content()

    @app.get("/suppliers", response_model=List[PartyRead])
    def list_suppliers(services: Services = Depends(get_services)):
        return services.references.list("suppliers")

    @app.post("/suppliers", response_model=PartyRead, status_code=201)
    def create_supplier(payload: PartyCreate, services: Services = Depends(get_services)):
        return services.references.put("suppliers", payload.model_dump())

    @app.delete("/suppliers/{supplier_id}", status_code=204)
    def delete_supplier(supplier_id: str, services: Services = Depends(get_services)):
        services.references.delete("suppliers", supplier_id)
        return _no_content()

    # -- arrival records ----------------------------------------------------

    @app.get("/arrival-records", response_model=List[ArrivalRecordRead])
    def list_arrival_records(services: Services = Depends(get_services)):
        return services.arrivals.list_arrival_records()

    @app.get("/arrival-records/{record_id}", response_model=ArrivalRecordRead)
    def get_arrival_record(record_id: str, services: Services = Depends(get_services)):
        return services.arrivals.get_arrival_record(record_id)

    @app.post("/arrival-records", response_model=ArrivalRecordRead, status_code=201)
    def create_arrival_record(payload: ArrivalRecordCreate, services: Services = Depends(get_services)):
        return services.arrivals.create_arrival_record(payload)

    @app.put("/arrival-records/{record_id}", response_model=ArrivalRecordRead)
    def update_arrival_record(
        record_id: str,
        payload: ArrivalRecordUpdate,
        services: Services = Depends(get_services),
    ):
        return services.arrivals.update_arrival_record(record_id, payload)

    @app.delete("/arrival-records/{record_id}", status_code=204)
    def delete_arrival_record(record_id: str, services: Services = Depends(get_services)):
        services.arrivals.delete_arrival_record(record_id)
        return _no_content()

    @app.get("/arrival-records/{record_id}/freight", response_model=FreightSummary)
    def arrival_freight_summary(record_id: str, services: Services = Depends(get_services)):
        return services.arrivals.freight_summary(record_id)

    @app.post(
        "/arrival-records/{record_id}/freight-payments",
        response_model=FreightPaymentRead,
        status_code=201,
    )
    def record_arrival_freight_payment(
        record_id: str,
        payload: ArrivalFreightPaymentCreate,
        services: Services = Depends(get_services),
    ):
        return services.arrivals.record_freight_payment(record_id, payload)

    @app.post(
        "/arrival-records/{record_id}/freight-payments/settle",
        response_model=FreightPaymentRead,
        status_code=201,
    )
    def settle_arrival_freight(
        record_id: str,
        payload: Optional[FreightSettleRequest] = None,
        services: Services = Depends(get_services),
    ):
        return services.arrivals.settle_freight_balance(record_id, payload)

    @app.post("/arrival-records/{record_id}/receivable", response_model=ArrivalRecordRead)
    def record_receivable_payment(
        record_id: str,
        payload: ReceivablePaymentCreate,
        services: Services = Depends(get_services),
    ):
        return services.arrivals.record_receivable_payment(record_id, payload)

    # -- payment ledgers ----------------------------------------------------

    @app.get("/payments/freight", response_model=List[FreightPaymentRead])
    def list_freight_payments(
        arrival_record_id: Optional[str] = Query(None, alias="arrivalRecordId"),
        services: Services = Depends(get_services),
    ):
        return services.payments.list_freight_payments(arrival_record_id)

    @app.post("/payments/freight", response_model=FreightPaymentRead, status_code=201)
    def create_freight_payment(payload: FreightPaymentCreate, services: Services = Depends(get_services)):
        return services.payments.create_freight_payment(payload)

    @app.get("/payments/customer", response_model=List[CustomerPaymentRead])
    def list_customer_payments(
        arrival_record_id: Optional[str] = Query(None, alias="arrivalRecordId"),
        services: Services = Depends(get_services),
    ):
        return services.payments.list_customer_payments(arrival_record_id)

    @app.post("/payments/customer", response_model=CustomerPaymentRead, status_code=201)
    def create_customer_payment(
        payload: CustomerPaymentCreate, services: Services = Depends(get_services)
    ):
        return services.payments.create_customer_payment(payload)

    @app.get("/payments/cargo", response_model=List[CargoPaymentRead])
    def list_cargo_payments(services: Services = Depends(get_services)):
        return services.payments.list_cargo_payments()

    @app.post("/payments/cargo", response_model=CargoPaymentRead, status_code=201)
    def create_cargo_payment(payload: CargoPaymentCreate, services: Services = Depends(get_services)):
        return services.payments.create_cargo_payment(payload)

    return app


app = create_app()
