import uuid
from contextlib import asynccontextmanager
from typing import Optional
from uuid import UUID

import structlog
from fastapi import Depends, FastAPI, Header, HTTPException, Request, status
from fastapi.middleware.cors import CORSMiddleware

from classifier import DeedClassifier

from . import balance
from .config import Settings, settings
from .environment import EpochClock, ExecutionEnvironment, LogicalClock
from .events import FanOutEventSink, InMemoryEventSink, LoggingEventSink
from .logging_setup import configure_logging
from .models import (
    AmountRequest,
    ClaimResponse,
    ClassifyDeedRequest,
    DeedClassificationResponse,
    DeedCounts,
    EventsResponse,
    LedgerView,
    RecordDeedRequest,
    RegistryView,
    WithdrawResponse,
)
from .policy import policy_from_settings
from .randomness import randomness_from_settings
from .service import (
    InsufficientBalance,
    InvalidDeedType,
    InvalidLedgerError,
    LedgerNotFoundError,
    LedgerServiceError,
    NotAuthorized,
    RegistryAlreadyInitialized,
    RegistryNotInitialized,
    ReportRejectedError,
    SantaLedgerService,
)

log = structlog.get_logger(__name__)

ERROR_STATUS = {
    NotAuthorized: status.HTTP_403_FORBIDDEN,
    InvalidDeedType: status.HTTP_400_BAD_REQUEST,
    InsufficientBalance: status.HTTP_400_BAD_REQUEST,
    LedgerNotFoundError: status.HTTP_404_NOT_FOUND,
    InvalidLedgerError: status.HTTP_409_CONFLICT,
    RegistryNotInitialized: status.HTTP_409_CONFLICT,
    RegistryAlreadyInitialized: status.HTTP_409_CONFLICT,
    ReportRejectedError: status.HTTP_429_TOO_MANY_REQUESTS,
}


def build_service(config: Settings = settings) -> tuple[SantaLedgerService, InMemoryEventSink]:
    if config.clock_mode == "wall":
        clock = EpochClock(config.epoch_duration_seconds)
    elif config.clock_mode == "logical":
        clock = LogicalClock()
    else:
        raise ValueError(f"Unknown clock mode: {config.clock_mode}")

    event_log = InMemoryEventSink(max_events=config.event_buffer_size)
    service = SantaLedgerService(
        environment=ExecutionEnvironment(clock=clock),
        randomness=randomness_from_settings(config.randomness_mode, config.randomness_seed, config.environment),
        events=FanOutEventSink([event_log, LoggingEventSink()]),
        report_policy=policy_from_settings(config.report_max_per_epoch),
    )
    return service, event_log


def get_caller(x_caller_id: Optional[str] = Header(default=None)) -> str:
    if not x_caller_id:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing X-Caller-Id header")
    return x_caller_id


def _raise_http(e: LedgerServiceError) -> None:
    code = ERROR_STATUS.get(type(e), status.HTTP_400_BAD_REQUEST)
    raise HTTPException(status_code=code, detail=str(e))


def create_app(
    service: Optional[SantaLedgerService] = None,
    event_log: Optional[InMemoryEventSink] = None,
    classifier: Optional[DeedClassifier] = None,
    config: Settings = settings,
    root_path: str = "",
) -> FastAPI:
    if service is None:
        service, event_log = build_service(config)
    if event_log is None:
        event_log = InMemoryEventSink(max_events=config.event_buffer_size)
    if classifier is None:
        classifier = DeedClassifier(api_key=config.groq_api_key, model=config.groq_model)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        configure_logging(config.log_level)
        log.info("startup", env=config.environment, version=config.app_version)
        yield
        log.info("shutdown")

    app = FastAPI(
        title="Santa Ledger API",
        description="Per-user deed ledgers with a ratio-weighted reward lottery",
        version=config.app_version,
        lifespan=lifespan,
        root_path=root_path,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"] if config.environment == "dev" else config.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def add_request_id(request: Request, call_next):
        rid = request.headers.get("x-request-id") or str(uuid.uuid4())
        structlog.contextvars.bind_contextvars(request_id=rid)
        try:
            response = await call_next(request)
        finally:
            structlog.contextvars.clear_contextvars()
        response.headers["x-request-id"] = rid
        return response

    def ledger_view(ledger_id: UUID) -> LedgerView:
        try:
            return service.ledger_view(ledger_id)
        except LedgerServiceError as e:
            _raise_http(e)

    def registry_view() -> RegistryView:
        try:
            return service.registry_view()
        except LedgerServiceError as e:
            _raise_http(e)

    @app.get("/health", tags=["System"])
    def health_check():
        return {"status": "healthy", "service": config.app_name}

    @app.post("/registry", response_model=RegistryView, status_code=status.HTTP_201_CREATED, tags=["Registry"])
    def initialize_registry(caller: str = Depends(get_caller)) -> RegistryView:
        try:
            service.initialize(caller)
        except LedgerServiceError as e:
            _raise_http(e)
        return registry_view()

    @app.get("/registry", response_model=RegistryView, tags=["Registry"])
    def get_registry() -> RegistryView:
        return registry_view()

    @app.post("/registry/fund", response_model=RegistryView, tags=["Registry"])
    def fund_pool(request: AmountRequest, caller: str = Depends(get_caller)) -> RegistryView:
        try:
            service.fund_reward_pool(caller, service.get_registry().id, balance.mint(request.amount))
        except LedgerServiceError as e:
            _raise_http(e)
        return registry_view()

    @app.post("/ledgers", response_model=LedgerView, status_code=status.HTTP_201_CREATED, tags=["Ledgers"])
    def open_ledger(caller: str = Depends(get_caller)) -> LedgerView:
        return ledger_view(service.open_ledger(caller).id)

    @app.get("/ledgers/{ledger_id}", response_model=LedgerView, tags=["Ledgers"])
    def get_ledger(ledger_id: UUID) -> LedgerView:
        return ledger_view(ledger_id)

    @app.get("/users/{owner}/ledgers", response_model=list[LedgerView], tags=["Ledgers"])
    def list_user_ledgers(owner: str) -> list[LedgerView]:
        return service.list_ledger_views(owner)

    @app.post("/ledgers/{ledger_id}/deeds/self", response_model=LedgerView, tags=["Deeds"])
    def record_self_deed(ledger_id: UUID, request: RecordDeedRequest, caller: str = Depends(get_caller)) -> LedgerView:
        try:
            service.record_self_deed(caller, ledger_id, request.description, request.is_good)
        except LedgerServiceError as e:
            _raise_http(e)
        return ledger_view(ledger_id)

    @app.post("/ledgers/{ledger_id}/deeds/report", response_model=LedgerView, tags=["Deeds"])
    def report_deed(ledger_id: UUID, request: RecordDeedRequest, caller: str = Depends(get_caller)) -> LedgerView:
        try:
            service.report_deed(caller, ledger_id, request.description, request.is_good)
        except LedgerServiceError as e:
            _raise_http(e)
        return ledger_view(ledger_id)

    @app.get("/ledgers/{ledger_id}/counts", response_model=DeedCounts, tags=["Queries"])
    def get_deed_counts(ledger_id: UUID) -> DeedCounts:
        try:
            return service.get_deed_counts(ledger_id)
        except LedgerServiceError as e:
            _raise_http(e)

    @app.get("/ledgers/{ledger_id}/total", tags=["Queries"])
    def get_total_deeds(ledger_id: UUID):
        try:
            return {"ledger_id": ledger_id, "total_deeds": service.get_total_deeds(ledger_id)}
        except LedgerServiceError as e:
            _raise_http(e)

    @app.get("/ledgers/{ledger_id}/balance", tags=["Queries"])
    def get_reward_balance(ledger_id: UUID):
        try:
            return {"ledger_id": ledger_id, "reward_balance": service.get_reward_balance(ledger_id)}
        except LedgerServiceError as e:
            _raise_http(e)

    @app.get("/ledgers/{ledger_id}/probability", tags=["Queries"])
    def get_good_probability(ledger_id: UUID):
        try:
            return {"ledger_id": ledger_id, "good_probability": service.calculate_good_probability(ledger_id)}
        except LedgerServiceError as e:
            _raise_http(e)

    @app.post("/ledgers/{ledger_id}/withdraw", response_model=WithdrawResponse, tags=["Rewards"])
    def withdraw_rewards(ledger_id: UUID, request: AmountRequest, caller: str = Depends(get_caller)) -> WithdrawResponse:
        try:
            coin = service.withdraw_rewards(caller, ledger_id, request.amount)
            remaining = service.get_reward_balance(ledger_id)
        except LedgerServiceError as e:
            _raise_http(e)
        return WithdrawResponse(ledger_id=ledger_id, amount=coin.value, reward_balance=remaining)

    @app.post("/ledgers/{ledger_id}/claim", response_model=ClaimResponse, tags=["Rewards"])
    def claim_reward(ledger_id: UUID, caller: str = Depends(get_caller)) -> ClaimResponse:
        try:
            credited = service.claim_santa_reward(caller, ledger_id, service.get_registry().id)
            remaining = service.get_reward_balance(ledger_id)
        except LedgerServiceError as e:
            _raise_http(e)
        return ClaimResponse(ledger_id=ledger_id, amount_credited=credited, reward_balance=remaining)

    @app.post("/deeds/classify", response_model=DeedClassificationResponse, tags=["Deeds"])
    def classify_deed(request: ClassifyDeedRequest) -> DeedClassificationResponse:
        result = classifier.classify(request.text)
        return DeedClassificationResponse(**result.to_dict())

    @app.get("/events", response_model=EventsResponse, tags=["System"])
    def list_events(limit: int = 50, offset: int = 0) -> EventsResponse:
        return EventsResponse(events=event_log.recent(limit, offset), total_count=len(event_log))

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
