from __future__ import annotations

import secrets
from typing import Annotated, Any

from fastapi import Depends, FastAPI, Header, HTTPException, Query, Request, status
from fastapi.responses import JSONResponse
from loguru import logger

from . import schemas
from .core.config import get_settings, settings
from .db import get_db, init_db
from .scheduling import Phase
from .scheduling.dispatcher import Dispatcher
from .services.errors import MatchPassError
from .services.match_service import MatchQuery, MatchService
from .services.overview_service import OverviewService
from .services.payout import TreasuryPayoutClient
from .services.purchase_ledger import PurchaseLedger
from .services.reconciler import ResultReconciler
from .services.settlement import SettlementEngine
from ingestion.client import SportsFeedClient

app = FastAPI(title="MatchPass API", version="0.1.0", debug=settings.debug)


class WorkerUnauthorized(Exception):
    """Raised when a worker endpoint is called without the shared key."""


@app.exception_handler(WorkerUnauthorized)
def _worker_unauthorized(request: Request, exc: WorkerUnauthorized) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_401_UNAUTHORIZED,
        content={"ok": False, "error": "Unauthorized"},
    )


@app.on_event("startup")
def on_startup() -> None:
    """Initialize database connections when the API boots."""

    init_db()


@app.get("/healthz", tags=["system"])
def healthcheck() -> dict[str, str]:
    """Basic readiness probe consumed by infrastructure monitors."""

    return {"status": "ok"}


def _raise_http(exc: MatchPassError) -> None:
    raise HTTPException(status_code=exc.status_code, detail=str(exc)) from exc


def _match_query(
    *,
    league: Annotated[str | None, Query(description="League code filter", example="NBA")] = None,
    history: Annotated[bool, Query(description="Return finished matches instead of the live view")] = False,
    closed_window: Annotated[
        bool,
        Query(description="Return locked matches whose purchase window has closed"),
    ] = False,
    limit: Annotated[int, Query(ge=1, le=200)] = 50,
    offset: Annotated[int, Query(ge=0)] = 0,
) -> MatchQuery:
    """Normalize shared match listing query parameters."""

    return MatchQuery(
        league=league,
        history=history,
        closed_window=closed_window,
        limit=limit,
        offset=offset,
    )


def _match_service(db=Depends(get_db)) -> MatchService:
    """Provide the match service wired with a SQLAlchemy session."""

    return MatchService(db, get_settings())


def _purchase_ledger(db=Depends(get_db)) -> PurchaseLedger:
    return PurchaseLedger(db, get_settings())


def _overview_service(db=Depends(get_db)) -> OverviewService:
    return OverviewService(db)


def _dispatcher(db=Depends(get_db)):
    """Provide a dispatcher with live feed and treasury clients."""

    current = get_settings()
    feed = SportsFeedClient(settings=current)
    dispatcher = Dispatcher(db, current, feed=feed)
    try:
        yield dispatcher
    finally:
        dispatcher.close()
        feed.close()


def _settlement_engine(db=Depends(get_db)):
    current = get_settings()
    client = TreasuryPayoutClient(settings=current)
    try:
        yield SettlementEngine(db, current, payout_client=client)
    finally:
        client.close()


def _result_reconciler(db=Depends(get_db)) -> ResultReconciler:
    return ResultReconciler(db, get_settings())


def _require_worker_key(
    authorization: Annotated[str | None, Header()] = None,
    x_api_key: Annotated[str | None, Header()] = None,
) -> None:
    """Reject worker calls unless they carry the configured shared secret."""

    expected = get_settings().worker_api_key
    provided = x_api_key
    if authorization and authorization.lower().startswith("bearer "):
        provided = authorization[7:].strip()
    if not expected or not provided or not secrets.compare_digest(provided, expected):
        logger.warning("Rejected unauthorized worker request")
        raise WorkerUnauthorized()


# ----------------------------------------------------------------------
# Public storefront


@app.get("/leagues", response_model=list[schemas.LeagueStatus], tags=["leagues"])
def list_leagues(service: MatchService = Depends(_match_service)):
    """Return configured leagues with their window state and next job slots."""

    return service.league_statuses()


@app.get("/matches", response_model=schemas.MatchList, tags=["matches"])
def list_matches(
    *,
    query: MatchQuery = Depends(_match_query),
    service: MatchService = Depends(_match_service),
):
    """List matches for the storefront, history or closed-window views."""

    try:
        result = service.list_matches(query)
    except MatchPassError as exc:
        _raise_http(exc)
    return schemas.MatchList(total=result.total, items=list(result.matches))


@app.get("/matches/{match_id}", response_model=schemas.Match, tags=["matches"])
def get_match(match_id: str, service: MatchService = Depends(_match_service)):
    """Retrieve a single match by its league-scoped identifier."""

    try:
        return service.get_match(match_id)
    except MatchPassError as exc:
        _raise_http(exc)


@app.post(
    "/purchases",
    response_model=schemas.PurchaseReceipt,
    status_code=status.HTTP_201_CREATED,
    tags=["purchases"],
)
def create_purchase(payload: schemas.PurchaseCreate, ledger: PurchaseLedger = Depends(_purchase_ledger)):
    """Record a paid unlock and return the prediction it grants access to."""

    try:
        receipt = ledger.buy(
            payload.match_id,
            payload.buyer,
            payload.payment_ref,
            payload.amount,
            payload.token,
        )
    except MatchPassError as exc:
        _raise_http(exc)
    return schemas.PurchaseReceipt(
        purchase=schemas.Purchase.model_validate(receipt.purchase),
        prediction=schemas.PredictionDetail.model_validate(receipt.prediction),
    )


@app.get("/purchases", response_model=schemas.PurchaseList, tags=["purchases"])
def list_purchases(
    match_id: Annotated[str | None, Query(description="Match identifier filter")] = None,
    buyer: Annotated[str | None, Query(description="Buyer wallet filter")] = None,
    ledger: PurchaseLedger = Depends(_purchase_ledger),
):
    """Look up purchases by match, buyer, or both."""

    items = [schemas.Purchase.model_validate(item) for item in ledger.lookup(match_id=match_id, buyer=buyer)]
    return schemas.PurchaseList(total=len(items), items=items)


@app.get("/purchases/count", response_model=schemas.PurchaseCount, tags=["purchases"])
def count_purchases(
    match_id: Annotated[str, Query(min_length=1)],
    ledger: PurchaseLedger = Depends(_purchase_ledger),
):
    return ledger.count(match_id)


@app.get("/raffles", response_model=schemas.RaffleList, tags=["raffles"])
def list_raffles(
    league: Annotated[str | None, Query(description="League code filter")] = None,
    page: Annotated[int, Query(ge=1)] = 1,
    limit: Annotated[int, Query(ge=1, le=100)] = 20,
    service: MatchService = Depends(_match_service),
):
    """Page through drawn raffles, newest first."""

    try:
        result = service.list_raffles(league=league, page=page, limit=limit)
    except MatchPassError as exc:
        _raise_http(exc)
    return schemas.RaffleList(
        total=result.total, page=result.page, limit=result.limit, items=list(result.raffles)
    )


@app.get("/raffles/{match_id}", response_model=schemas.Raffle, tags=["raffles"])
def get_raffle(match_id: str, service: MatchService = Depends(_match_service)):
    try:
        return service.get_raffle(match_id)
    except MatchPassError as exc:
        _raise_http(exc)


@app.get("/overview", response_model=schemas.PlatformOverview, tags=["overview"])
def platform_overview(service: OverviewService = Depends(_overview_service)):
    """Aggregate accuracy, raffle and job-run metrics for operators."""

    return service.platform_overview()


# ----------------------------------------------------------------------
# Scheduler workers


@app.post("/workers/tick", tags=["workers"], dependencies=[Depends(_require_worker_key)])
def run_tick(dispatcher: Dispatcher = Depends(_dispatcher)) -> dict[str, Any]:
    """Run every phase whose automation slot is active right now."""

    results = dispatcher.tick()
    return {
        "ok": all(result.ok for result in results),
        "message": f"Ran {len(results)} scheduled phases",
        "results": [result.to_dict() for result in results],
    }


@app.post("/workers/predictions/sweep", tags=["workers"], dependencies=[Depends(_require_worker_key)])
def run_prediction_sweep(dispatcher: Dispatcher = Depends(_dispatcher)) -> dict[str, Any]:
    generated = dispatcher.sweep_predictions()
    return {
        "ok": True,
        "message": f"Generated {sum(generated.values())} predictions",
        "counts": generated,
    }


@app.post(
    "/workers/raffles/{match_id}/payout",
    tags=["workers"],
    dependencies=[Depends(_require_worker_key)],
)
def retry_raffle_payout(
    match_id: str, engine: SettlementEngine = Depends(_settlement_engine)
) -> dict[str, Any]:
    """Re-attempt the prize transfer for an already drawn raffle."""

    try:
        raffle = engine.retry_payout(match_id)
    except MatchPassError as exc:
        _raise_http(exc)
    paid = raffle.payout_status == "paid"
    return {
        "ok": paid,
        "message": "Payout sent" if paid else f"Payout failed: {raffle.payout_error}",
        "raffle": schemas.Raffle.model_validate(raffle).model_dump(mode="json"),
    }


@app.post(
    "/workers/matches/{match_id}/result",
    tags=["workers"],
    dependencies=[Depends(_require_worker_key)],
)
def record_match_result(
    match_id: str,
    payload: schemas.MatchResultCreate,
    reconciler: ResultReconciler = Depends(_result_reconciler),
) -> dict[str, Any]:
    """Record a score the feeds could not resolve for a match."""

    try:
        outcome = reconciler.record_result(
            match_id, payload.home_score, payload.away_score, status=payload.status.value
        )
    except MatchPassError as exc:
        _raise_http(exc)
    if outcome.score is None:
        message = f"Set {match_id} status to {outcome.status}"
    else:
        message = f"Recorded {outcome.score} for {match_id}"
    return {"ok": True, "message": message, **outcome.to_dict()}


@app.post("/workers/{league}/{phase}", tags=["workers"], dependencies=[Depends(_require_worker_key)])
def run_worker_phase(
    league: str, phase: Phase, dispatcher: Dispatcher = Depends(_dispatcher)
) -> dict[str, Any]:
    """Manually trigger one scheduled phase for a league."""

    try:
        result = dispatcher.run_phase(league, phase, manual=True)
    except MatchPassError as exc:
        _raise_http(exc)
    return result.to_dict()
