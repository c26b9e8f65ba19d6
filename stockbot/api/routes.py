from fastapi import APIRouter, Header, HTTPException, Request

from stockbot.errors import EmptySymbolSetError, QuoteSourceClosedError, QuoteSourceUnavailableError, StorageError

router = APIRouter()

_MAX_HISTORY_DAYS = 365


def _runtime(request: Request):
    runtime = getattr(request.app.state, 'runtime', None)
    if runtime is None:
        raise HTTPException(status_code=503, detail='RUNTIME_NOT_READY')
    return runtime


@router.get('/scheduler/status')
def get_scheduler_status(request: Request):
    return _runtime(request).scheduler.status().model_dump(mode='json')


@router.post('/scheduler/tick')
async def trigger_tick(request: Request):
    scheduler = _runtime(request).scheduler
    state = await scheduler.tick()
    return {'state': state, 'status': scheduler.status().model_dump(mode='json')}


@router.post('/scheduler/daily-report')
async def trigger_daily_report(
    request: Request,
    x_operator_token: str | None = Header(default=None, alias='X-Operator-Token'),
):
    if not x_operator_token:
        raise HTTPException(status_code=400, detail='X-Operator-Token header required')
    scheduler = _runtime(request).scheduler
    try:
        reported = await scheduler.run_daily_report()
    except (QuoteSourceUnavailableError, QuoteSourceClosedError) as exc:
        raise HTTPException(status_code=503, detail='QUOTE_SOURCE_UNAVAILABLE') from exc
    except EmptySymbolSetError as exc:
        raise HTTPException(status_code=400, detail='EMPTY_SYMBOL_SET') from exc
    return {'reported': reported, 'last_processed_date': scheduler.last_processed_date}


@router.get('/alerts/gate')
def get_alert_gate(request: Request):
    gate = _runtime(request).alert_gate
    return {symbol: ts.isoformat() for symbol, ts in sorted(gate.snapshot().items())}


@router.get('/metrics/fetch')
def fetch_metrics(request: Request):
    runtime = _runtime(request)
    metrics = runtime.orchestrator.metrics()
    metrics.update({f'source_{k}': v for k, v in runtime.quote_source.metrics().items()})
    return metrics


@router.get('/prices/{symbol}/history')
def get_price_history(symbol: str, request: Request, days: int = 7):
    if days < 1 or days > _MAX_HISTORY_DAYS:
        raise HTTPException(status_code=400, detail='INVALID_DAYS')
    try:
        rows = _runtime(request).store.history(symbol.upper(), days)
    except StorageError as exc:
        raise HTTPException(status_code=503, detail='STORAGE_UNAVAILABLE') from exc
    return [row.model_dump(mode='json') for row in rows]
