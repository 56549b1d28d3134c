from fastapi import APIRouter, Request

from app.schemas.trade import TradeRequest
from app.services.trade_signal import build_trade_response

router = APIRouter()


def _fetcher(request: Request):
    return request.app.state.quote_context.fetcher


@router.get('/health')
def health():
    return {'status': 'ok'}


@router.get('/stock/{symbol}')
def get_stock(symbol: str, request: Request):
    quote = _fetcher(request).fetch(symbol)
    return quote.to_payload()


@router.post('/trade')
def trade(req: TradeRequest, request: Request):
    quote = _fetcher(request).fetch(req.symbol)
    return build_trade_response(quote, req.strategy)


@router.get('/metrics/quote')
def quote_metrics(request: Request):
    context = request.app.state.quote_context
    metrics = context.fetcher.metrics()
    metrics.update({f'store_{k}': v for k, v in context.store.metrics().items()})
    metrics['active_sessions'] = len(request.app.state.sessions)
    return metrics
