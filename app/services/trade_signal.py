from app.schemas.quote import Quote

_SIMPLE_BUY_BELOW = 100


def derive_trade_signal(price: float, strategy: str) -> str:
    if strategy == 'simple' and price < _SIMPLE_BUY_BELOW:
        return 'Buy'
    return 'Sell'


def build_trade_response(quote: Quote, strategy: str) -> dict:
    return {
        **quote.to_payload(),
        'tradeSignal': derive_trade_signal(quote.price, strategy),
        'cached': quote.cached,
    }
