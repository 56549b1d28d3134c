from pydantic import BaseModel


class TradeRequest(BaseModel):
    symbol: str
    strategy: str = "simple"
