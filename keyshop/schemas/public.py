from pydantic import BaseModel, Field


class ProductOut(BaseModel):
    id: int
    name: str
    price: int
    description: str | None = None
    available_keys: int


class TicketIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    email: str = Field(..., min_length=3, max_length=200)
    message: str = Field(..., min_length=1, max_length=4000)


class StatsPeriod(BaseModel):
    orders: int
    revenue: int


class StatsTotal(BaseModel):
    orders: int
    paid_orders: int
    open_chats: int
    free_keys: int
    revenue: int
    users: int


class StatsOut(BaseModel):
    total: StatsTotal
    today: StatsPeriod
    month: StatsPeriod
    success_rate: float
