"""
Usage and cost ledger response schemas.
"""
from typing import Optional

from pydantic import BaseModel


class UsageRead(BaseModel):
    uid: str
    plan: str
    allowed_minutes: int
    used_minutes: int
    remaining_minutes: int
    is_over_limit: bool
    cycle_start: str


class CostLimitsRead(BaseModel):
    monthly_limit: float
    daily_limit: float
    per_call_limit: float


class CostSummaryRead(BaseModel):
    current_month: float
    total_all_time: float
    api_calls: int
    total_api_calls: int
    plan: str
    limits: CostLimitsRead
    utilization_percent: float
    cycle_start: str
    last_api_call: Optional[str] = None
