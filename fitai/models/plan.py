"""
Plan model for the subscription catalog.

Plans are static: loaded once per process, never persisted. The billing
interval doubles as the tier value stored on a profile.
"""

from typing import List, Literal
from pydantic import BaseModel, ConfigDict

PlanInterval = Literal["week", "month", "year"]


class Plan(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    amount: int
    currency: str
    interval: PlanInterval
    is_popular: bool = False
    description: str
    features: List[str]
