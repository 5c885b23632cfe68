from typing import Dict, Optional, Union
from pydantic import BaseModel, ConfigDict, Field

DAYS = ("Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday")
BASE_SLOTS = ("Breakfast", "Lunch", "Dinner")
SNACK_SLOT = "Snacks"

# day -> slot -> "description - N calories"
MealPlan = Dict[str, Dict[str, str]]


class MealPlanRequest(BaseModel):
    """Diet parameters for one weekly plan, in the client's camelCase wire shape."""
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    diet_type: str = Field(..., alias="dietType", min_length=1)
    calories: Union[int, float] = Field(..., gt=0)
    allergies: Optional[str] = None
    cuisine: Optional[str] = None
    snacks: bool = False

    def slots(self) -> tuple:
        return BASE_SLOTS + (SNACK_SLOT,) if self.snacks else BASE_SLOTS
