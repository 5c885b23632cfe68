"""
Meal plan API.

POST /api/generate-mealplan
Body: {dietType, calories, allergies?, cuisine?, snacks}
Returns {"mealPlan": {day: {slot: "description - N calories"}}}
"""
from fastapi import APIRouter

from fitai.features.mealplans.service import generate_meal_plan
from fitai.models.meal_plan import MealPlanRequest

router = APIRouter(prefix="/api", tags=["mealplan"])


@router.post("/generate-mealplan")
def generate_mealplan(body: MealPlanRequest):
    # Sync handler: the completion call blocks, FastAPI runs it in the threadpool
    return {"mealPlan": generate_meal_plan(body)}
