"""Prompt text for weekly meal plan generation."""

from fitai.models.meal_plan import MealPlanRequest, DAYS

SYSTEM_PROMPT = "You are a professional nutritionist. You reply with raw JSON only."

EXAMPLE_WITH_SNACKS = """{
  "Monday": {
    "Breakfast": "Oatmeal with fruits - 350 calories",
    "Lunch": "Grilled chicken salad - 500 calories",
    "Dinner": "Steamed vegetables with quinoa - 600 calories",
    "Snacks": "Greek yogurt - 150 calories"
  },
  "Tuesday": {
    "Breakfast": "Smoothie bowl - 300 calories",
    "Lunch": "Turkey sandwich - 450 calories",
    "Dinner": "Baked salmon with asparagus - 700 calories",
    "Snacks": "Almonds - 200 calories"
  }
}"""

EXAMPLE_WITHOUT_SNACKS = """{
  "Monday": {
    "Breakfast": "Oatmeal with fruits - 350 calories",
    "Lunch": "Grilled chicken salad - 500 calories",
    "Dinner": "Steamed vegetables with quinoa - 600 calories"
  },
  "Tuesday": {
    "Breakfast": "Smoothie bowl - 300 calories",
    "Lunch": "Turkey sandwich - 450 calories",
    "Dinner": "Baked salmon with asparagus - 700 calories"
  }
}"""


def build_meal_plan_prompt(request: MealPlanRequest) -> str:
    slots = request.slots()
    slot_lines = "\n".join(f"  - {slot}" for slot in slots)
    example = EXAMPLE_WITH_SNACKS if request.snacks else EXAMPLE_WITHOUT_SNACKS
    snack_rule = (
        'Every day MUST include a "Snacks" key.'
        if request.snacks
        else 'Do NOT include a "Snacks" key.'
    )

    return (
        f"Create a 7-day meal plan for an individual following a {request.diet_type} diet "
        f"aiming for {request.calories} calories per day.\n\n"
        f"Allergies or restrictions: {request.allergies or 'none'}.\n"
        f"Preferred cuisine: {request.cuisine or 'no preference'}.\n"
        f"Snacks included: {'yes' if request.snacks else 'no'}.\n\n"
        f"For each day, provide:\n{slot_lines}\n\n"
        "Use simple ingredients and provide brief instructions. "
        'End every meal with its approximate calorie count, e.g. "- 350 calories".\n\n'
        "Structure the response as a JSON object with exactly these 7 keys: "
        f"{', '.join(DAYS)}. Each day maps meal names ({', '.join(slots)}) to a description string. "
        f"{snack_rule} Example:\n\n{example}\n\n"
        "Return just the JSON. No commentary, no markdown, no backticks."
    )
