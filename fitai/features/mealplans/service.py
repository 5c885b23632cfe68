"""
Weekly meal plan generation.

One prompt, one Groq chat completion, then cleanup and strict validation of
the returned JSON. An empty or malformed completion gets exactly one more
attempt; transport and API errors fail immediately.
"""

import json
import re
from typing import Any, Dict, Optional

import groq

from fitai.core.config import settings
from fitai.core.errors import (
    EmptyCompletionError,
    MalformedCompletionError,
    MalformedUpstreamResponseError,
    UpstreamUnavailableError,
)
from fitai.core.logging import log_event
from fitai.features.mealplans.prompts import SYSTEM_PROMPT, build_meal_plan_prompt
from fitai.models.meal_plan import DAYS, MealPlan, MealPlanRequest

MODEL = "llama-3.1-8b-instant"
TEMPERATURE = 0.7
MAX_TOKENS = 1500
MAX_ATTEMPTS = 2

EMPTY_MESSAGE = "AI response was empty. Please try again."
MALFORMED_MESSAGE = "Failed to parse meal plan. Please try again."
UNAVAILABLE_MESSAGE = "Failed to generate meal plan. Please try again later."

_FENCE_OPEN = re.compile(r"^```[\w+-]*[ \t]*\n?")
_FENCE_CLOSE = re.compile(r"\s*```$")
_CALORIES = re.compile(r"\d[\d,.]*\s*-?\s*(?:kcal|cal(?:orie)?s?)\b", re.IGNORECASE)


def get_completion_client() -> groq.Groq:
    if not settings.GROQ_API_KEY:
        raise UpstreamUnavailableError(UNAVAILABLE_MESSAGE)
    return groq.Groq(api_key=settings.GROQ_API_KEY, base_url=settings.COMPLETION_BASE_URL)


def strip_code_fences(text: str) -> str:
    """Trim, and drop a surrounding ```lang ... ``` fence if present."""
    cleaned = text.strip()
    if cleaned.startswith("```"):
        cleaned = _FENCE_OPEN.sub("", cleaned, count=1)
        cleaned = _FENCE_CLOSE.sub("", cleaned)
    return cleaned.strip()


def parse_completion(text: str) -> Dict[str, Any]:
    try:
        parsed = json.loads(strip_code_fences(text))
    except json.JSONDecodeError as e:
        raise MalformedCompletionError(MALFORMED_MESSAGE) from e
    if not isinstance(parsed, dict):
        raise MalformedCompletionError(MALFORMED_MESSAGE)
    return parsed


def validate_meal_plan(data: Dict[str, Any], request: MealPlanRequest) -> MealPlan:
    """
    Check the exact day/slot shape and that every meal carries a calorie figure.

    Returns the plan with days and slots in canonical order.
    """
    if set(data) != set(DAYS):
        raise MalformedCompletionError(MALFORMED_MESSAGE)

    slots = request.slots()
    plan: MealPlan = {}
    for day in DAYS:
        meals = data[day]
        if not isinstance(meals, dict) or set(meals) != set(slots):
            raise MalformedCompletionError(MALFORMED_MESSAGE)
        for slot in slots:
            description = meals[slot]
            if not isinstance(description, str) or not _CALORIES.search(description):
                raise MalformedCompletionError(MALFORMED_MESSAGE)
        plan[day] = {slot: meals[slot].strip() for slot in slots}
    return plan


def request_completion(client, prompt: str) -> str:
    try:
        response = client.chat.completions.create(
            model=MODEL,
            messages=[
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": prompt},
            ],
            temperature=TEMPERATURE,
            max_tokens=MAX_TOKENS,
        )
    except groq.APIError as e:
        log_event("error", "mealplan.upstream_error", error_code="upstream_failure", extra={"error": e})
        raise UpstreamUnavailableError(UNAVAILABLE_MESSAGE) from e

    content = response.choices[0].message.content if response.choices else None
    if not content or not content.strip():
        raise EmptyCompletionError(EMPTY_MESSAGE)
    return content


def generate_meal_plan(request: MealPlanRequest, client: Optional[Any] = None) -> MealPlan:
    """
    Produce a validated 7-day meal plan. Never cached.

    Raises:
        UpstreamUnavailableError: Completion API unreachable or erroring
        EmptyCompletionError / MalformedCompletionError: still bad after the retry
    """
    prompt = build_meal_plan_prompt(request)
    completion_client = client or get_completion_client()

    last_error: Optional[MalformedUpstreamResponseError] = None
    for attempt in range(1, MAX_ATTEMPTS + 1):
        try:
            raw = request_completion(completion_client, prompt)
            log_event("info", "mealplan.completion", extra={"attempt": attempt, "content": raw})
            return validate_meal_plan(parse_completion(raw), request)
        except MalformedUpstreamResponseError as e:
            last_error = e
            log_event(
                "warning",
                "mealplan.completion_rejected",
                error_code=e.code,
                extra={"attempt": attempt, "reason": type(e).__name__},
            )
    raise last_error
