"""Prompt assembly from runtime settings and user options."""

from __future__ import annotations

from app.runtime_settings.models import AppSettings
from app.transformations.models import CreativityLevel, TransformationOptions


CREATIVITY_INSTRUCTIONS = {
    CreativityLevel.STRICT: (
        "CREATIVITY: strict. Only tidy what is clearly out of place. Keep every item, "
        "keep arrangements as close to the original as possible."
    ),
    CreativityLevel.BALANCED: (
        "CREATIVITY: balanced. Tidy and group items sensibly while keeping the room "
        "recognizably the same."
    ),
    CreativityLevel.CREATIVE: (
        "CREATIVITY: creative. You may regroup and arrange items more freely for a "
        "polished, magazine-ready look, without moving furniture."
    ),
}


def _keep_items_clause(options: TransformationOptions) -> str:
    keep = (options.keep_items or "").strip()
    if not keep:
        return ""
    return f"\n\nThe user wants to KEEP these items exactly as they are: {keep}. Do not suggest removing them."


def build_plan_prompt(settings: AppSettings, options: TransformationOptions) -> str:
    prompt = settings.prompts.declutter_plan
    prompt += "\n\n" + CREATIVITY_INSTRUCTIONS[options.creativity_level]
    prompt += _keep_items_clause(options)
    if options.first_name:
        prompt += f"\n\nThe user's name is {options.first_name.strip()}. Greet them by name."
    return prompt


def build_image_prompt(settings: AppSettings, plan: str, options: TransformationOptions) -> str:
    prompt = settings.prompts.image_transformation
    prompt += "\n\n" + CREATIVITY_INSTRUCTIONS[options.creativity_level]
    prompt += _keep_items_clause(options)
    prompt += f"\n\n=== DECLUTTERING PLAN TO FOLLOW ===\n{plan}\n=== END OF PLAN ==="
    return prompt


def personalized_narration(plan: str, options: TransformationOptions) -> str:
    """Text read aloud by the speech synthesizer."""
    name = (options.first_name or "").strip()
    if name and name.lower() not in plan[:200].lower():
        return f"Hi {name}! {plan}"
    return plan
