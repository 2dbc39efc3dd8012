"""Prompt text used by the workflow phases."""

from __future__ import annotations

from ..constants import TASK_COMPLETE_SENTINEL
from ..contracts import Plan, PlanStep

SYSTEM_PROMPT = """You are Aura, an autonomous AI agent that helps with software engineering tasks.

You work on tickets that describe changes to be made to a codebase. Your job is to:
1. Understand the ticket requirements
2. Create a plan to implement the changes
3. Execute the plan using the available tools
4. Verify your changes work correctly

Guidelines:
- Make small, incremental changes and verify each step
- Request approval for destructive operations
- Ask clarifying questions if requirements are unclear

When creating a plan, break it down into clear, actionable steps.
When executing, work through steps one at a time, verifying each before moving on."""

EXECUTE_PROMPT_MARKER = "Continue executing the plan."


def build_plan_prompt(title: str, description: str) -> str:
    return f"""You are working on ticket: "{title}"

Description:
{description}

Create a detailed plan to accomplish this task. You MUST respond with valid JSON in this exact format:
{{
  "summary": "Brief summary of the approach",
  "steps": [
    {{
      "title": "Short title for step 1",
      "description": "Detailed description of what this step accomplishes"
    }}
  ]
}}

Requirements:
- Each step should be specific and actionable
- Steps should be in logical order
- Provide 3-10 steps depending on task complexity
- Respond ONLY with the JSON, no other text"""


def _completed_lines(plan: Plan) -> str:
    return "\n".join(
        f"{s.index + 1}. {s.title}: {s.output or 'Done'}"
        for s in plan.steps
        if s.status == "completed"
    )


def build_execute_prompt(plan: Plan, step: PlanStep) -> str:
    outline = "\n".join(f"{s.index + 1}. {s.title}" for s in plan.steps)
    completed = _completed_lines(plan)
    prompt = (
        f"{EXECUTE_PROMPT_MARKER} You are on Step {step.index + 1} of {len(plan.steps)}.\n\n"
        f"Current step: {step.title}\n{step.description}\n\n"
        f"Plan summary: {plan.summary}\n\nFull plan:\n{outline}\n"
    )
    if completed:
        prompt += f"\nCompleted steps:\n{completed}\n"
    prompt += (
        "\nExecute the current step using the available tools. "
        "After completing the step, briefly describe what you did."
    )
    return prompt


def build_review_prompt(plan: Plan) -> str:
    return f"""All steps have been completed. Review the work done:

Plan Summary: {plan.summary}

Completed steps:
{_completed_lines(plan)}

Verify that the task has been completed successfully. If everything looks good, respond with "{TASK_COMPLETE_SENTINEL}".
If there are issues or more work needed, explain what needs to be done."""
