from __future__ import annotations

from typing import Any

from cfiportal.domain.models import Project


PERSONA_SYSTEM = (
    "You are a B2B marketing analyst. Answer with a single JSON object with keys "
    "name, age, job, description, goals, pain_points, channels."
)
COMPETITOR_SYSTEM = (
    "You are a market analyst. Answer with a JSON object {\"competitors\": [...]} where each "
    "item has name, website, strengths, weaknesses."
)
STRATEGY_SYSTEM = (
    "You are a marketing strategist. Answer with a single JSON object with keys "
    "positioning, key_messages, channels, timeline, budget_allocation, kpis."
)
CONTENT_SYSTEM = (
    "You are a copywriter. Answer with a single JSON object with keys "
    "title, body, call_to_action, hashtags."
)


def project_brief(project: Project) -> str:
    lines = [f"Project: {project.name}"]
    for label, value in (
        ("Company", project.company_name),
        ("Sector", project.sector),
        ("Goal", project.goal_type),
        ("Target audience", project.target_audience),
        ("Budget", project.budget),
        ("Website", project.website_url),
        ("Description", project.description),
    ):
        if value not in (None, ""):
            lines.append(f"{label}: {value}")
    return "\n".join(lines)


def persona_prompt(project: Project, index: int, total: int, additional_context: str | None) -> str:
    prompt = f"{project_brief(project)}\n\nCreate persona {index} of {total}; make it distinct from the others."
    if additional_context:
        prompt += f"\nAdditional context: {additional_context}"
    return prompt


def competitor_prompt(project: Project) -> str:
    return f"{project_brief(project)}\n\nList up to 5 direct competitors."


def strategy_prompt(
    project: Project,
    personas: list[dict[str, Any]],
    competitors: list[dict[str, Any]],
    focus_channels: list[str],
    additional_context: str | None,
) -> str:
    parts = [project_brief(project)]
    if personas:
        parts.append("Personas: " + "; ".join(f"{p.get('name')} ({p.get('job')})" for p in personas))
    if competitors:
        parts.append("Competitors: " + ", ".join(str(c.get("name")) for c in competitors))
    if focus_channels:
        parts.append("Focus channels: " + ", ".join(focus_channels))
    if additional_context:
        parts.append(f"Additional context: {additional_context}")
    return "\n".join(parts)


def content_prompt(
    project: Project,
    strategy: dict[str, Any] | None,
    asset_type: str,
    variation: int,
    tone_of_voice: str | None,
    additional_context: str | None,
) -> str:
    parts = [project_brief(project), f"Asset type: {asset_type}", f"Variation #{variation}"]
    if strategy and strategy.get("positioning"):
        parts.append(f"Positioning: {strategy['positioning']}")
    if tone_of_voice:
        parts.append(f"Tone of voice: {tone_of_voice}")
    if additional_context:
        parts.append(f"Additional context: {additional_context}")
    return "\n".join(parts)


def chat_system_prompt(context_label: str, data_summary: str) -> str:
    return (
        f"You are the CFI assistant for {context_label}. Answer in the user's language, "
        "using only the data below; say so when the data does not cover the question.\n\n"
        f"DATA:\n{data_summary}"
    )
