"""Agent prompt construction.

Builds the task prompt from the triggering GitHub event. The executor
treats the result as opaque text.
"""

from typing import List, Optional

from src.harness.webhook.models import TriggerEvent, TriggerKind


def get_trigger_directive(event: TriggerEvent) -> str:
    """Return the one-line instruction for the kind of trigger."""
    if event.kind is TriggerKind.ISSUE_OPENED:
        return "Triage this issue: summarize, reproduce if possible, propose next steps."
    return "Respond to the comment above."


def build_task_section(event: TriggerEvent, custom_prompt: Optional[str] = None) -> str:
    lines = ["## Task", "", get_trigger_directive(event)]
    if custom_prompt is not None and custom_prompt.strip():
        lines.extend(["", "**Additional Instructions:**", custom_prompt.strip()])
    lines.append("")
    return "\n".join(lines)


def build_agent_prompt(
    event: TriggerEvent,
    custom_prompt: Optional[str] = None,
    run_id: Optional[str] = None,
) -> str:
    """Build the complete agent prompt for a trigger.

    Args:
        event: The triggering webhook event.
        custom_prompt: Extra instructions appended to the task.
        run_id: Identifier of this run, shown in the environment section.

    Returns:
        Markdown prompt text.
    """
    target_label = "Pull Request" if event.is_pull_request else "Issue"
    number = event.issue_number

    parts: List[str] = [
        "# Agent Context\n\nYou are the Fro Bot Agent running as a GitHub automation.\n",
        build_task_section(event, custom_prompt),
        "\n".join(
            [
                "## Environment",
                f"- **Repository:** {event.full_repository}",
                f"- **Event:** {event.kind.value}",
                f"- **Actor:** {event.author}",
                f"- **Run ID:** {run_id or 'N/A'}",
                "",
            ]
        ),
        "\n".join(
            [
                f"## {target_label} Context",
                f"- **Number:** #{number}",
                f"- **Title:** {event.title or 'N/A'}",
                f"- **Type:** {'pr' if event.is_pull_request else 'issue'}",
                "",
            ]
        ),
    ]

    if event.body:
        heading = "Trigger Comment" if event.kind is TriggerKind.ISSUE_COMMENT else "Issue Body"
        parts.append(
            f"## {heading}\n**Author:** {event.author}\n\n```\n{event.body}\n```\n"
        )

    parts.append(
        "\n".join(
            [
                "## GitHub Operations",
                "Use the gh CLI for all GitHub interactions:",
                f"- Comment: `gh issue comment {number} --repo {event.full_repository} --body \"...\"`",
                f"- Create PR: `gh pr create --repo {event.full_repository} --title \"...\" --body \"...\"`",
                "",
                "## Response Requirements",
                f"Post exactly one reply comment on #{number} summarizing what you did.",
                "",
            ]
        )
    )

    return "\n".join(parts)
