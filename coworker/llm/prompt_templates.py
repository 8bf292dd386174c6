"""Prompt templates for task agents."""

from typing import Optional

from coworker.app.models.task import Task

CONTEXT_LOADED_MARKER = "Use this context to complete the task. All available information has been loaded."

INITIAL_USER_MESSAGE = (
    "Please begin working on the task. Create your output and use the "
    "mark_complete tool when finished."
)


def get_task_context(
    task: Task,
    loaded_attachments: Optional[list[str]] = None,
    loaded_images: Optional[list[str]] = None
) -> str:
    """
    Describe a linked task for the agent's system prompt.

    Args:
        task: Linked task from the task store
        loaded_attachments: Attachment filenames copied into the workspace
        loaded_images: Image attachments included in the first message

    Returns:
        Context section to append to the task line
    """
    lines = [
        "",
        "",
        "Task Context (from linked task):",
        f"- Task ID: {task.id}",
        f"- Task Title: {task.title}",
        f"- Priority: {task.priority.value}",
        f"- Deadline: {task.deadline or 'none'}",
        f"- Target Date: {task.target_date or 'none'}",
    ]

    if task.notes:
        lines.append("- Notes:")
        lines.extend(f"  * {note}" for note in task.notes)

    if loaded_attachments:
        lines.append(f"- Attachments loaded: {', '.join(loaded_attachments)}")
        for filename in loaded_images or []:
            lines.append(f"  * {filename} (image loaded for your analysis)")

    lines.append("")
    lines.append(CONTEXT_LOADED_MARKER)
    return "\n".join(lines)


def get_agent_system_prompt(task_description: str, task_context: str = "") -> str:
    """
    Generate the system prompt an agent keeps for its whole conversation.

    Agents with a fully loaded linked task start straight away; others are
    told to clarify vague requirements with request_user_feedback first.

    Args:
        task_description: What the agent was asked to do
        task_context: Output of get_task_context, if the agent has a linked task

    Returns:
        Formatted system prompt
    """
    has_full_context = CONTEXT_LOADED_MARKER in task_context

    if has_full_context:
        first_step = (
            "All task context has been loaded (notes, attachments, images). Review the "
            "provided information and begin work immediately unless something is genuinely unclear."
        )
        clarify_hints = ""
        focus_suffix = ""
    else:
        first_step = (
            "FIRST, carefully analyze the task. If it's vague, ambiguous, or unclear in ANY way, "
            "use the request_user_feedback tool to ask clarifying questions BEFORE starting work"
        )
        clarify_hints = (
            "   - Ask about format preferences, length, tone, specific requirements, etc.\n"
            "   - It's better to ask too many questions than to make wrong assumptions\n"
            "   - Only proceed with creating content once you have clear, specific instructions\n"
        )
        focus_suffix = " AFTER you've clarified all requirements"

    return f"""You are a focused AI assistant working on a specific task. You have access to tools for file operations.

Task: {task_description}{task_context}

Important Instructions:
1. {first_step}
{clarify_hints}
2. Use ONE tool at a time and wait for the result before requesting another tool

3. Use the write_file tool to create your output in a file called 'artifact.md'

4. Use the mark_complete tool when you're done to indicate whether the work needs review

5. You're working in an isolated workspace directory

6. Focus on completing the task efficiently{focus_suffix}"""
