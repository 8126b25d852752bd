# Copyright (c) 2026 Heureum AI. All rights reserved.

"""
Prompt text used by the compaction safeguard and the bundled summarizer.

All values are static strings; nothing here is derived from session state.
"""

DEFAULT_SUMMARY_FALLBACK = "No prior history."

FALLBACK_SUMMARY = (
    "Summary unavailable due to context limits. Older messages were truncated."
)

SPLIT_TURN_HEADER = "**Turn Context (split turn):**"

TURN_PREFIX_INSTRUCTIONS = (
    "This summary covers the prefix of a split turn. Focus on the original "
    "request, early progress, and any details needed to understand the "
    "retained suffix."
)

STRUCTURED_SUMMARY_TEMPLATE = """Produce the summary using EXACTLY the following structure. Every section MUST be present; write "None" when a section has nothing to report.

## Goal
What the user is trying to accomplish. List every distinct task if the session covers more than one.

## Progress
What is done, what is in progress, and what is blocked.

## Key Data
Preserve VERBATIM: file paths, identifiers, commands, URLs, error messages, numbers, and any values the work depends on. Do not paraphrase them.

## Decisions
Choices made so far, each with a one-line rationale.

## Modified Files
Every file created, edited, or deleted, with a short note on the change.

## Next Steps
Ordered list of what should happen next.

## Constraints
Requirements, preferences, and limits stated by the user or discovered during the work."""

COMPACTION_SYSTEM_PROMPT = (
    "You are a context summarization assistant. Your task is to read a conversation "
    "between a user and an AI assistant, then produce a summary another model will "
    "use to continue the work.\n\n"
    "Do NOT continue the conversation. Do NOT respond to any questions in the "
    "conversation. ONLY output the summary."
)

COMPACTION_PROMPT = """<conversation>
{conversation}
</conversation>

The messages above are a conversation to summarize. Create a context checkpoint summary that another LLM will use to continue the work.

Cover the user's goals, the progress so far, decisions and their rationale, open questions, and the next steps. Preserve exact file paths, function names, and error messages.{instructions}"""

COMPACTION_UPDATE_PROMPT = """<conversation>
{conversation}
</conversation>

<previous-summary>
{previous_summary}
</previous-summary>

The messages above are NEW conversation messages to incorporate into the existing summary provided in <previous-summary> tags.

Update the existing summary with new information. RULES:
- PRESERVE all existing information from the previous summary
- ADD new progress, decisions, and context from the new messages
- UPDATE next steps based on what was accomplished
- PRESERVE exact file paths, function names, and error messages
- If something is no longer relevant, you may remove it{instructions}"""

INSTRUCTIONS_BLOCK = """

<instructions>
{instructions}
</instructions>"""

MERGE_INSTRUCTIONS = (
    "Merge these partial summaries into a single cohesive summary. "
    "Preserve decisions, TODOs, open questions, and any constraints."
)
