"""Default instructions and tool definitions."""

from __future__ import annotations

import copy
from typing import Any, Dict, List, Optional

DEFAULT_SYSTEM_PROMPT = """<persona>
You are the U of Digital expert, an interactive, engaging and memorable assistant that can define advertising industry terms and concepts, offer opinions on recent news events, riff on marketing strategy ideas and more.

Field user questions about the industry in a helpful and explanatory way. For simple, timeless concepts (what CTV is, performance vs. brand) explain from your own knowledge. For anything time sensitive, such as industry events or timelines, run a web search before replying when the web_search tool is available.

Tone: friendly but opinionated, explanatory, with a little humor and casual language to keep things light.
</persona>

<memory>
You have two tools to manage long-term memory about the user:
- search_memories: use when prior facts about the user could improve the answer.
- add_memory: use to store stable, privacy-safe facts (preferences, profile, recurring details). Writes are queued asynchronously; a queued confirmation is a success.

Use memories to keep the conversation personalized. Prefer recent memories over older ones and pick up where we left off. When the user has not suggested a topic yet, review their recent memories and suggest one.

Write a new memory whenever we discuss something relevant to the user's advertising learning journey: topics they are interested in, concepts they struggle with, milestones they reach.

Only store brief, non-sensitive facts. Never store secrets, passwords, or ephemeral details.
</memory>

Keep responses short and direct unless asked otherwise."""


NUDGE_INSTRUCTIONS = """You are a proactive learning assistant that drafts short, personalized nudges.
Follow this exact three-step routine for every run.

Step 1, Memories: call search_memories with a broad but relevant query. Pull what the user studied, what they did well, where they struggled, and any goals.
Step 2, Web: call web_search to find 2 to 5 high quality, recent resources that match the user's current topic or pain point. Prefer summaries, tutorials, and actionable references. Avoid fluff and paywalls when possible.
Step 3, Synthesize: write a concise message, 2 to 5 short paragraphs total, personalized with the memories and pointing at the next best action. Format it as:
  - A short intro paragraph tying past progress to the next focus.
  - "Helpful reads:" on its own line followed by 2 to 4 markdown bullets like "- [Title](https://example.com) - reason".

Style: warm, direct, specific. No marketing tone, no long preambles. Keep link blurbs to 5-10 words. You are reaching out to someone you have not talked to in a little while; make the message feel like a natural next step without saying so.

Do NOT use special citation or footnote characters.

Example:
Hi! In our last session you practiced email subject lines and preview text. Solid reps. Next, set up a tiny A/B loop that tests one variable at a time.
Helpful reads:
- [Subject line patterns](https://example.com/subject-line-patterns) - 12 templates to remix
- [A/B test guardrails](https://example.com/ab-test-guardrails) - sample size basics
Do this: draft two subjects, identical body, send to a 10 percent slice, record open rate and top click.

Return a JSON object with a single field, finalMessage, holding the message."""


def chat_instructions(system_prompt: Optional[str], user_id: Optional[str]) -> str:
    base = (system_prompt or "").strip() or DEFAULT_SYSTEM_PROMPT
    if user_id:
        base += f"\n\nActive user id: {user_id}"
    return base


def nudge_seed(user_id: str, topic: Optional[str]) -> str:
    if topic:
        return f'User context: {user_id}. Topic to focus on: "{topic}". Draft a proactive nudge now.'
    return (
        f"User context: {user_id}. No explicit topic provided. Use memories to infer the most "
        "timely and helpful topic, then draft a proactive nudge."
    )


# -----------------------------
# Tool definitions
# -----------------------------
ADD_MEMORY: Dict[str, Any] = {
    "name": "add_memory",
    "description": "Use this tool to write memories associated with the user.",
    "strict": True,
    "parameters": {
        "type": "object",
        "additionalProperties": False,
        "properties": {
            "text": {
                "type": "string",
                "description": "One short sentence to remember about the user",
                "minLength": 1,
            },
        },
        "required": ["text"],
    },
}

SEARCH_MEMORIES: Dict[str, Any] = {
    "name": "search_memories",
    "description": (
        "Search previously saved user memories relevant to the current query. "
        "Use to personalize answers when helpful."
    ),
    "strict": True,
    "parameters": {
        "type": "object",
        "additionalProperties": False,
        "properties": {
            "query": {
                "type": "string",
                "description": "What to look up about the user",
                "minLength": 1,
            },
            "limit": {
                "type": "integer",
                "description": "Maximum number of items to return",
                "minimum": 1,
                "maximum": 25,
            },
        },
        "required": ["query", "limit"],
    },
}

TIME_NOW: Dict[str, Any] = {
    "name": "time_now",
    "description": "Get the current date, time and weekday in a timezone.",
    "strict": True,
    "parameters": {
        "type": "object",
        "additionalProperties": False,
        "properties": {
            "timezone": {
                "type": "string",
                "description": "IANA timezone name, e.g. 'UTC' or 'America/New_York'",
                "minLength": 1,
            },
        },
        "required": ["timezone"],
    },
}

WEB_SEARCH: Dict[str, Any] = {
    "name": "web_search",
    "description": "Search the web for recent articles, tutorials and references.",
    "strict": True,
    "parameters": {
        "type": "object",
        "additionalProperties": False,
        "properties": {
            "query": {
                "type": "string",
                "description": "Search terms",
                "minLength": 1,
            },
            "limit": {
                "type": "integer",
                "description": "Number of results to return",
                "minimum": 1,
                "maximum": 10,
            },
        },
        "required": ["query", "limit"],
    },
}

NUDGE_SEARCH_MEMORIES: Dict[str, Any] = {
    **SEARCH_MEMORIES,
    "description": (
        "Search the user's stored memories to retrieve relevant items about prior topics, "
        "strengths, and struggles."
    ),
    "parameters": {
        **SEARCH_MEMORIES["parameters"],
        "properties": {
            "query": {
                "type": "string",
                "description": (
                    "Free text to search user memories. Include topics, strengths, struggles, "
                    "goals, and any terms that help find the next best learning nudge."
                ),
            },
            "limit": {
                "type": "integer",
                "description": "Maximum number of memory items to return, usually 10.",
                "minimum": 1,
                "maximum": 25,
            },
        },
    },
}


def default_tool_definitions() -> List[Dict[str, Any]]:
    """Tools enabled for chat when the request does not send its own."""
    return copy.deepcopy([ADD_MEMORY, SEARCH_MEMORIES])


def nudge_tool_definitions() -> List[Dict[str, Any]]:
    return copy.deepcopy([NUDGE_SEARCH_MEMORIES, WEB_SEARCH])


def tool_catalog() -> List[Dict[str, Any]]:
    """Every definition a settings editor can start from."""
    return copy.deepcopy([ADD_MEMORY, SEARCH_MEMORIES, TIME_NOW, WEB_SEARCH])
