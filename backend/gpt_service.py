# gpt_service.py
import json
import logging

import httpx
from pydantic import BaseModel, Field

from models import Mood, MOOD_LABELS

logger = logging.getLogger("emojournal.gpt")

DEFAULT_API_URL = "https://api.openai.com/v1/chat/completions"
DEFAULT_MODEL = "gpt-4o-mini"

SYSTEM_PROMPT = (
    "You are a warm, trauma-informed journaling companion. "
    "Be concise, kind and accurate. Never diagnose."
)


class EntryAnalysis(BaseModel):
    summary: str = Field(..., min_length=1, description="A brief 1-2 sentence summary of the journal entry")
    mood: Mood = Field(..., description="The primary mood detected in the journal entry")


# Structured-output contract sent with every request.
ANALYSIS_RESPONSE_FORMAT = {
    "type": "json_schema",
    "json_schema": {
        "name": "journal_analysis",
        "strict": True,
        "schema": {
            "type": "object",
            "properties": {
                "summary": {
                    "type": "string",
                    "description": "A brief 1-2 sentence summary of the journal entry",
                },
                "mood": {
                    "type": "string",
                    "enum": MOOD_LABELS,
                    "description": "The primary mood detected in the journal entry",
                },
            },
            "required": ["summary", "mood"],
            "additionalProperties": False,
        },
    },
}


def build_prompt(text: str) -> str:
    return (
        "Analyze this journal entry and provide a brief summary and detect the primary mood:\n\n"
        f"\"{text}\"\n\n"
        "Be empathetic and accurate in your analysis."
    )


def generate_analysis(
    text: str,
    api_key: str,
    model: str = DEFAULT_MODEL,
    api_url: str = DEFAULT_API_URL,
    app_url: str = "",
    timeout: float = 30,
    client: httpx.Client = None,
) -> EntryAnalysis:
    """
    Ask the LLM for a summary + mood constrained to the mood enum.

    Raises on any failure (HTTP, JSON, schema); callers decide the fallback.
    """
    headers = {
        "Authorization": f"Bearer {api_key}",
        "Content-Type": "application/json",
        # Only used by OpenRouter-style gateways, ignored elsewhere.
        "HTTP-Referer": app_url,
        "X-Title": "EmoJournal",
    }

    body = {
        "model": model,
        "messages": [
            {"role": "system", "content": SYSTEM_PROMPT},
            {"role": "user", "content": build_prompt(text)},
        ],
        "response_format": ANALYSIS_RESPONSE_FORMAT,
        "max_tokens": 200,     # keep responses short & cheap
        "temperature": 0.3,
    }

    if client is None:
        with httpx.Client(timeout=timeout) as own_client:
            resp = own_client.post(api_url, headers=headers, json=body)
    else:
        resp = client.post(api_url, headers=headers, json=body)

    logger.debug("LLM status: %s", resp.status_code)
    resp.raise_for_status()
    data = resp.json()

    content = data["choices"][0]["message"]["content"]
    return EntryAnalysis.model_validate(json.loads(content))
