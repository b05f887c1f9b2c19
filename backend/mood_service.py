"""
Summary + mood for a journal entry.

``MoodAnalyzer.analyze`` always returns a value: when the LLM is not
configured or fails for any reason it falls back to a deterministic
truncated summary and a keyword scan.
"""

import logging
from dataclasses import dataclass, asdict

from gpt_service import DEFAULT_API_URL, DEFAULT_MODEL, generate_analysis
from models import Mood
from sentiment_service import sentiment_score

logger = logging.getLogger("emojournal.mood")

SUMMARY_MAX_CHARS = 120
ELLIPSIS = "…"

# First match wins, so order matters.
MOOD_KEYWORDS = [
    (Mood.HAPPY, ("happy", "joy", "excited", "great")),
    (Mood.SAD, ("sad", "down", "depressed")),
    (Mood.ANXIOUS, ("anxious", "worried", "nervous")),
    (Mood.GRATEFUL, ("grateful", "thankful", "blessed")),
    (Mood.CALM, ("calm", "peaceful", "serene")),
    (Mood.FRUSTRATED, ("frustrated", "angry", "annoyed")),
    (Mood.ENERGETIC, ("energy", "energetic", "pumped")),
]
DEFAULT_MOOD = Mood.REFLECTIVE


@dataclass(frozen=True)
class Analysis:
    summary: str
    mood: str
    score: float
    source: str  # "llm" or "fallback"

    def to_dict(self):
        return asdict(self)


def fallback_summary(text, max_chars=SUMMARY_MAX_CHARS):
    if len(text) <= max_chars:
        return text
    return text[:max_chars].rstrip() + ELLIPSIS


def detect_mood(text):
    lower = text.lower()
    for mood, keywords in MOOD_KEYWORDS:
        if any(word in lower for word in keywords):
            return mood.value
    return DEFAULT_MOOD.value


class MoodAnalyzer:
    def __init__(self, api_key=None, model=DEFAULT_MODEL, api_url=DEFAULT_API_URL,
                 app_url="", client=None):
        self.api_key = api_key
        self.model = model
        self.api_url = api_url
        self.app_url = app_url
        self.client = client

    @property
    def llm_configured(self):
        return bool(self.api_key)

    def fallback(self, text):
        return Analysis(
            summary=fallback_summary(text),
            mood=detect_mood(text),
            score=sentiment_score(text),
            source="fallback",
        )

    def analyze(self, text):
        if not self.llm_configured:
            logger.info("No LLM API key configured, using fallback analysis")
            return self.fallback(text)

        try:
            result = generate_analysis(
                text,
                api_key=self.api_key,
                model=self.model,
                api_url=self.api_url,
                app_url=self.app_url,
                client=self.client,
            )
        except Exception:
            logger.warning("LLM analysis failed, using fallback", exc_info=True)
            return self.fallback(text)

        logger.info("LLM analysis completed: mood=%s", result.mood.value)
        return Analysis(
            summary=result.summary.strip() or fallback_summary(text),
            mood=result.mood.value,
            score=sentiment_score(text),
            source="llm",
        )
