from __future__ import annotations

from enum import Enum

from mantis.agent.cognition.nlu.catalog import SentimentLexicon


class Sentiment(str, Enum):
    POSITIVE = "positive"
    NEUTRAL = "neutral"
    NEGATIVE = "negative"


def analyze_sentiment(text: str, lexicon: SentimentLexicon) -> Sentiment:
    lowered = str(text or "").lower()
    positive = sum(1 for word in lexicon.positive if word in lowered)
    negative = sum(1 for word in lexicon.negative if word in lowered)
    if positive > negative:
        return Sentiment.POSITIVE
    if negative > positive:
        return Sentiment.NEGATIVE
    return Sentiment.NEUTRAL
