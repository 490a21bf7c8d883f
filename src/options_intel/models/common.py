from enum import StrEnum


class Confidence(StrEnum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"

    @staticmethod
    def from_score(score: float) -> "Confidence":
        if score >= 70:
            return Confidence.HIGH
        if score >= 40:
            return Confidence.MEDIUM
        return Confidence.LOW


class SourceType(StrEnum):
    EARNINGS_TRANSCRIPT = "earnings_transcript"
    MARKET_NEWS = "market_news"
    NEWS = "news"
    SENTIMENT = "sentiment"


class SentimentLabel(StrEnum):
    BULLISH = "Bullish"
    NEUTRAL = "Neutral"
    BEARISH = "Bearish"

    @staticmethod
    def from_score(score: float) -> "SentimentLabel":
        if score > 0.15:
            return SentimentLabel.BULLISH
        if score < -0.15:
            return SentimentLabel.BEARISH
        return SentimentLabel.NEUTRAL
