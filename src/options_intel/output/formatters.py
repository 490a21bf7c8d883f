from options_intel.models.common import Confidence
from options_intel.models.multi_source import OverallSentiment
from options_intel.timeutil import NO_DATA_AGE_DAYS


def fmt_pct(value: float | None, decimals: int = 1) -> str:
    """Format a 0..1 ratio as a percentage."""
    if value is None:
        return "N/A"
    return f"{value * 100:.{decimals}f}%"


def fmt_score(value: float | None, decimals: int = 2) -> str:
    if value is None:
        return "N/A"
    return f"{value:+.{decimals}f}"


def fmt_age(days: int) -> str:
    if days >= NO_DATA_AGE_DAYS:
        return "no data"
    if days == 0:
        return "today"
    return f"{days}d"


def confidence_color(confidence: Confidence) -> str:
    colors = {
        Confidence.HIGH: "bold green",
        Confidence.MEDIUM: "yellow",
        Confidence.LOW: "red",
    }
    return colors.get(confidence, "white")


def sentiment_color(sentiment: OverallSentiment) -> str:
    colors = {
        OverallSentiment.BULLISH: "green",
        OverallSentiment.NEUTRAL: "yellow",
        OverallSentiment.BEARISH: "red",
    }
    return colors.get(sentiment, "dim")


def quality_bar(score: int, width: int = 10) -> str:
    filled = round(min(score, 100) / 100 * width)
    return "█" * filled + "░" * (width - filled)
