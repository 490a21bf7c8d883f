from options_intel.models.common import Confidence, SentimentLabel, SourceType
from options_intel.models.intelligence import (
    EarningsIntelligence,
    IntelligenceOptions,
    IntelligenceReport,
    NewsIntelligence,
)
from options_intel.models.multi_source import MultiSourceQuery, MultiSourceResult
from options_intel.models.research import ResearchResult, RouterOptions, RouterStats

__all__ = [
    "Confidence",
    "EarningsIntelligence",
    "IntelligenceOptions",
    "IntelligenceReport",
    "MultiSourceQuery",
    "MultiSourceResult",
    "NewsIntelligence",
    "ResearchResult",
    "RouterOptions",
    "RouterStats",
    "SentimentLabel",
    "SourceType",
]
