"""
Freshness windows by data category.

Provider clients pass these to ResilientCache.remember as the freshness
window. Retention is separate: every entry is kept for the stale
retention ceiling regardless of category.
"""
from enum import Enum
from typing import Dict


class DataCategory(Enum):
    """Categories of dashboard data with different freshness needs."""
    MARKET_DATA = "market_data"                # prices, market caps
    ECONOMIC_CALENDAR = "economic_calendar"    # upcoming releases
    INDICATOR = "indicator"                    # technical + macro indicators
    NEWS = "news"                              # news feeds
    CHART_ANNOTATION = "chart_annotation"      # event markers on charts
    SENTIMENT = "sentiment"                    # fear & greed, social sentiment


# Freshness window by category (in seconds)
FRESH_WINDOWS: Dict[DataCategory, int] = {
    DataCategory.MARKET_DATA: 60,            # 1 minute
    DataCategory.ECONOMIC_CALENDAR: 720,     # 12 minutes
    DataCategory.INDICATOR: 1800,            # 30 minutes
    DataCategory.NEWS: 3600,                 # 1 hour
    DataCategory.CHART_ANNOTATION: 3600,     # 1 hour
    DataCategory.SENTIMENT: 3600,            # 1 hour
}

DEFAULT_FRESH_WINDOW = FRESH_WINDOWS[DataCategory.MARKET_DATA]


def get_fresh_window(category: DataCategory) -> int:
    """
    Get the freshness window for a data category.

    Unknown categories get the shortest (market data) window.
    """
    return FRESH_WINDOWS.get(category, DEFAULT_FRESH_WINDOW)
