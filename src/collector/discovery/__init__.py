"""Symbol discovery and listing-date resolution."""

from collector.discovery.exchange_info import ExchangeInfoProvider
from collector.discovery.listing_analyzer import ListingAnalyzer
from collector.discovery.listing_resolver import ListingDateResolver
from collector.discovery.symbol_collector import SymbolCollector

__all__ = [
    "ExchangeInfoProvider",
    "ListingAnalyzer",
    "ListingDateResolver",
    "SymbolCollector",
]
