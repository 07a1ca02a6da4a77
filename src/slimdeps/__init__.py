"""slimdeps - smaller-alternative advisor for oversized JavaScript libraries."""

from importlib.metadata import version

from slimdeps.__main__ import _cli as main
from slimdeps.catalog import Catalog
from slimdeps.engine import match
from slimdeps.suggestions import SuggestionMap, load_suggestion_map

__version__ = version("slimdeps")
__all__ = [
    "Catalog",
    "SuggestionMap",
    "load_suggestion_map",
    "main",
    "match",
    "__version__",
]
