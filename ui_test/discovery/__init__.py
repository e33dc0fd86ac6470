"""
Test model and discovery for ui-test.

Turns on-disk YAML/JSON definitions into an ordered, immutable TestSuite.
"""

from .loader import discover, parse_definition, load_definition_file, is_candidate
from .models import (
    Step,
    Navigate,
    Click,
    Fill,
    AssertText,
    AssertVisible,
    Screenshot,
    Wait,
    TestCase,
    TestSuite,
    DiscoveryFailure,
)

__all__ = [
    "discover",
    "parse_definition",
    "load_definition_file",
    "is_candidate",
    "Step",
    "Navigate",
    "Click",
    "Fill",
    "AssertText",
    "AssertVisible",
    "Screenshot",
    "Wait",
    "TestCase",
    "TestSuite",
    "DiscoveryFailure",
]
