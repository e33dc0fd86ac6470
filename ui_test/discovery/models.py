"""
Pydantic models for discovered test definitions.

A TestSuite is an ordered sequence of TestCases; each TestCase is an ordered
sequence of Steps. All of them are immutable once discovery has built them.
"""

from typing import Annotated, Optional, Tuple, Union, Literal

from pydantic import BaseModel, Field, ConfigDict, field_validator


class StepModel(BaseModel):
    """Base for all step variants."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    @field_validator(
        "url", "selector", "value", "expected", "label", mode="before", check_fields=False
    )
    @classmethod
    def scalar_to_text(cls, v):
        # YAML loads `value: 12345` as an int
        if isinstance(v, (int, float)) and not isinstance(v, bool):
            return str(v)
        return v

    def describe(self) -> str:
        """One-line label used in reports and logs."""
        raise NotImplementedError


class Navigate(StepModel):
    """Load a URL in the current page."""

    action: Literal["navigate"] = "navigate"
    url: str = Field(..., min_length=1, description="URL to load")

    def describe(self) -> str:
        return f"navigate {self.url}"


class Click(StepModel):
    """Click the first element matching a CSS selector."""

    action: Literal["click"] = "click"
    selector: str = Field(..., min_length=1, description="CSS selector")

    def describe(self) -> str:
        return f"click {self.selector}"


class Fill(StepModel):
    """Set the value of an input element."""

    action: Literal["fill"] = "fill"
    selector: str = Field(..., min_length=1, description="CSS selector")
    value: str = Field(..., description="Value to type")

    def describe(self) -> str:
        return f"fill {self.selector}"


class AssertText(StepModel):
    """Check that an element's text contains the expected string."""

    action: Literal["assert_text"] = "assert_text"
    selector: str = Field(..., min_length=1, description="CSS selector")
    expected: str = Field(..., description="Expected text fragment")

    def describe(self) -> str:
        return f"assert_text {self.selector} contains {self.expected!r}"


class AssertVisible(StepModel):
    """Check that an element exists and is visible."""

    action: Literal["assert_visible"] = "assert_visible"
    selector: str = Field(..., min_length=1, description="CSS selector")

    def describe(self) -> str:
        return f"assert_visible {self.selector}"


class Screenshot(StepModel):
    """Capture the current page."""

    action: Literal["screenshot"] = "screenshot"
    label: str = Field(..., min_length=1, description="Screenshot label")

    def describe(self) -> str:
        return f"screenshot {self.label}"


class Wait(StepModel):
    """Pause for a fixed duration."""

    action: Literal["wait"] = "wait"
    duration: float = Field(..., ge=0, description="Pause in seconds")

    def describe(self) -> str:
        return f"wait {self.duration:g}s"


Step = Annotated[
    Union[Navigate, Click, Fill, AssertText, AssertVisible, Screenshot, Wait],
    Field(discriminator="action"),
]

STEP_ACTIONS = (
    "navigate",
    "click",
    "fill",
    "assert_text",
    "assert_visible",
    "screenshot",
    "wait",
)


class TestCase(BaseModel):
    """A single declarative UI test."""

    __test__ = False

    model_config = ConfigDict(extra="forbid", frozen=True)

    id: str = Field(..., description="Unique identifier: '<path>::<name>'")
    name: str = Field(..., description="Human-readable test name")
    path: str = Field(..., description="Definition file the case came from")
    steps: Tuple[Step, ...] = Field(default_factory=tuple, description="Ordered steps")
    tags: Tuple[str, ...] = Field(default_factory=tuple, description="Case tags")
    timeout: Optional[float] = Field(
        None, gt=0, description="Per-case timeout override in seconds"
    )
    skip: bool = Field(False, description="Explicitly skipped in its definition")
    skip_reason: Optional[str] = Field(None, description="Why the case is skipped")

    @field_validator("name")
    @classmethod
    def validate_name(cls, v):
        if not v or not v.strip():
            raise ValueError("Test name cannot be empty")
        return v.strip()


class DiscoveryFailure(BaseModel):
    """A definition file that could not be parsed."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    path: str = Field(..., description="Malformed definition file")
    message: str = Field(..., description="Why parsing failed")


class TestSuite(BaseModel):
    """Ordered, read-only collection of discovered test cases."""

    __test__ = False

    model_config = ConfigDict(extra="forbid", frozen=True)

    cases: Tuple[TestCase, ...] = Field(default_factory=tuple)
    failures: Tuple[DiscoveryFailure, ...] = Field(default_factory=tuple)
    files: Tuple[str, ...] = Field(
        default_factory=tuple, description="Definition files in discovery order"
    )

    def __len__(self) -> int:
        return len(self.cases)

    @property
    def has_failures(self) -> bool:
        return bool(self.failures)

    @property
    def runnable(self) -> Tuple[TestCase, ...]:
        """Cases that will actually touch the backend."""
        return tuple(case for case in self.cases if not case.skip)

    def file_position(self, path: str) -> int:
        """Position of a definition file in discovery order."""
        try:
            return self.files.index(path)
        except ValueError:
            return len(self.files)
