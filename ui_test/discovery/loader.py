"""
Test discovery.

Walks a file or directory, parses every candidate definition file and builds
a TestSuite in lexicographic path order. A malformed file fails on its own;
the rest of the suite is still returned.
"""

import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union

import yaml
from pydantic import TypeAdapter, ValidationError

from ..core.durations import parse_duration
from ..core.exceptions import ConfigError, DiscoveryError
from .models import (
    STEP_ACTIONS,
    DiscoveryFailure,
    Step,
    TestCase,
    TestSuite,
)

logger = logging.getLogger(__name__)

SUPPORTED_SUFFIXES = (".yaml", ".yml", ".json")

# Scalar shorthand: `- click: "#submit"` fills this field
_PRIMARY_FIELDS = {
    "navigate": "url",
    "click": "selector",
    "assert_visible": "selector",
    "screenshot": "label",
    "wait": "duration",
}

_FILE_KEYS = {"name", "description", "tags", "timeout", "skip", "steps", "tests"}
_CASE_KEYS = {"name", "description", "tags", "timeout", "skip", "steps"}

_step_adapter = TypeAdapter(Step)


class DefinitionError(ValueError):
    """A definition file is structurally invalid."""


def is_candidate(path: Path) -> bool:
    """Whether a file name follows the test definition naming convention."""
    if path.suffix.lower() not in SUPPORTED_SUFFIXES:
        return False
    stem = path.stem
    return stem.startswith("test_") or stem.endswith("_test")


def iter_definition_files(root: Path) -> List[Path]:
    """
    Enumerate candidate definition files below a directory.

    Hidden directories are skipped. The result is sorted lexicographically by
    the path relative to ``root`` so reports are reproducible.
    """
    found = []
    for path in root.rglob("*"):
        relative = path.relative_to(root)
        if any(part.startswith(".") for part in relative.parts):
            continue
        if path.is_file() and is_candidate(path):
            found.append(path)
    return sorted(found, key=lambda p: p.relative_to(root).as_posix())


def discover(path: Union[str, Path], strict: bool = False) -> TestSuite:
    """
    Discover test cases below ``path``.

    Args:
        path: A definition file or a directory to search recursively
        strict: Raise DiscoveryError when any file fails to parse

    Returns:
        Suite of all successfully parsed cases, with parse failures attached

    Raises:
        ConfigError: If the path does not exist or is an unsupported file
        DiscoveryError: In strict mode, if any definition is malformed
    """
    root = Path(path)
    if not root.exists():
        raise ConfigError(f"Test path does not exist: {root}", setting="test_path")

    if root.is_file():
        if root.suffix.lower() not in SUPPORTED_SUFFIXES:
            raise ConfigError(
                f"Unsupported test definition file: {root} "
                f"(expected one of {', '.join(SUPPORTED_SUFFIXES)})",
                setting="test_path",
            )
        files = [root]
    else:
        files = iter_definition_files(root)

    cases: List[TestCase] = []
    failures: List[DiscoveryFailure] = []
    names: List[str] = []

    for file_path in files:
        display = file_path.as_posix()
        names.append(display)
        try:
            parsed = load_definition_file(file_path, display)
        except (OSError, UnicodeDecodeError, yaml.YAMLError, json.JSONDecodeError, ValueError) as e:
            message = _describe_error(e)
            logger.warning(f"Skipping malformed test definition {display}: {message}")
            failures.append(DiscoveryFailure(path=display, message=message))
            continue
        cases.extend(parsed)

    suite = TestSuite(cases=tuple(cases), failures=tuple(failures), files=tuple(names))
    logger.info(
        f"Discovered {len(suite.cases)} test case(s) in {len(files)} file(s)",
        extra={
            "metadata": {
                "path": str(root),
                "files": len(files),
                "cases": len(suite.cases),
                "failures": len(failures),
            }
        },
    )

    if strict and failures:
        raise DiscoveryError(
            f"{len(failures)} test definition file(s) could not be parsed",
            failures=failures,
            suite=suite,
        )

    return suite


def load_definition_file(path: Path, display: Optional[str] = None) -> List[TestCase]:
    """Read and parse one definition file."""
    text = path.read_text(encoding="utf-8")
    if path.suffix.lower() == ".json":
        data = json.loads(text)
    else:
        data = yaml.safe_load(text)
    return parse_definition(data, display or path.as_posix())


def parse_definition(data: Any, path: str) -> List[TestCase]:
    """
    Turn a decoded definition document into test cases.

    A document either holds a single case (``name`` and ``steps`` at the top
    level) or a ``tests`` list. File-level ``tags`` are inherited by every
    case and a file-level ``timeout`` is the default for cases without one.
    """
    if not isinstance(data, dict):
        raise DefinitionError("definition must be a mapping")

    _reject_unknown(data, _FILE_KEYS, "definition")

    file_tags = _parse_tags(data.get("tags"), "definition")
    file_timeout = _parse_timeout(data.get("timeout"), "definition")

    if "tests" in data and "steps" in data:
        raise DefinitionError("definition cannot have both 'tests' and 'steps'")

    if "tests" in data:
        entries = data["tests"]
        if not isinstance(entries, list):
            raise DefinitionError("'tests' must be a list")
        if "skip" in data:
            raise DefinitionError("'skip' belongs on individual tests")
    elif "steps" in data:
        entries = [
            {
                key: data[key]
                for key in ("name", "description", "steps", "skip")
                if key in data
            }
        ]
        entries[0].setdefault("name", Path(path).stem)
    else:
        raise DefinitionError("definition has neither 'steps' nor 'tests'")

    cases: List[TestCase] = []
    seen = set()
    for index, entry in enumerate(entries):
        case = _parse_case(entry, index, path, file_tags, file_timeout)
        if case.name in seen:
            raise DefinitionError(f"duplicate test name: {case.name!r}")
        seen.add(case.name)
        cases.append(case)

    return cases


def _parse_case(
    entry: Any,
    index: int,
    path: str,
    file_tags: Tuple[str, ...],
    file_timeout: Optional[float],
) -> TestCase:
    where = f"tests[{index}]"
    if not isinstance(entry, dict):
        raise DefinitionError(f"{where} must be a mapping")

    _reject_unknown(entry, _CASE_KEYS, where)

    name = entry.get("name")
    if isinstance(name, (int, float)) and not isinstance(name, bool):
        name = str(name)
    if not isinstance(name, str) or not name.strip():
        raise DefinitionError(f"{where} needs a non-empty 'name'")
    name = name.strip()
    where = f"test {name!r}"

    skip, skip_reason = _parse_skip(entry.get("skip", False), where)

    raw_steps = entry.get("steps") or []
    if not isinstance(raw_steps, list):
        raise DefinitionError(f"{where}: 'steps' must be a list")
    if not raw_steps and not skip:
        raise DefinitionError(f"{where} has no steps")

    steps = tuple(
        _parse_step(raw, f"{where} step {number}")
        for number, raw in enumerate(raw_steps, start=1)
    )

    tags = file_tags + tuple(
        tag for tag in _parse_tags(entry.get("tags"), where) if tag not in file_tags
    )
    timeout = _parse_timeout(entry.get("timeout"), where)

    return TestCase(
        id=f"{path}::{name}",
        name=name,
        path=path,
        steps=steps,
        tags=tags,
        timeout=timeout if timeout is not None else file_timeout,
        skip=skip,
        skip_reason=skip_reason,
    )


def _parse_step(raw: Any, where: str):
    if not isinstance(raw, dict) or len(raw) != 1:
        raise DefinitionError(f"{where} must be a mapping with exactly one action")

    action, value = next(iter(raw.items()))
    if action not in STEP_ACTIONS:
        raise DefinitionError(
            f"{where}: unknown action {action!r} (expected one of {', '.join(STEP_ACTIONS)})"
        )

    if isinstance(value, dict):
        fields: Dict[str, Any] = dict(value)
    elif action in _PRIMARY_FIELDS:
        fields = {_PRIMARY_FIELDS[action]: value}
    else:
        raise DefinitionError(f"{where}: '{action}' needs a mapping of arguments")

    if action == "wait" and "duration" in fields:
        try:
            fields["duration"] = parse_duration(fields["duration"])
        except ValueError as e:
            raise DefinitionError(f"{where}: {e}")

    fields["action"] = action
    try:
        return _step_adapter.validate_python(fields)
    except ValidationError as e:
        raise DefinitionError(f"{where}: {_first_error(e)}")


def _parse_tags(raw: Any, where: str) -> Tuple[str, ...]:
    if raw is None:
        return ()
    if isinstance(raw, str):
        raw = [raw]
    if not isinstance(raw, list) or not all(isinstance(t, str) and t.strip() for t in raw):
        raise DefinitionError(f"{where}: 'tags' must be a list of non-empty strings")
    tags: List[str] = []
    for tag in raw:
        tag = tag.strip()
        if tag not in tags:
            tags.append(tag)
    return tuple(tags)


def _parse_timeout(raw: Any, where: str) -> Optional[float]:
    if raw is None:
        return None
    try:
        value = parse_duration(raw)
    except ValueError as e:
        raise DefinitionError(f"{where}: {e}")
    if value <= 0:
        raise DefinitionError(f"{where}: timeout must be positive")
    return value


def _parse_skip(raw: Any, where: str) -> Tuple[bool, Optional[str]]:
    if isinstance(raw, bool):
        return raw, None
    if isinstance(raw, str) and raw.strip():
        return True, raw.strip()
    raise DefinitionError(f"{where}: 'skip' must be a boolean or a reason string")


def _reject_unknown(mapping: Dict[str, Any], allowed: set, where: str) -> None:
    unknown = sorted(str(key) for key in set(mapping) - allowed)
    if unknown:
        raise DefinitionError(f"{where}: unknown key(s) {', '.join(unknown)}")


def _first_error(error: ValidationError) -> str:
    details = error.errors()
    if not details:
        return str(error)
    first = details[0]
    location = ".".join(str(part) for part in first.get("loc", ()) if part != "action")
    return f"{location}: {first['msg']}" if location else first["msg"]


def _describe_error(error: Exception) -> str:
    if isinstance(error, yaml.YAMLError):
        return f"invalid YAML: {error}"
    if isinstance(error, json.JSONDecodeError):
        return f"invalid JSON: {error}"
    if isinstance(error, ValidationError):
        return _first_error(error)
    return str(error)
