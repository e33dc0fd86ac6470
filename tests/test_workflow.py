"""
Unit tests for run identification.
"""

import re

from ui_test.core.workflow import RunContext, generate_run_id


def test_generate_run_id_format():
    run_id = generate_run_id()

    assert re.fullmatch(r"\d{8}-[0-9a-f]{12}", run_id)


def test_run_ids_are_unique():
    assert len({generate_run_id() for _ in range(50)}) == 50


def test_run_context_to_dict():
    context = RunContext(metadata={"jobs": 2})

    data = context.to_dict()

    assert data["run_id"] == context.run_id
    assert data["metadata"] == {"jobs": 2}
    assert data["duration"] >= 0
    assert data["started_at"].endswith("+00:00")
