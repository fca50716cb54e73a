# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Unit tests for ${stepId.path} references and step conditions
"""

import pytest

from toolvault.core.errors import ConditionError, ReferenceResolutionError
from toolvault.workflow.conditions import (
    BoolOp,
    Comparison,
    Literal,
    Not,
    Reference,
    compile_condition,
    evaluate_condition,
)
from toolvault.workflow.references import find_references, resolve_inputs, resolve_reference


@pytest.fixture
def outputs():
    return {
        "scan": {"host": "10.0.0.1", "open_ports": [22, 80], "summary": {"count": 2}},
        "check": {"flag": False, "status": "ok", "score": 7.5},
    }


class TestReferences:
    """Test reference resolution"""

    def test_find_references(self):
        assert find_references("${a.b} and ${c}") == ["a.b", "c"]

    def test_nested_path(self, outputs):
        assert resolve_reference("scan.summary.count", outputs) == 2

    def test_list_index(self, outputs):
        assert resolve_reference("scan.open_ports.1", outputs) == 80

    def test_whole_output(self, outputs):
        assert resolve_reference("check", outputs) == outputs["check"]

    def test_falsy_value_is_resolved(self, outputs):
        assert resolve_reference("check.flag", outputs) is False

    def test_unknown_step(self, outputs):
        with pytest.raises(ReferenceResolutionError) as exc_info:
            resolve_reference("missing.value", outputs)

        assert exc_info.value.code == "RESOLUTION_ERROR"
        assert exc_info.value.reference == "${missing.value}"

    @pytest.mark.parametrize("path", ["scan.nope", "scan.open_ports.5", "scan.host.length"])
    def test_missing_path(self, outputs, path):
        with pytest.raises(ReferenceResolutionError):
            resolve_reference(path, outputs)

    def test_full_reference_keeps_type(self, outputs):
        resolved = resolve_inputs({"ports": "${scan.open_ports}", "score": "${check.score}"}, outputs)

        assert resolved == {"ports": [22, 80], "score": 7.5}

    def test_embedded_references_become_strings(self, outputs):
        resolved = resolve_inputs({
            "message": "Host ${scan.host} has ports ${scan.open_ports}",
        }, outputs)

        assert resolved["message"] == "Host 10.0.0.1 has ports [22, 80]"

    def test_nested_inputs(self, outputs):
        resolved = resolve_inputs({
            "target": {"host": "${scan.host}", "tags": ["${check.status}", "fixed"]},
            "limit": 10,
        }, outputs)

        assert resolved == {"target": {"host": "10.0.0.1", "tags": ["ok", "fixed"]}, "limit": 10}

    def test_inputs_not_mutated(self, outputs):
        inputs = {"target": {"host": "${scan.host}"}}
        resolve_inputs(inputs, outputs)

        assert inputs == {"target": {"host": "${scan.host}"}}


class TestConditions:
    """Test condition compilation and evaluation"""

    def test_compiles_to_tree(self):
        expr = compile_condition("${scan.summary.count} > 0 && !${check.flag}")

        assert isinstance(expr, BoolOp)
        assert expr.op == "and"
        assert expr.operands[0] == Comparison(">", Reference("scan.summary.count"), Literal(0))
        assert expr.operands[1] == Not(Reference("check.flag"))

    @pytest.mark.parametrize("condition,expected", [
        ("${check.flag}", False),
        ("!${check.flag}", True),
        ("not ${check.flag}", True),
        ("${check.flag} === false", True),
        ("${check.status} == 'ok'", True),
        ('${check.status} != "ok"', False),
        ("${scan.summary.count} >= 2 and ${check.score} < 10", True),
        ("${check.flag} || ${scan.summary.count} == 2", True),
        ("22 in ${scan.open_ports}", True),
        ("${scan.host} in ['10.0.0.1', '10.0.0.2']", True),
        ("0 < ${scan.summary.count} < 2", False),
        ("${check.score} > -1", True),
    ])
    def test_evaluate(self, outputs, condition, expected):
        assert evaluate_condition(condition, outputs) is expected

    def test_string_literals_untouched(self, outputs):
        assert evaluate_condition("${check.status} != 'a && b'", outputs) is True

    def test_unresolved_reference(self, outputs):
        with pytest.raises(ReferenceResolutionError):
            evaluate_condition("${missing.flag}", outputs)

    @pytest.mark.parametrize("condition", [
        "",
        "${a.b} >",
        "__import__('os').system('ls')",
        "${a.b}.__class__",
        "${a.b} + 1 > 2",
        "open",
        "lambda: 1",
    ])
    def test_rejects_outside_grammar(self, condition):
        with pytest.raises(ConditionError):
            compile_condition(condition)
