# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Unit tests for the tool registry, built-in tools and input validation
"""

import hashlib
import math
from pathlib import Path

import pytest

from toolvault.core.errors import ConflictError, NotFoundError, ValidationError
from toolvault.execution.validation import check_output, validate_code_ref, validate_input
from toolvault.tools import builtin, builtin_descriptors
from toolvault.tools.models import ToolParameter
from toolvault.tools.registry import ToolRegistry

from tests.conftest import make_tool


class TestToolRegistry:
    """Test registration and catalog loading"""

    def test_register_and_find(self):
        registry = ToolRegistry(builtin.builtin_descriptors())

        assert len(registry) == 4
        assert "word-count" in registry
        assert registry.get("hash-generator").code_ref == "toolvault.tools.builtin:hash_generator"
        assert registry.find("missing") is None

    def test_duplicate_rejected(self):
        registry = ToolRegistry([make_tool("echo", "tests:echo")])

        with pytest.raises(ConflictError):
            registry.register(make_tool("echo", "tests:other"))

    def test_get_unknown(self):
        with pytest.raises(NotFoundError):
            ToolRegistry().get("missing")

    def test_unregister(self):
        registry = ToolRegistry([make_tool("echo", "tests:echo")])

        assert registry.unregister("echo") is True
        assert registry.unregister("echo") is False

    def test_from_yaml(self, tmp_path):
        path = tmp_path / "tools.yaml"
        path.write_text(
            "tools:\n"
            "  - id: word-count\n"
            "    module: toolvault.tools.builtin:word_count\n"
            "    inputs:\n"
            "      - {name: text, type: string, required: true}\n"
            "    outputs:\n"
            "      - {name: count}\n"
        )

        registry = ToolRegistry.from_yaml(path)

        descriptor = registry.get("word-count")
        assert descriptor.code_ref == "toolvault.tools.builtin:word_count"
        assert descriptor.required_inputs == ["text"]

    def test_from_yaml_invalid_entry(self, tmp_path):
        path = tmp_path / "tools.yaml"
        path.write_text("tools:\n  - name: no id\n")

        with pytest.raises(ValidationError):
            ToolRegistry.from_yaml(path)

    def test_from_yaml_missing_file(self, tmp_path):
        with pytest.raises(NotFoundError):
            ToolRegistry.from_yaml(tmp_path / "nope.yaml")

    def test_shipped_catalog_matches_builtins(self):
        """configs/tools.yaml describes exactly the built-in tools"""
        path = Path(__file__).resolve().parents[2] / "configs" / "tools.yaml"

        registry = ToolRegistry.from_yaml(path)

        assert [d.model_dump() for d in registry.list()] == [d.model_dump() for d in builtin_descriptors()]


class TestBuiltinTools:
    """Test the built-in tool functions directly"""

    def test_word_count(self):
        result = builtin.word_count({"text": "Hello world. How are you?"})

        assert result["count"] == 5
        assert result["sentences"] == 2
        assert result["characters"] == 25
        assert result["words"][0] == "Hello"

    def test_base64_encode_decode(self):
        encoded = builtin.base64_codec({"text": "hello", "operation": "encode"})
        decoded = builtin.base64_codec({"text": encoded["output"], "operation": "decode"})

        assert encoded["output"] == "aGVsbG8="
        assert decoded["output"] == "hello"

    def test_base64_url_safe_strips_padding(self):
        result = builtin.base64_codec({"text": "hello", "operation": "encode", "url_safe": True})

        assert result["output"] == "aGVsbG8"

    def test_base64_invalid_input(self):
        with pytest.raises(ValueError):
            builtin.base64_codec({"text": "not base64!", "operation": "decode"})

    def test_hash_generator(self):
        result = builtin.hash_generator({"text": "abc", "algorithms": ["sha256"]})

        assert result["hashes"] == {"sha256": hashlib.sha256(b"abc").hexdigest()}

    def test_hash_generator_default_algorithms(self):
        result = builtin.hash_generator({"text": "abc"})

        assert set(result["hashes"]) == {"md5", "sha1", "sha256"}

    def test_hash_generator_rejects_algorithm(self):
        with pytest.raises(ValueError, match="Unsupported hash algorithm"):
            builtin.hash_generator({"text": "abc", "algorithms": ["crc32"]})

    def test_json_validator(self):
        valid = builtin.json_validator({"json_string": '{"b": 1, "a": [1]}'})
        invalid = builtin.json_validator({"json_string": '{"a": }'})

        assert valid["is_valid"] is True
        assert valid["type"] == "object"
        assert valid["properties"] == ["a", "b"]
        assert invalid["is_valid"] is False
        assert invalid["error_line"] == 1


class TestInputValidation:
    """Test validate_input / validate_code_ref / check_output"""

    @pytest.fixture
    def tool(self):
        return make_tool(
            "typed",
            "tests:echo",
            inputs=[
                ToolParameter(name="text", type="string", required=True),
                ToolParameter(name="count", type="integer"),
                ToolParameter(name="ratio", type="number"),
                ToolParameter(name="flag", type="boolean"),
            ],
            outputs=["text", "count"]
        )

    def test_valid_input(self, tool):
        validate_input(tool, {"text": "a", "count": 2.0, "ratio": 1, "flag": False})

    def test_missing_required(self, tool):
        with pytest.raises(ValidationError) as exc_info:
            validate_input(tool, {"text": None})

        assert exc_info.value.field == "text"

    @pytest.mark.parametrize("params,field", [
        ({"text": 1}, "text"),
        ({"text": "a", "count": 1.5}, "count"),
        ({"text": "a", "ratio": True}, "ratio"),
        ({"text": "a", "ratio": math.nan}, "ratio"),
        ({"text": "a", "flag": "yes"}, "flag"),
    ])
    def test_type_mismatch(self, tool, params, field):
        with pytest.raises(ValidationError) as exc_info:
            validate_input(tool, params)

        assert exc_info.value.field == field

    def test_input_must_be_mapping(self, tool):
        with pytest.raises(ValidationError) as exc_info:
            validate_input(tool, ["text"])

        assert exc_info.value.field == "input"

    @pytest.mark.parametrize("code_ref", [None, "", "module_only", ":func", "mod:"])
    def test_invalid_code_ref(self, code_ref):
        with pytest.raises(ValidationError) as exc_info:
            validate_code_ref(make_tool("bad", code_ref))

        assert exc_info.value.field == "code_ref"

    def test_check_output(self, tool):
        assert check_output(tool, {"text": "a"}) == ["Declared output missing from result: count"]
        assert check_output(tool, "not a dict") == []
