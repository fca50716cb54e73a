# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Built-in tools.

Each tool is a plain function taking the input map and returning a dict.
They run inside an isolated context, never in the orchestrator process.
"""

import base64
import binascii
import hashlib
import json
import re
from typing import Any, Dict, List

from toolvault.tools.models import ToolDescriptor, ToolOutput, ToolParameter

SUPPORTED_HASHES = ("md5", "sha1", "sha256")


def word_count(params: Dict[str, Any]) -> Dict[str, Any]:
    """Word, character and sentence statistics for a text."""
    text = params.get("text")
    if not isinstance(text, str):
        raise ValueError("Invalid input: text must be a string")

    words = [word for word in text.strip().split() if word]
    sentences = [s for s in re.split(r"[.!?]+", text) if s.strip()]
    return {
        "count": len(words),
        "characters": len(text),
        "characters_no_spaces": len(re.sub(r"\s", "", text)),
        "words": words,
        "sentences": len(sentences),
    }


def base64_codec(params: Dict[str, Any]) -> Dict[str, Any]:
    """Encode text to Base64 or decode Base64 to text."""
    text = params.get("text")
    operation = params.get("operation", "encode")
    url_safe = bool(params.get("url_safe", False))

    if not isinstance(text, str):
        raise ValueError("Invalid input: text must be a string")
    if operation not in ("encode", "decode"):
        raise ValueError(f"Unsupported operation: {operation}")

    if operation == "encode":
        raw = text.encode("utf-8")
        encoded = base64.urlsafe_b64encode(raw) if url_safe else base64.b64encode(raw)
        output = encoded.decode("ascii")
        if url_safe:
            output = output.rstrip("=")
    else:
        padded = text + "=" * (-len(text) % 4)
        try:
            if url_safe:
                decoded = base64.urlsafe_b64decode(padded)
            else:
                decoded = base64.b64decode(padded, validate=True)
            output = decoded.decode("utf-8")
        except (binascii.Error, UnicodeDecodeError) as e:
            raise ValueError(f"Invalid Base64 input: {e}")

    return {
        "input": text,
        "output": output,
        "operation": operation,
        "input_length": len(text),
        "output_length": len(output),
        "url_safe": url_safe,
    }


def hash_generator(params: Dict[str, Any]) -> Dict[str, Any]:
    """MD5 / SHA-1 / SHA-256 digests of a text."""
    text = params.get("text")
    algorithms: List[str] = params.get("algorithms") or list(SUPPORTED_HASHES)

    if not isinstance(text, str):
        raise ValueError("Invalid input: text must be a string")

    hashes = {}
    for algorithm in algorithms:
        name = str(algorithm).lower()
        if name not in SUPPORTED_HASHES:
            raise ValueError(f"Unsupported hash algorithm: {algorithm}")
        hashes[name] = hashlib.new(name, text.encode("utf-8")).hexdigest()

    return {"original": text, "length": len(text), "hashes": hashes}


def json_validator(params: Dict[str, Any]) -> Dict[str, Any]:
    """Validate and pretty-print a JSON document."""
    json_string = params.get("json_string")
    indent = params.get("indent", 2)

    if not isinstance(json_string, str):
        raise ValueError("Invalid input: json_string must be a string")

    try:
        parsed = json.loads(json_string)
    except json.JSONDecodeError as e:
        return {
            "is_valid": False,
            "error": e.msg,
            "error_line": e.lineno,
            "error_column": e.colno,
            "size": len(json_string),
            "type": "invalid",
        }

    result = {
        "is_valid": True,
        "formatted": json.dumps(parsed, indent=indent),
        "size": len(json_string),
        "type": _json_type(parsed),
    }
    if isinstance(parsed, dict):
        result["properties"] = sorted(parsed.keys())
    return result


def _json_type(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, (int, float)):
        return "number"
    if isinstance(value, str):
        return "string"
    if isinstance(value, list):
        return "array"
    return "object"


def builtin_descriptors() -> List[ToolDescriptor]:
    """Catalog entries for the built-in tools."""
    return [
        ToolDescriptor(
            id="word-count",
            name="Word Count",
            code_ref="toolvault.tools.builtin:word_count",
            category="text",
            inputs=[ToolParameter(name="text", type="string", required=True)],
            outputs=[ToolOutput(name=n) for n in ("count", "characters", "characters_no_spaces", "words", "sentences")],
        ),
        ToolDescriptor(
            id="base64-codec",
            name="Base64 Encoder/Decoder",
            code_ref="toolvault.tools.builtin:base64_codec",
            category="encoding",
            inputs=[
                ToolParameter(name="text", type="string", required=True),
                ToolParameter(name="operation", type="string", required=True),
                ToolParameter(name="url_safe", type="boolean"),
            ],
            outputs=[ToolOutput(name=n) for n in ("input", "output", "operation", "input_length", "output_length")],
        ),
        ToolDescriptor(
            id="hash-generator",
            name="Hash Generator",
            code_ref="toolvault.tools.builtin:hash_generator",
            category="encoding",
            inputs=[
                ToolParameter(name="text", type="string", required=True),
                ToolParameter(name="algorithms", type="array"),
            ],
            outputs=[ToolOutput(name=n) for n in ("original", "length", "hashes")],
        ),
        ToolDescriptor(
            id="json-validator",
            name="JSON Validator",
            code_ref="toolvault.tools.builtin:json_validator",
            category="data",
            inputs=[
                ToolParameter(name="json_string", type="string", required=True),
                ToolParameter(name="indent", type="integer"),
            ],
            outputs=[ToolOutput(name=n) for n in ("is_valid", "size", "type")],
        ),
    ]
