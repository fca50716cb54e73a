# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""Tools used by the subprocess integration tests."""

import asyncio
import time


def echo(params):
    return {"echo": params}


async def async_echo(params):
    await asyncio.sleep(0)
    return {"echo": params, "async": True}


def sleepy(params):
    time.sleep(params.get("seconds", 30))
    return {"slept": True}


def chatty(params):
    print("this goes to stderr, not the message channel")
    return {"ok": True}


def noisy(params):
    print("x" * params.get("size", 200_000), end="", flush=True)
    return {"ok": True}


def explode(params):
    raise RuntimeError("tool exploded")


NOT_CALLABLE = 42
