#!/usr/bin/env python3
"""
Fill the `expect` section of a golden YAML record from an actual VM run.
Usage: python generate_golden_fields.py path/to/golden.yaml
"""

from __future__ import annotations

import os
import sys
from typing import Any

import yaml

from isa import words_to_bytes
from processor import Datapath, render_screen, run_bytes


def run_record(doc: dict[str, Any]) -> tuple[Datapath, int, int, str]:
    """Run the program of a golden record; return (datapath, tones, ticks, state)."""
    code_bytes = words_to_bytes(doc.get("program", ""))
    schedule = [(int(t), [int(k) for k in keys]) for t, keys in doc.get("input_schedule") or []]
    cycles = doc.get("cycles")
    return run_bytes(code_bytes, doc.get("config"), schedule, None if cycles is None else int(cycles))


def screen_rows(dp: Datapath, on: str = "#", off: str = ".") -> dict[int, str]:
    """Return non-blank framebuffer rows, right-trimmed of unlit cells."""
    draw_flag = dp.draw_flag
    lines = render_screen(dp, on, off).split("\n")
    dp.draw_flag = draw_flag
    return {y: line.rstrip(off) for y, line in enumerate(lines) if on in line}


def build_expect(dp: Datapath, tones: int, ticks: int, state: str) -> dict[str, Any]:
    return {
        "pc": dp.PC,
        "index": dp.I,
        "sp": dp.SP,
        "registers": {i: v for i, v in enumerate(dp.V) if v},
        "delay_timer": dp.delay_timer,
        "sound_timer": dp.sound_timer,
        "draw_flag": dp.draw_flag,
        "tones": tones,
        "ticks": ticks,
        "state": state,
        "screen": screen_rows(dp),
    }


def main(path: str) -> None:
    if not os.path.exists(path):
        print("File not found:", path)
        sys.exit(2)

    with open(path, "r", encoding="utf-8") as f:
        doc = yaml.safe_load(f)

    if not doc or "program" not in doc:
        print("No 'program' found in YAML: nothing to run")
        sys.exit(2)

    dp, tones, ticks, state = run_record(doc)
    doc["expect"] = build_expect(dp, tones, ticks, state)

    with open(path, "w", encoding="utf-8") as f:
        yaml.safe_dump(doc, f, default_flow_style=False, sort_keys=False, allow_unicode=True)

    print(f"Updated {path} with expect fields ({ticks} ticks, {state}).")


if __name__ == "__main__":
    if len(sys.argv) != 2:
        print("Usage: generate_golden_fields.py path/to/golden.yaml")
        sys.exit(1)
    main(sys.argv[1])
