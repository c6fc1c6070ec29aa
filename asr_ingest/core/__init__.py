"""Core reconstruction and intermediate representation modules.

WHY: The core package is the pure heart of the system — the IR
dataclasses, the interval matcher, the merger, speaker naming, the
validator, and the reconstruction strategies. Everything else (polling,
HTTP, CLI) feeds data in or renders it out.

HOW: ir.py defines the data structures, intervals.py and merger.py are
the leaf helpers, speakers.py resolves display names, validator.py
compares against the canonical text, reconstruct.py picks and runs a
strategy.

RULES:
- No I/O and no clocks in this package
- IR dataclasses are the contract — change with care
"""
