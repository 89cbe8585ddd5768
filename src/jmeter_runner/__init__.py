"""
jmeter-runner — package root

File: src/jmeter_runner/__init__.py

Purpose
- Execution orchestration core for running JMeter test plans against an
  uploaded distribution: installation management, admission control,
  process supervision, execution tracking and report packaging.

Functional requirements
- Must not have side effects at import time (no config loading, no logging init).
"""

from __future__ import annotations

__version__ = "0.1.0"

__all__ = ["__version__"]
