"""
Background Jobs for Feature Voting.

- session_clock_cron: periodic reconciliation of session ``is_active``
"""

from .session_clock_cron import run_forever, run_session_clock_job

__all__ = ["run_session_clock_job", "run_forever"]
