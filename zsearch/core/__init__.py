"""
zsearch core module.

Provides the tool-discovery cache and environment health checks.
"""

from zsearch.core.cache import ToolCache, tool_discovery_key
from zsearch.core.doctor import DoctorCheck, DoctorResult, run_checks

__all__ = ["ToolCache", "tool_discovery_key", "DoctorCheck", "DoctorResult", "run_checks"]
