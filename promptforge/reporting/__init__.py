"""
Comparison reporting module.

Writes the JSON comparison record and a Markdown ranking report for a
completed pipeline run.
"""

from .report_generator import ComparisonReportGenerator, ReportConfig

__all__ = ["ComparisonReportGenerator", "ReportConfig"]
