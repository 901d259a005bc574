"""
Comparison report generator.

Takes a completed PromptPipeline and writes the JSON comparison record plus a
Markdown ranking report rendered from a Jinja2 template.
"""

import json
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

from jinja2 import Environment, FileSystemLoader

import config
from utils.exceptions import ReportingError

logger = logging.getLogger(__name__)

TEMPLATE_DIR = Path(__file__).parent / "templates"


@dataclass
class ReportConfig:
    """Configuration for report generation."""

    report_dir: Path = field(default_factory=lambda: config.REPORT_DIR)
    formats: List[str] = field(default_factory=lambda: ["markdown", "json"])


def _slugify(text: str, max_length: int = 40) -> str:
    """Safe filename fragment from free text."""
    slug = re.sub(r"[^a-zA-Z0-9]+", "-", text).strip("-").lower()
    return slug[:max_length].rstrip("-") or "comparison"


def _score_rating(score: float) -> str:
    """Map a 0-1 score to a rating string."""
    if score >= 0.9:
        return "Excellent"
    elif score >= 0.75:
        return "Good"
    elif score >= 0.6:
        return "Adequate"
    elif score >= 0.4:
        return "Marginal"
    else:
        return "Poor"


def _preview(text: str, length: int = 80) -> str:
    flat = " ".join(text.split())
    return flat if len(flat) <= length else flat[: length - 3] + "..."


class ComparisonReportGenerator:
    """Generates comparison reports from a completed pipeline run."""

    def __init__(self, config: Optional[ReportConfig] = None):
        self.config = config or ReportConfig()
        self._env = Environment(
            loader=FileSystemLoader(str(TEMPLATE_DIR)),
            trim_blocks=True,
            lstrip_blocks=True,
        )

    def generate(self, pipeline: Any, timestamp: Optional[datetime] = None) -> Dict[str, Path]:
        """
        Write the configured report formats.

        Args:
            pipeline: A PromptPipeline that has completed its evaluation stage.
            timestamp: Report time (now if None); used in file names.

        Returns:
            Format name ("markdown", "json") -> written path.

        Raises:
            ReportingError: If the pipeline has no results or writing fails.
        """
        if not pipeline.results:
            raise ReportingError("Nothing to report: the evaluation stage has not produced results")

        timestamp = timestamp or datetime.now()
        stem = f"{_slugify(pipeline.base_input)}_{timestamp.strftime('%Y%m%d_%H%M%S')}"
        written: Dict[str, Path] = {}

        try:
            self.config.report_dir.mkdir(parents=True, exist_ok=True)

            if "json" in self.config.formats:
                json_path = self.config.report_dir / f"{stem}.json"
                with open(json_path, "w") as f:
                    json.dump(pipeline.to_record(), f, indent=2, default=str)
                logger.info("JSON record saved to %s", json_path)
                written["json"] = json_path

            if "markdown" in self.config.formats:
                md_path = self.config.report_dir / f"{stem}.md"
                template = self._env.get_template("comparison_report.md.j2")
                md_path.write_text(template.render(**self.build_context(pipeline, timestamp)))
                logger.info("Markdown report saved to %s", md_path)
                written["markdown"] = md_path

        except Exception as e:
            raise ReportingError(f"Failed to generate report: {e}") from e

        return written

    def build_context(self, pipeline: Any, timestamp: datetime) -> Dict[str, Any]:
        """Build the Jinja2 template context from a pipeline."""
        criteria = [{"id": c.id, "name": c.name, "weight": f"{c.weight:.2f}"} for c in pipeline.criteria]

        def ranking_rows(rankings: List[Any]) -> List[Dict[str, Any]]:
            return [
                {
                    "rank": position,
                    "label": r.label,
                    "overall": f"{r.overall:.3f}",
                    "rating": _score_rating(r.overall),
                    "scores": [f"{r.criterion_scores.get(c.id, 0.0):.2f}" for c in pipeline.criteria],
                    "failed": r.failed_count,
                    "total": r.result_count,
                }
                for position, r in enumerate(rankings, start=1)
            ]

        units = []
        for result in pipeline.results:
            metrics = result.metrics
            units.append(
                {
                    "variation": result.variation_index + 1,
                    "test_case": result.test_case_index + 1,
                    "model": result.model_config.label,
                    "status": "OK" if result.success else f"ERROR ({result.error_kind})",
                    "overall": f"{pipeline.overall_score(result):.3f}" if result.scores else "N/A",
                    "tokens": metrics.token_count,
                    "time_ms": f"{metrics.elapsed_ms:.0f}",
                    "tokens_per_second": f"{metrics.tokens_per_second:.1f}",
                    "cost": f"{metrics.estimated_cost:.5f}",
                    "preview": _preview(result.display_text),
                }
            )

        return {
            "base_input": pipeline.base_input,
            "meta_prompt": pipeline.meta_prompt or "",
            "timestamp": timestamp.strftime("%Y-%m-%d %H:%M:%S"),
            "criteria": criteria,
            "variations": [
                {"index": i + 1, "preview": _preview(v, 120)} for i, v in enumerate(pipeline.variations)
            ],
            "test_cases": [
                {"index": i + 1, "input": _preview(tc.input, 120)} for i, tc in enumerate(pipeline.test_cases)
            ],
            "variation_ranking": ranking_rows(pipeline.rank_variations()),
            "model_ranking": ranking_rows(pipeline.rank_models()),
            "units": units,
            "total_units": len(units),
            "failed_units": sum(1 for r in pipeline.results if not r.success),
            "total_cost": f"{sum(r.metrics.estimated_cost for r in pipeline.results):.4f}",
        }
