"""
Pipeline Module

Meta-prompt, variation and test-case generation followed by a multi-model
streaming comparison.

Usage:
    from promptforge.pipeline import PromptPipeline, RunConfig

    run = RunConfig.from_yaml("comparison.yaml")
    pipeline = PromptPipeline.from_run_config(run)
    results = await pipeline.run_all(
        run.base_input,
        run.models,
        expected_tokens=run.expected_tokens,
        variation_count=run.variation_count,
        test_case_count=run.test_case_count,
        criteria=run.criteria,
        test_cases=run.test_cases,
    )
"""

from .config import GeneratorSettings, RunConfig, resolve_credential
from .coordinator import FORWARD_TRANSITIONS, PipelineStage, PromptPipeline
from .prompts import MetaPromptRequest

__all__ = [
    "FORWARD_TRANSITIONS",
    "GeneratorSettings",
    "MetaPromptRequest",
    "PipelineStage",
    "PromptPipeline",
    "RunConfig",
    "resolve_credential",
]
