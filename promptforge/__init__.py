"""
PromptForge: multi-provider prompt comparison and evaluation

Expands a short request into a meta-prompt, generates variations and test
cases, then streams every (variation, test case) pair through several LLM
providers at once and ranks the results with LLM-judged criterion scores.

Main components:
- providers: Unified interface for LLM backends (OpenAI, Anthropic, Groq, Google, Ollama)
- metrics: Per-stream token, timing and cost tracking
- orchestrator: Concurrent streaming fan-out with per-unit failure isolation
- scoring: LLM-as-Judge criterion scores and weighted rankings
- pipeline: The four-stage meta-prompt -> evaluation state machine
- reporting: JSON comparison records and Markdown reports with Jinja2 templates
"""

__version__ = "0.1.0"
