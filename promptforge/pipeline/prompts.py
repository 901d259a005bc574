"""
Generation prompt templates for the pipeline stages.

Each template asks for a reply shape that promptforge.structured can parse:
free text for the meta-prompt, {"variations": [...]} for variations and
{"test_cases": [...]} for test cases.
"""

from dataclasses import dataclass
from typing import Sequence

META_PROMPT_TEMPLATE = """Create a detailed meta prompt for an AI assistant based on the following request:

{base_input}
{hints}
Expand the request into a structured assistant specification covering:
- Role: who the assistant is and whom it serves
- Tone & Style: how it should sound
- Functionality: what it must be able to do
- Constraints: what it must never do
- Edge Cases: unusual or difficult inputs and how to handle them

Generate a comprehensive meta-prompt that incorporates all these elements. Return only the meta-prompt text.
"""

VARIATIONS_TEMPLATE = """Generate {count} variations of the following meta prompt, each with slightly different emphasis and structure while maintaining the core functionality:

{meta_prompt}

Return the variations in a JSON object of the form {{"variations": ["...", "..."]}} containing exactly {count} strings.
"""

TEST_CASES_TEMPLATE = """You are designing test inputs for an AI assistant.

Original request:
{base_input}

Meta prompt:
{meta_prompt}

Prompt variations under test:
{variations}

Generate {count} realistic user inputs that exercise these prompts, including at least one difficult or edge case.
For each input, weight how much each of these evaluation criteria matters, from 0 to 1: {criteria}.

Return a JSON object of the form {{"test_cases": [{{"input": "...", "criteria": {{"<criterion id>": 0.5}}}}]}}.
"""


@dataclass(frozen=True)
class MetaPromptRequest:
    """A short natural-language request plus optional hints for each section."""

    base_input: str
    ai_role: str = ""
    tone: str = ""
    functionality: str = ""
    constraints: str = ""
    edge_cases: str = ""

    def hints(self) -> str:
        fields = [
            ("AI Role", self.ai_role),
            ("Tone & Style", self.tone),
            ("Functionality", self.functionality),
            ("Constraints", self.constraints),
            ("Edge Cases", self.edge_cases),
        ]
        lines = [f"{label}: {value}" for label, value in fields if value]
        return "\n" + "\n".join(lines) + "\n" if lines else ""


def render_meta_prompt(request: MetaPromptRequest) -> str:
    return META_PROMPT_TEMPLATE.format(base_input=request.base_input, hints=request.hints())


def render_variations(meta_prompt: str, count: int) -> str:
    return VARIATIONS_TEMPLATE.format(meta_prompt=meta_prompt, count=count)


def render_test_cases(
    base_input: str,
    meta_prompt: str,
    variations: Sequence[str],
    criterion_ids: Sequence[str],
    count: int,
) -> str:
    numbered = "\n\n".join(f"[{i + 1}]\n{v}" for i, v in enumerate(variations))
    return TEST_CASES_TEMPLATE.format(
        base_input=base_input,
        meta_prompt=meta_prompt,
        variations=numbered,
        criteria=", ".join(criterion_ids),
        count=count,
    )
