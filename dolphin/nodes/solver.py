"""Solve stage: image + instructions in, schema-enforced solution out."""

from __future__ import annotations

import json
import re
import time
from typing import Any, Dict, Optional

from google.genai import types
from pydantic import ValidationError

from dolphin.agents.state import SolutionArtifact
from dolphin.llm.errors import NoResponseError, SchemaViolationError
from dolphin.tools.media import InlineMedia
from dolphin.utils.latex import normalize_latex_delimiters, strip_code_fence
from dolphin.utils.logger import get_logger


logger = get_logger("dolphin.solver")

DEFAULT_SYSTEM_PROMPT = "You are a professional Mathematics Solver AI."

DEFAULT_SOLVER_PROMPT = r"""
Analyze the provided image which contains a math or physics problem.

Your goal is to provide a solution that is beautifully formatted, step-by-step, and easy to follow.

Perform the following tasks:

1. **Solve the problem step-by-step.**
   The content of your solution MUST strictly follow these formatting rules:
   - Use **bold headings** for each step: **Step 1: Given**, **Step 2: Formula**, **Step 3: Substitution**, **Step 4: Simplification**, **Step 5: Final Answer**.
   - Use **LaTeX-style math** for ALL equations, wrapped in single dollar signs (e.g., $E = mc^2$).
   - Use **bullet points** for lists of given data.
   - Use **line breaks** between steps for clarity.
   - **Step 5** must explicitly contain the final answer in a boxed LaTeX format: $\boxed{\text{Answer} = ...}$.
   - Do NOT show internal reasoning or scratchpad thoughts in the solution text.
   - Do NOT output raw JSON or code blocks inside the solution text itself.

   Example format for the solution text:

   **Step 1: Given**
   • Mass ($m$) = 10 kg
   • Acceleration ($a$) = 5 m/s²

   **Step 2: Formula**
   $F = m \cdot a$

   **Step 3: Substitution**
   $F = 10 \cdot 5$

   **Step 4: Simplification**
   $F = 50$

   **Step 5: Final Answer**
   $\boxed{F = 50 \text{ N}}$

2. **Extract the core concept for visualization.**
   Create a descriptive prompt for a video generation model to visualize the concept.
   (e.g., "Cinematic 3D render of a red ball rolling down a wooden inclined plane, physics simulation style").

3. **Determine confidence.** ('High', 'Medium', 'Low')

**RESPONSE FORMAT:**
Return a valid JSON object with the keys "solutionMarkdown", "visualPrompt" and "confidence".
"""

SOLUTION_SCHEMA: Dict[str, Any] = {
    "type": "OBJECT",
    "properties": {
        "solutionMarkdown": {"type": "STRING"},
        "visualPrompt": {"type": "STRING"},
        "confidence": {"type": "STRING", "enum": ["High", "Medium", "Low"]},
    },
    "required": ["solutionMarkdown", "visualPrompt", "confidence"],
}


class StructuredSolveClient:
    """Sends an encoded problem image to the reasoning model.

    Transport and authorization failures propagate unchanged; retries are the
    orchestrator's concern.
    """

    def __init__(
        self,
        llm_client: Any,
        prompt_pack: Optional[Dict[str, str]] = None,
        model: Optional[str] = None,
        thinking_budget: Optional[int] = None,
    ) -> None:
        self.llm_client = llm_client
        self.prompt_pack = dict(prompt_pack or {})
        self.model = model or llm_client.model_for("solver")
        budget = thinking_budget if thinking_budget is not None else getattr(llm_client.config, "thinking_budget", 4096)
        self.thinking_budget = int(budget)

    def build_request(self, media: InlineMedia) -> tuple[list[Any], types.GenerateContentConfig]:
        """Builds request contents and generation config for one solve call."""
        instruction = self.prompt_pack.get("user", DEFAULT_SOLVER_PROMPT)
        contents = [
            types.Part.from_bytes(data=media.to_bytes(), mime_type=media.mime_type),
            instruction.strip(),
        ]
        config = types.GenerateContentConfig(
            system_instruction=self.prompt_pack.get("system", DEFAULT_SYSTEM_PROMPT),
            response_mime_type="application/json",
            response_schema=SOLUTION_SCHEMA,
            thinking_config=types.ThinkingConfig(thinking_budget=self.thinking_budget),
        )
        return contents, config

    async def solve(self, media: InlineMedia) -> SolutionArtifact:
        """Solves the problem shown in `media`.

        Args:
            media: Encoded problem image.

        Returns:
            Parsed and validated solution.

        Raises:
            NoResponseError: If the service returned an empty body.
            SchemaViolationError: If the body does not match the solution schema.
        """
        started = time.perf_counter()
        contents, config = self.build_request(media)
        response = await self.llm_client.generate_content(model=self.model, contents=contents, config=config)
        artifact = parse_solution(getattr(response, "text", None))
        logger.info(
            "solve_done model=%s confidence=%s elapsed_ms=%.1f",
            self.model,
            artifact.confidence.value,
            (time.perf_counter() - started) * 1000.0,
        )
        return artifact


def parse_solution(text: Optional[str]) -> SolutionArtifact:
    """Parses a solve response body into a `SolutionArtifact`.

    Args:
        text: Raw response text.

    Returns:
        Validated solution with dollar-delimited math.

    Raises:
        NoResponseError: If `text` is empty.
        SchemaViolationError: If `text` is not a JSON object matching the schema.
    """
    if not text or not str(text).strip():
        raise NoResponseError("No response from AI")

    payload = _extract_json_object(str(text))
    if payload is None:
        raise SchemaViolationError("Solve response is not a JSON object.")

    try:
        artifact = SolutionArtifact.model_validate(payload)
    except ValidationError as exc:
        raise SchemaViolationError("Solve response violates schema: {}".format(exc)) from exc

    normalized = normalize_latex_delimiters(artifact.solution_markdown)
    if normalized != artifact.solution_markdown:
        artifact = artifact.model_copy(update={"solution_markdown": normalized})
    return artifact


def _extract_json_object(text: str) -> Optional[Dict[str, Any]]:
    stripped = strip_code_fence(text)
    try:
        parsed = json.loads(stripped)
    except json.JSONDecodeError:
        match = re.search(r"\{.*\}", stripped, flags=re.DOTALL)
        if not match:
            return None
        try:
            parsed = json.loads(match.group(0))
        except json.JSONDecodeError:
            return None
    return parsed if isinstance(parsed, dict) else None
