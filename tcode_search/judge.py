from __future__ import annotations

"""
Judge/validator: a second model call that audits the re-ranked top
candidates against their catalog descriptions and optionally corrects the
explanation or the confidence.

The judge can only refine. Any failure keeps the pre-judge list unchanged,
null corrections leave the field alone, and exact identifier hits are never
marked down.
"""

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence

from loguru import logger

from . import config
from .bounded import bounded_call
from .clients import ReasoningModel, parse_json_reply
from .errors import MalformedResponse
from .normalize import clamp
from .pipeline_types import Candidate

JUDGE_SYSTEM_PROMPT = """You are an SAP expert validator. Your task is to verify the accuracy of AI-generated explanations and confidence scores for SAP T-code search results.

For each result, you receive:
- The user's search query
- The T-code identifier
- Ground truth description (what the T-code ACTUALLY does)
- AI-generated explanation
- AI-generated confidence score (0.0-1.0)

VALIDATION RULES:

1. EXPLANATION ACCURACY:
   - ACCURATE: Explanation correctly describes what the T-code does based on the ground truth description
   - INACCURATE: Explanation contains factual errors, describes wrong functionality, or makes unfounded claims
   - Minor phrasing differences are OK; focus on factual correctness

2. CONFIDENCE REASONABLENESS:
   - Check if the T-code is genuinely relevant to the user's query
   - High confidence (>0.8) is reasonable ONLY if the T-code directly addresses the query
   - Medium confidence (0.5-0.8) is reasonable for related but not exact matches
   - Low confidence (<0.5) is reasonable for tangentially related results

3. CORRECTIONS:
   - If the explanation is inaccurate, provide a corrected explanation based on the ground truth description
   - If the confidence is unreasonable, provide an adjusted value
   - Keep corrected explanations under 100 characters

Output a JSON object with judgments for ALL provided T-codes."""


@dataclass
class Verdict:
    tcode: str
    explanation_accurate: bool = True
    confidence_reasonable: bool = True
    corrected_explanation: Optional[str] = None
    corrected_confidence: Optional[float] = None
    reasoning: str = ""


@dataclass
class JudgeOutcome:
    candidates: List[Candidate]
    judged: bool = False
    explanations_fixed: int = 0
    confidences_adjusted: int = 0
    verdicts: List[Verdict] = field(default_factory=list)

    @property
    def corrections_applied(self) -> int:
        return self.explanations_fixed + self.confidences_adjusted


def build_user_prompt(query: str, candidates: Sequence[Candidate]) -> str:
    blocks = "\n".join(
        "---\n"
        f"T-code: {c.identifier}\n"
        f"Ground Truth Description: {c.description or 'N/A'}\n"
        f"Module: {c.category or 'N/A'}\n"
        f"Generated Explanation: {c.explanation}\n"
        f"Generated Confidence: {c.score:.2f}\n"
        "---"
        for c in candidates
    )
    return f"""Query: "{query}"

Results to validate:
{blocks}

Validate each result and output JSON with this exact structure:
{{
  "judgments": [
    {{
      "tcode": "XX01",
      "explanation_accurate": true,
      "confidence_reasonable": true,
      "corrected_explanation": null,
      "corrected_confidence": null,
      "reasoning": "brief reason"
    }}
  ]
}}"""


def parse_verdicts(text: str) -> List[Verdict]:
    data = parse_json_reply(text)
    judgments = data.get("judgments")
    if not isinstance(judgments, list):
        raise MalformedResponse("judge reply has no 'judgments' list")

    verdicts: List[Verdict] = []
    for j in judgments:
        if not isinstance(j, dict) or not j.get("tcode"):
            continue
        corrected_conf = j.get("corrected_confidence")
        try:
            corrected_conf = clamp(float(corrected_conf)) if corrected_conf is not None else None
        except (TypeError, ValueError):
            corrected_conf = None
        corrected_expl = j.get("corrected_explanation")
        corrected_expl = str(corrected_expl).strip() if corrected_expl else None
        verdicts.append(
            Verdict(
                tcode=str(j["tcode"]).strip(),
                explanation_accurate=bool(j.get("explanation_accurate", True)),
                confidence_reasonable=bool(j.get("confidence_reasonable", True)),
                corrected_explanation=corrected_expl or None,
                corrected_confidence=corrected_conf,
                reasoning=str(j.get("reasoning") or ""),
            )
        )
    return verdicts


def apply_verdicts(candidates: Sequence[Candidate], verdicts: Sequence[Verdict]) -> JudgeOutcome:
    """Field-by-field corrections; returns new candidates."""
    by_id: Dict[str, Verdict] = {}
    for v in verdicts:
        by_id.setdefault(v.tcode.upper(), v)

    out: List[Candidate] = []
    fixed = adjusted = 0
    for c in candidates:
        v = by_id.get(c.key)
        if v is None:
            out.append(c)
            continue

        explanation = None
        if v.corrected_explanation and v.corrected_explanation != c.explanation:
            explanation = v.corrected_explanation
            fixed += 1

        confidence = None
        if v.corrected_confidence is not None and v.corrected_confidence != c.score:
            if c.match_type == "exact" and v.corrected_confidence < c.score:
                logger.debug("Judge tried to lower exact match {}; ignored", c.identifier)
            else:
                confidence = v.corrected_confidence
                adjusted += 1

        if explanation is None and confidence is None:
            out.append(c)
        else:
            out.append(c.with_scores(confidence=confidence, explanation=explanation))

    return JudgeOutcome(
        candidates=out,
        judged=True,
        explanations_fixed=fixed,
        confidences_adjusted=adjusted,
        verdicts=list(verdicts),
    )


class Judge:
    def __init__(self, model: ReasoningModel, settings: Optional[config.SearchSettings] = None):
        self.model = model
        self.settings = settings or config.SearchSettings()

    @property
    def enabled(self) -> bool:
        return self.settings.judge_enabled and self.model.enabled

    async def _judge(self, query: str, top: Sequence[Candidate]) -> List[Verdict]:
        reply = await self.model.complete(
            JUDGE_SYSTEM_PROMPT,
            build_user_prompt(query, top),
            json_mode=True,
            temperature=0.1,
            max_tokens=800,
        )
        return parse_verdicts(reply)

    async def validate(self, query: str, candidates: Sequence[Candidate]) -> JudgeOutcome:
        candidates = list(candidates)
        if not candidates or not self.enabled:
            return JudgeOutcome(candidates=candidates)

        # highest confidence first; sorted() is stable so fusion order breaks ties
        picked = sorted(range(len(candidates)), key=lambda i: -candidates[i].score)
        picked = picked[: self.settings.judge_top_n]
        top = [candidates[i] for i in picked]

        verdicts = await bounded_call(
            self._judge(query, top),
            self.settings.judge_timeout,
            None,
            "judge",
        )
        if verdicts is None:
            return JudgeOutcome(candidates=candidates)

        outcome = apply_verdicts(top, verdicts)
        merged = list(candidates)
        for i, judged in zip(picked, outcome.candidates):
            merged[i] = judged
        outcome.candidates = merged
        if outcome.corrections_applied:
            logger.info(
                "Judge for '{}': {} explanations fixed, {} confidences adjusted",
                query[:30],
                outcome.explanations_fixed,
                outcome.confidences_adjusted,
            )
        else:
            logger.debug("Judge for '{}': no corrections needed", query[:30])
        return outcome
