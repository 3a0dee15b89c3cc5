from __future__ import annotations

import json
from typing import Any, Dict, List, Optional, Sequence

import httpx
from pydantic import BaseModel, Field, ValidationError

from ..core.logging import get_logger
from ..core.settings import EnrichmentSettings, get_settings
from ..schemas.faq import FaqImage, Reference
from .errors import EnrichmentError


logger = get_logger(__name__)
settings = get_settings()


class EnrichmentResult(BaseModel):
    answer: str = Field(..., min_length=1)
    answer_brief: Optional[str] = None
    question_en: Optional[str] = None
    answer_en: Optional[str] = None
    answer_brief_en: Optional[str] = None
    tags: List[str] = Field(default_factory=list)
    categories: List[str] = Field(default_factory=list)
    references: List[Reference] = Field(default_factory=list)
    images: List[FaqImage] = Field(default_factory=list)


class QaCandidate(BaseModel):
    question: str = Field(..., min_length=1)
    answer: str = Field(..., min_length=1)
    tags: List[str] = Field(default_factory=list)
    categories: List[str] = Field(default_factory=list)
    confidence: float = 0.0


ANALYZE_PROMPT = """You are the editor of an AI/ML knowledge base. Analyse the submitted question/answer pair and reply with a single JSON object.

Fields:
1. answer: the polished, completed answer in Markdown (LaTeX allowed between $ or $$).
2. answer_brief: a two or three sentence summary of the answer.
3. question_en, answer_en, answer_brief_en: English translations of the question, answer and summary.
4. tags: 2-5 short technical tags. Reuse tags from the existing list whenever one fits.
5. categories: 1-2 broad categories.
6. references: 1-3 related papers or blog posts, each {{"type": "paper"|"blog", "title": ..., "url": ...}}.
7. images: illustrative figures from those references, each {{"url": ..., "caption": ..., "source": "paper"|"blog"}}; may be empty.

Existing tags: {existing_tags}

Output JSON only."""

GENERATE_PROMPT = """You are a technical educator. Read the document and extract its core knowledge points as question/answer pairs.

Each pair has: question, answer (Markdown, self-contained), tags (2-5), categories (1-2), confidence (0-1).
Questions should read like something a real user would ask. Produce roughly one or two pairs per thousand characters.
Reuse existing tags where possible: {existing_tags}

Output JSON only: {{"qa_pairs": [...]}}"""

JUDGE_PROMPT = """You review the quality of question/answer pairs. Score each pair from 1 to 5 on:
naturalness, context_relevance, knowledge_clarity, phrasing (question) and
accuracy, completeness, mastery, independence (answer).

For every pair report the eight scores, their average, and verdict "pass" when the average is at least {threshold}, otherwise "fail".

Output JSON only: {{"results": [{{"average": ..., "verdict": "pass"|"fail"}}, ...], "summary": {{"total": N, "passed": N, "failed": N}}}}"""


class EnrichmentGateway:
    """Client for the OpenAI-compatible model behind enrichment and imports.

    Every failure mode (missing configuration, transport error, non-2xx,
    empty or malformed JSON) is raised as EnrichmentError.
    """

    def __init__(self, config: Optional[EnrichmentSettings] = None) -> None:
        self.config = config or settings.enrichment

    def analyze(self, question: str, answer_raw: str, existing_tags: Sequence[str]) -> EnrichmentResult:
        system_prompt = ANALYZE_PROMPT.format(existing_tags=", ".join(existing_tags))
        user_prompt = f"Question: {question}\n\nOriginal answer:\n{answer_raw}"
        payload = self._chat_json(system_prompt, user_prompt, temperature=0.3)
        try:
            return EnrichmentResult.model_validate(payload)
        except ValidationError as exc:
            raise EnrichmentError(f"AI returned invalid JSON structure: {exc.errors()[:3]}") from exc

    def generate_candidates(self, document_text: str, existing_tags: Sequence[str]) -> List[QaCandidate]:
        system_prompt = GENERATE_PROMPT.format(existing_tags=", ".join(existing_tags))
        payload = self._chat_json(system_prompt, f"Document:\n\n{document_text}", temperature=0.3)
        raw_pairs = payload.get("qa_pairs") or []
        if not isinstance(raw_pairs, list):
            raise EnrichmentError("AI returned invalid qa_pairs")

        candidates: List[QaCandidate] = []
        for index, raw in enumerate(raw_pairs):
            try:
                candidates.append(QaCandidate.model_validate(raw))
            except ValidationError:
                logger.warning("Dropping malformed generated QA #%s", index + 1)
        return candidates

    def judge_candidates(self, candidates: Sequence[QaCandidate], summary: str, threshold: float) -> List[bool]:
        if not candidates:
            return []
        blocks = "\n\n".join(
            f"--- QA {index + 1} ---\nQuestion: {qa.question}\nAnswer: {qa.answer}"
            for index, qa in enumerate(candidates)
        )
        payload = self._chat_json(
            JUDGE_PROMPT.format(threshold=threshold),
            f"Document summary:\n{summary}\n\nPairs to review:\n{blocks}",
            temperature=0.2,
        )
        results = payload.get("results")
        if not isinstance(results, list):
            raise EnrichmentError("AI judge returned no results")

        verdicts: List[bool] = []
        for index in range(len(candidates)):
            entry = results[index] if index < len(results) and isinstance(results[index], dict) else {}
            verdicts.append(self._passes(entry, threshold))
        return verdicts

    @staticmethod
    def _passes(entry: Dict[str, Any], threshold: float) -> bool:
        verdict = str(entry.get("verdict") or "").strip().lower()
        if verdict in {"pass", "fail"}:
            return verdict == "pass"
        try:
            return float(entry.get("average")) >= threshold
        except (TypeError, ValueError):
            return False

    def _chat_json(self, system_prompt: str, user_prompt: str, *, temperature: float) -> Dict[str, Any]:
        if not self.config.configured:
            raise EnrichmentError("AI API configuration is incomplete")

        url = f"{self.config.base_url.rstrip('/')}/chat/completions"
        headers = {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self.config.api_key}",
        }
        body = {
            "model": self.config.model,
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
            "temperature": temperature,
            "response_format": {"type": "json_object"},
        }

        try:
            # trust_env=False keeps host proxy variables out of the upstream call.
            with httpx.Client(timeout=httpx.Timeout(self.config.timeout_seconds), trust_env=False) as client:
                response = client.post(url, headers=headers, json=body)
        except httpx.HTTPError as exc:
            raise EnrichmentError(f"AI API request failed: {exc}") from exc

        if response.status_code >= 400:
            raise EnrichmentError(f"AI API error ({response.status_code}): {response.text[:500]}")

        return self._extract_json(response)

    @staticmethod
    def _extract_json(response: httpx.Response) -> Dict[str, Any]:
        try:
            data = response.json()
        except ValueError as exc:
            raise EnrichmentError("AI API returned a non-JSON body") from exc

        choices = (data or {}).get("choices") or []
        content = None
        if isinstance(choices, list) and choices:
            content = ((choices[0] or {}).get("message") or {}).get("content")
        if not content:
            raise EnrichmentError("AI returned empty response")

        text = str(content).strip()
        # Some gateways wrap json_object output in a markdown fence.
        if text.startswith("```"):
            text = text.strip("`")
            if text.lower().startswith("json"):
                text = text[4:]
        try:
            parsed = json.loads(text)
        except json.JSONDecodeError as exc:
            raise EnrichmentError(f"AI returned malformed JSON: {exc}") from exc
        if not isinstance(parsed, dict):
            raise EnrichmentError("AI returned JSON that is not an object")
        return parsed
