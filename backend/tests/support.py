from __future__ import annotations

from typing import List, Optional, Sequence

from backend.app.core.db import ENGINE
from backend.app.models import Base
from backend.app.services.enrichment import EnrichmentResult, QaCandidate


def reset_database() -> None:
    Base.metadata.drop_all(bind=ENGINE)
    Base.metadata.create_all(bind=ENGINE)


class FakeAnalyzer:
    def __init__(self, result=None, error: Optional[Exception] = None) -> None:
        self.result = result or EnrichmentResult(answer="Polished answer", tags=["ml"], categories=["basics"])
        self.error = error
        self.calls: List[str] = []

    def analyze(self, question: str, answer_raw: str, existing_tags: Sequence[str]):
        self.calls.append(question)
        if self.error is not None:
            raise self.error
        return self.result


class FakeCandidates:
    def __init__(
        self,
        total: int = 0,
        passed: int = 0,
        judge_error: Optional[Exception] = None,
    ) -> None:
        self.total = total
        self.passed = passed
        self.judge_error = judge_error
        self.documents: List[str] = []

    def generate_candidates(self, document_text: str, existing_tags: Sequence[str]) -> List[QaCandidate]:
        self.documents.append(document_text)
        return [
            QaCandidate(question=f"Question {index + 1}?", answer=f"Answer {index + 1}")
            for index in range(self.total)
        ]

    def judge_candidates(self, candidates: Sequence[QaCandidate], summary: str, threshold: float) -> List[bool]:
        if self.judge_error is not None:
            raise self.judge_error
        return [index < self.passed for index in range(len(candidates))]
