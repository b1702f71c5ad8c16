"""
Consensus Resolver
==================
Combines the per-provider classification results for one post into a single
decision and score.

    outcome = resolve(classification, results, attempt, max_attempts)

``outcome`` is one of ``Finalized``, ``RetryRequired`` or ``Failed``.  Only a
``Finalized`` outcome mutates ``classification`` (provider columns,
``final_decision``, ``combined_score`` and ``classified_at``).
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Iterable, Optional, Tuple, Union

from ideascan.config import settings
from ideascan.models.classification import Classification, Decision, ProviderKind
from ideascan.services.llm.dtos import VERDICT_KEEP, VERDICT_SKIP, ClassificationResponse

ERROR_TRANSIENT = "transient"
ERROR_PERMANENT = "permanent"


@dataclass(frozen=True)
class ProviderResult:
    """What one provider produced for one attempt"""
    response: Optional[ClassificationResponse] = None
    completed: bool = False
    error: Optional[str] = None       # ERROR_TRANSIENT | ERROR_PERMANENT | None
    error_detail: str = ""

    @classmethod
    def success(cls, response: ClassificationResponse) -> "ProviderResult":
        return cls(response=response, completed=True)

    @classmethod
    def transient(cls, detail: str = "") -> "ProviderResult":
        return cls(error=ERROR_TRANSIENT, error_detail=detail)

    @classmethod
    def permanent(cls, detail: str = "") -> "ProviderResult":
        return cls(error=ERROR_PERMANENT, error_detail=detail)

    @property
    def is_transient(self) -> bool:
        return self.error == ERROR_TRANSIENT


@dataclass(frozen=True)
class Finalized:
    decision: Decision
    score: float


@dataclass(frozen=True)
class RetryRequired:
    reason: str


@dataclass(frozen=True)
class Failed:
    reason: str


Outcome = Union[Finalized, RetryRequired, Failed]


# ── Model consensus (all providers answered) ──────────────────────────────────

def shortcut_decision(votes: Iterable[Tuple[str, float]], threshold: Optional[float] = None) -> Optional[Decision]:
    """Unanimous high-confidence agreement short-circuits the score.

    Confidence must be strictly greater than the threshold.
    """
    threshold = settings.CONSENSUS_SHORTCUT_CONFIDENCE if threshold is None else threshold
    votes = list(votes)
    if not votes or any(conf <= threshold for _, conf in votes):
        return None
    verdicts = {verdict for verdict, _ in votes}
    if verdicts == {VERDICT_SKIP}:
        return Decision.DISCARD
    if verdicts == {VERDICT_KEEP}:
        return Decision.KEEP
    return None


def consensus_score(votes: Iterable[Tuple[str, float]]) -> float:
    """Mean of each provider's confidence counted only when it voted keep"""
    votes = list(votes)
    if not votes:
        return 0.0
    return sum(conf if verdict == VERDICT_KEEP else 0.0 for verdict, conf in votes) / len(votes)


def decision_for_score(score: float) -> Decision:
    if score >= settings.CONSENSUS_KEEP_THRESHOLD:
        return Decision.KEEP
    if score < settings.CONSENSUS_DISCARD_THRESHOLD:
        return Decision.DISCARD
    return Decision.BORDERLINE


def model_consensus(votes: Iterable[Tuple[str, float]]) -> Finalized:
    votes = list(votes)
    shortcut = shortcut_decision(votes)
    if shortcut is not None:
        return Finalized(shortcut, 1.0 if shortcut is Decision.KEEP else 0.0)
    score = consensus_score(votes)
    return Finalized(decision_for_score(score), score)


# ── Single provider fallback ──────────────────────────────────────────────────

def single_provider_fallback(response: ClassificationResponse) -> Finalized:
    if not response.is_keep:
        return Finalized(Decision.DISCARD, 0.0)
    if response.confidence >= settings.FALLBACK_CONFIDENCE_THRESHOLD:
        return Finalized(Decision.KEEP, response.confidence)
    return Finalized(Decision.BORDERLINE, response.confidence * settings.FALLBACK_PENALTY_FACTOR)


# ── Resolver ──────────────────────────────────────────────────────────────────

def decide(results: Dict[ProviderKind, ProviderResult], attempt: int, max_attempts: int) -> Outcome:
    """Apply the decision table without touching any record"""
    if not results:
        return Failed("no classification providers configured")

    completed = {kind: r for kind, r in results.items() if r.completed and r.response is not None}

    if len(completed) == len(results):
        return model_consensus((r.response.verdict, r.response.confidence) for r in completed.values())

    incomplete = [r for kind, r in results.items() if kind not in completed]
    if any(r.is_transient for r in incomplete) and attempt < max_attempts:
        names = ", ".join(sorted(k.value for k, r in results.items() if k not in completed and r.is_transient))
        return RetryRequired(f"transient failure from {names} on attempt {attempt}/{max_attempts}")

    if not completed:
        return Finalized(Decision.DISCARD, 0.0)

    if len(completed) == 1:
        (only,) = completed.values()
        return single_provider_fallback(only.response)

    # Several but not all answered (only possible with three or more providers).
    return model_consensus((r.response.verdict, r.response.confidence) for r in completed.values())


def apply_results(classification: Classification, results: Dict[ProviderKind, ProviderResult]) -> None:
    for kind, result in results.items():
        if result.completed and result.response is not None:
            r = result.response
            classification.set_provider_result(kind, r.verdict, r.confidence, r.category, r.reasoning, True)
        else:
            classification.set_provider_result(
                kind, None, None, None, f"Provider failed ({result.error or 'no response'})", False,
            )


def resolve(
    classification: Classification,
    results: Dict[ProviderKind, ProviderResult],
    attempt: int,
    max_attempts: int,
) -> Outcome:
    outcome = decide(results, attempt, max_attempts)
    if isinstance(outcome, Finalized):
        apply_results(classification, results)
        classification.finalize(outcome.decision, outcome.score)
    return outcome
