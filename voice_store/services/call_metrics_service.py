# voice_store/services/call_metrics_service.py
from typing import Any, Dict, List

import structlog

from .. import schemas
from ..adapters.base import DatabaseAdapter
from ..models import CallOutcome, FunctionCallStatus

logger = structlog.get_logger(__name__)

FALLBACK_MARKERS = ("fallback", "retry")


def classify_outcome(completion_rate: float, error_count: int) -> CallOutcome:
    if completion_rate >= 0.8 and error_count == 0:
        return CallOutcome.success
    if completion_rate >= 0.5:
        return CallOutcome.partial
    if completion_rate > 0:
        return CallOutcome.failure
    return CallOutcome.abandoned


def derive_metrics(conversation_id: str, turns: List[schemas.ConversationTurn],
                   calls: List[schemas.FunctionCallLog]) -> schemas.CallMetricsCreate:
    """Metrics computable from the stored call record alone (no audio analysis)."""
    duration = 0
    if len(turns) >= 2:
        duration = max(0, int((turns[-1].timestamp - turns[0].timestamp).total_seconds()))

    error_count = sum(1 for call in calls if call.status == FunctionCallStatus.error)
    fallback_count = sum(
        1 for call in calls if any(marker in call.function_name.lower() for marker in FALLBACK_MARKERS)
    )
    successful = sum(1 for call in calls if call.status == FunctionCallStatus.success)
    # a call that never needed a tool counts as complete
    completion_rate = successful / len(calls) if calls else 1.0

    return schemas.CallMetricsCreate(
        conversation_id=conversation_id,
        call_duration_seconds=duration,
        outcome=classify_outcome(completion_rate, error_count),
        interruptions_count=0,
        fallback_count=fallback_count,
        error_count=error_count,
        completion_rate=round(completion_rate, 2),
    )


class CallMetricsService:

    def __init__(self, adapter: DatabaseAdapter):
        self.adapter = adapter

    def calculate_metrics(self, conversation_id: str) -> schemas.CallMetrics:
        """Derive metrics from the conversation's turns and function calls and store them.

        Re-running replaces the derived fields of an existing metrics row but
        keeps manually entered ones (quality score, satisfaction, notes).
        """
        turns = self.adapter.get_conversation_history(conversation_id)
        calls = self.adapter.get_function_calls(conversation_id)
        derived = derive_metrics(conversation_id, turns, calls)

        existing = self.adapter.get_call_metrics_by_conversation(conversation_id)
        if existing is None:
            metrics_id = self.adapter.create_call_metrics(derived)
        else:
            metrics_id = existing.id
            self.adapter.update_call_metrics(metrics_id, schemas.CallMetricsUpdate(
                **derived.model_dump(include={
                    "call_duration_seconds", "outcome", "interruptions_count",
                    "fallback_count", "error_count", "completion_rate",
                })
            ))

        logger.info(
            "call_metrics_calculated",
            conversation_id=conversation_id,
            outcome=derived.outcome.value,
            completion_rate=derived.completion_rate,
            errors=derived.error_count,
        )
        return self.adapter.get_call_metrics(metrics_id)

    def get_summary_stats(self, limit: int = 1000) -> Dict[str, Any]:
        metrics = self.adapter.list_call_metrics(limit=limit)
        total = len(metrics)
        if not total:
            return {"total_calls": 0, "success_rate": 0.0, "average_duration": 0, "average_quality": 0.0}

        successes = sum(1 for m in metrics if m.outcome == CallOutcome.success)
        durations = sum(m.call_duration_seconds or 0 for m in metrics)
        rated = [m.quality_score for m in metrics if m.quality_score is not None]
        return {
            "total_calls": total,
            "success_rate": round(successes / total, 2),
            "average_duration": durations // total,
            "average_quality": round(sum(rated) / len(rated), 1) if rated else 0.0,
        }
