# voice_store/services/testing_service.py
import json
import re
import time
from typing import Any, Dict, List, Optional, Tuple

import structlog

from .. import schemas
from ..adapters.base import DatabaseAdapter
from ..errors import StoreValidationError
from ..models import ScenarioStatus, TestStatus

logger = structlog.get_logger(__name__)

MAX_REPORTED_DIFFERENCES = 5


def normalize_result(text: str) -> str:
    return re.sub(r"\s+", " ", text.strip()).lower()


def line_differences(expected: str, actual: str) -> str:
    """``Line n: expected "...", got "..."`` for the first few mismatched lines."""
    expected_lines = expected.split("\n")
    actual_lines = actual.split("\n")
    diffs = []
    for index in range(max(len(expected_lines), len(actual_lines))):
        expected_line = expected_lines[index] if index < len(expected_lines) else "<missing>"
        actual_line = actual_lines[index] if index < len(actual_lines) else "<missing>"
        if expected_line != actual_line:
            diffs.append(f'Line {index + 1}: expected "{expected_line}", got "{actual_line}"')
    return "; ".join(diffs[:MAX_REPORTED_DIFFERENCES])


def compare_results(expected: Optional[str], actual: str) -> Tuple[TestStatus, Optional[str]]:
    # A scenario without an expected outcome only checks that the run completed
    if not expected or not expected.strip():
        return TestStatus.passed, None
    if normalize_result(expected) == normalize_result(actual):
        return TestStatus.passed, None
    return TestStatus.failed, line_differences(expected, actual)


class TestingService:
    """Records voice-agent test runs against stored scenarios."""

    __test__ = False

    def __init__(self, adapter: DatabaseAdapter):
        self.adapter = adapter

    def list_active_scenarios(self, limit: int = 100, offset: int = 0) -> List[schemas.TestScenario]:
        return self.adapter.list_test_scenarios(status=ScenarioStatus.active.value, limit=limit, offset=offset)

    def record_run(self, scenario_id: str, actual_result: Any, conversation_id: Optional[str] = None,
                   execution_time_ms: Optional[int] = None) -> schemas.TestExecution:
        started = time.monotonic()
        scenario = self.adapter.get_test_scenario(scenario_id)
        if scenario is None:
            raise StoreValidationError(f"Test scenario '{scenario_id}' does not exist", "test_execution", "create")

        actual = actual_result if isinstance(actual_result, str) else json.dumps(actual_result, indent=2, default=str)
        status, differences = compare_results(scenario.expected_outcome, actual)
        if execution_time_ms is None:
            execution_time_ms = int((time.monotonic() - started) * 1000)

        execution_id = self.adapter.create_test_execution(schemas.TestExecutionCreate(
            scenario_id=scenario_id,
            conversation_id=conversation_id,
            test_status=status,
            expected_result=scenario.expected_outcome,
            actual_result=actual,
            differences=differences,
            execution_time_ms=execution_time_ms,
        ))
        logger.info("test_run_recorded", execution_id=execution_id, scenario=scenario.name, status=status.value)
        return self.adapter.get_test_execution(execution_id)

    def record_error(self, scenario_id: str, error_message: str, conversation_id: Optional[str] = None) -> str:
        """The run itself blew up before producing a result."""
        return self.adapter.create_test_execution(schemas.TestExecutionCreate(
            scenario_id=scenario_id,
            conversation_id=conversation_id,
            test_status=TestStatus.error,
            error_message=error_message,
        ))

    def get_pass_rate(self, scenario_id: str, limit: int = 100) -> Dict[str, Any]:
        executions = self.adapter.list_test_executions_by_scenario(scenario_id, limit=limit)
        total = len(executions)
        counts = {status: sum(1 for e in executions if e.test_status == status) for status in TestStatus}
        return {
            "total_runs": total,
            "passes": counts[TestStatus.passed],
            "failures": counts[TestStatus.failed],
            "errors": counts[TestStatus.error],
            "pass_rate": round(counts[TestStatus.passed] / total, 2) if total else 0.0,
        }
