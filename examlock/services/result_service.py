# examlock/services/result_service.py
import logging
from typing import List, Optional

from ..core.database import DatabaseManager, get_db_manager
from ..core.errors import NotFoundError
from ..core.utils import ValidationUtils
from ..models.schemas import (
    NOT_ANSWERED, TestResult, ResultDetails, PublicTest, AnswerBreakdown
)

logger = logging.getLogger(__name__)


class ResultService:
    """Result Store: results are written once and only ever deleted afterwards"""

    def __init__(self, db_manager: Optional[DatabaseManager] = None):
        self.db_manager = db_manager or get_db_manager()

    def save(self, result: TestResult) -> str:
        """Persist a finished attempt and return its id"""
        result_id = self.db_manager.insert_result(result)
        logger.info(f"✅ Result stored for user {result.user_id}: {result.score}/{result.total_points}")
        return result_id

    def get_result(self, result_id: str) -> TestResult:
        ValidationUtils.validate_record_id(result_id, "Result ID")
        result = self.db_manager.get_result(result_id)
        if not result:
            raise NotFoundError("Result not found")
        return result

    def list_by_user(self, user_id: str) -> List[TestResult]:
        ValidationUtils.validate_record_id(user_id, "User ID")
        return self.db_manager.list_results(user_id=user_id)

    def list_all(self) -> List[TestResult]:
        return self.db_manager.list_results()

    def delete(self, result_id: str):
        ValidationUtils.validate_record_id(result_id, "Result ID")
        if not self.db_manager.delete_result(result_id):
            raise NotFoundError("Result not found")
        logger.info(f"🗑️ Result deleted by admin: {result_id}")

    def get_result_details(self, result_id: str) -> ResultDetails:
        """Result with a per-question breakdown against the current test, if it still exists"""
        result = self.get_result(result_id)
        test = self.db_manager.get_test(result.test_id)

        if not test:
            logger.warning(f"Test {result.test_id} for result {result_id} no longer exists")
            return ResultDetails(result=result)

        selected = {a.question_id: a.selected_option for a in result.answers}
        breakdown = []
        for question in test.questions:
            option = selected.get(question.id, NOT_ANSWERED)
            breakdown.append(AnswerBreakdown(
                question_id=question.id,
                question=question.question,
                selected_option=option,
                correct_answer=question.correct_answer,
                points=question.points,
                is_correct=question.id in selected and option == question.correct_answer
            ))

        return ResultDetails(result=result, test=PublicTest.from_test(test), breakdown=breakdown)


# Singleton pattern for result service
_result_service = None

def get_result_service() -> ResultService:
    """Get result service instance (singleton)"""
    global _result_service
    if _result_service is None:
        _result_service = ResultService()
    return _result_service
