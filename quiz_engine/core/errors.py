"""
Domain errors raised by the attempt engine.

Each error carries a stable ``kind`` (rendered as the error ``type`` in the
HTTP envelope) and the status code the API answers with.
"""
from typing import Optional


class QuizError(Exception):
    kind = "quiz_error"
    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class InsufficientQuestions(QuizError):
    kind = "insufficient_questions"
    status_code = 422

    def __init__(self, subject_id: str, available: int, required: int):
        super().__init__(
            f"Subject {subject_id} has {available} active questions, {required} are required"
        )
        self.available = available
        self.required = required


class EmptyBlock(QuizError):
    kind = "empty_block"
    status_code = 422

    def __init__(self, block_id: str):
        super().__init__(f"Block {block_id} has no questions")


class BlockInactive(QuizError):
    kind = "block_inactive"
    status_code = 422

    def __init__(self, block_id: str):
        super().__init__(f"Block {block_id} is not active")


class NotFound(QuizError):
    kind = "not_found"
    status_code = 404


class Forbidden(QuizError):
    kind = "forbidden"
    status_code = 403

    def __init__(self, message: str = "Attempt belongs to another user"):
        super().__init__(message)


class AlreadyCompleted(QuizError):
    kind = "already_completed"
    status_code = 409

    def __init__(self, attempt_id: str):
        super().__init__(f"Attempt {attempt_id} is already completed")
        self.attempt_id = attempt_id


class UnknownQuestion(QuizError):
    kind = "unknown_question"
    status_code = 422

    def __init__(self, question_ids: list, attempt_id: Optional[str] = None):
        ids = ", ".join(str(q) for q in question_ids)
        super().__init__(f"Questions not part of attempt {attempt_id}: {ids}")
        self.question_ids = list(question_ids)


class InvalidAnswer(QuizError):
    kind = "invalid_answer"
    status_code = 422


class InvalidRequest(QuizError):
    kind = "invalid_request"
    status_code = 422
