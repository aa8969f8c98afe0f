"""
HTTP client for quiz takers.

Keeps the in-progress attempt in an :class:`AttemptCache` so answers and
review flags survive a reload, and retries attempt reads that may land on a
lagging replica right after the attempt was started.
"""
import logging
from typing import Optional

import httpx

from quiz_engine.core.cache import AttemptCache, CachedAttempt, InMemoryAttemptCache
from quiz_engine.core.retry import RetryPolicy
from quiz_engine.services.answers import normalize_answer

logger = logging.getLogger(__name__)


class QuizAPIError(Exception):
    def __init__(self, status_code: int, message: str, kind: str = "http_error"):
        super().__init__(f"{status_code} {kind}: {message}")
        self.status_code = status_code
        self.message = message
        self.kind = kind


class AttemptNotFound(QuizAPIError):
    def __init__(self, attempt_id: str):
        super().__init__(404, f"Attempt {attempt_id} not found", "not_found")
        self.attempt_id = attempt_id


def _raise_for_error(response: httpx.Response) -> None:
    if response.is_success:
        return
    try:
        error = response.json().get("error") or {}
    except ValueError:
        error = {}
    raise QuizAPIError(response.status_code, str(error.get("message") or response.text),
                       error.get("type", "http_error"))


class QuizClient:
    def __init__(self, base_url: str, token: str, cache: Optional[AttemptCache] = None,
                 retry: Optional[RetryPolicy] = None, transport: Optional[httpx.BaseTransport] = None,
                 timeout: float = 10.0):
        self.http = httpx.Client(
            base_url=base_url.rstrip("/"),
            headers={"Authorization": f"Bearer {token}"},
            transport=transport,
            timeout=timeout,
        )
        self.cache = cache if cache is not None else InMemoryAttemptCache()
        self.retry = retry or RetryPolicy()

    def close(self) -> None:
        self.http.close()

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()

    def start_attempt(self, mode: str, subject_id: Optional[str] = None, block_id: Optional[str] = None) -> CachedAttempt:
        body = {"mode": mode, "subject_id": subject_id, "block_id": block_id}
        r = self.http.post("/v1/quiz/attempts", json={k: v for k, v in body.items() if v is not None})
        _raise_for_error(r)
        payload = r.json()
        entry = CachedAttempt(attempt_id=payload["attempt_id"], payload=payload)
        self.cache.put(entry)
        logger.info("Started attempt %s with %d questions", entry.attempt_id, payload["total_questions"])
        return entry

    def _fetch(self, attempt_id: str) -> dict:
        r = self.http.get(f"/v1/quiz/attempts/{attempt_id}")
        if r.status_code == 404:
            raise AttemptNotFound(attempt_id)
        _raise_for_error(r)
        return r.json()

    def fetch_attempt(self, attempt_id: str) -> dict:
        """GET the attempt, retrying not-found responses with the client's policy."""
        return self.retry.run(lambda: self._fetch(attempt_id), retry_on=(AttemptNotFound,))

    def load_attempt(self, attempt_id: str) -> CachedAttempt:
        entry = self.cache.get(attempt_id)
        if entry is not None:
            return entry
        payload = self.fetch_attempt(attempt_id)
        entry = CachedAttempt(attempt_id=attempt_id, payload=payload)
        if not payload.get("is_completed"):
            self.cache.put(entry)
        return entry

    def record_answer(self, attempt_id: str, question_id: int, answer: Optional[str]) -> CachedAttempt:
        entry = self.load_attempt(attempt_id)
        entry.answers[question_id] = normalize_answer(answer)
        self.cache.put(entry)
        return entry

    def toggle_flag(self, attempt_id: str, question_id: int) -> bool:
        entry = self.load_attempt(attempt_id)
        if question_id in entry.flagged:
            entry.flagged.discard(question_id)
        else:
            entry.flagged.add(question_id)
        self.cache.put(entry)
        return question_id in entry.flagged

    def submit(self, attempt_id: str, time_spent: Optional[int] = None) -> dict:
        """Submit the cached answers; the cache entry survives a failed submit."""
        entry = self.load_attempt(attempt_id)
        body = {
            "answers": [{"question_id": qid, "user_answer": ans} for qid, ans in sorted(entry.answers.items())],
            "time_spent": time_spent,
        }
        r = self.http.post(f"/v1/quiz/attempts/{attempt_id}/submit", json=body)
        _raise_for_error(r)
        self.cache.clear(attempt_id)
        return r.json()
