"""
Машина состояний задачи очереди.

Назначение:
- Централизованное управление переходами waiting -> active -> completed|failed
- Предсказуемое поведение при ошибках (ретрай или терминальный провал)
- Основа для ретраев с экспоненциальным backoff
"""

from __future__ import annotations

import enum
from dataclasses import dataclass

from .enums import JobState


class Outcome(str, enum.Enum):
    """
    Итог одной попытки обработки.
    """

    completed = "completed"
    retryable = "retryable"
    terminal = "terminal"


# =============================================================================
# РЕЗУЛЬТАТ ПЕРЕХОДА
# =============================================================================
@dataclass
class TransitionResult:
    state: JobState
    delay_sec: float = 0.0
    exhausted: bool = False
    reason: str | None = None


# =============================================================================
# BACKOFF
# =============================================================================
def backoff_delay(attempt: int, *, base_sec: float, backoff_type: str = "exponential") -> float:
    """
    Задержка перед следующей попыткой после неудачной попытки номер attempt (с 1).

    exponential: base * 2^(attempt-1) -> 2s, 4s, 8s ...
    fixed: всегда base
    """
    if attempt < 1:
        attempt = 1
    if backoff_type == "fixed":
        return float(base_sec)
    return float(base_sec) * (2 ** (attempt - 1))


# =============================================================================
# ПЕРЕХОД СОСТОЯНИЙ
# =============================================================================
def transition(
    outcome: Outcome,
    *,
    attempt: int,
    max_attempts: int,
    backoff_base_sec: float,
    backoff_type: str = "exponential",
) -> TransitionResult:
    """
    Правила перехода из active:
    - completed  → completed
    - terminal   → failed (без ретрая)
    - retryable  → delayed с backoff, пока attempt < max_attempts; иначе failed
    """
    if outcome == Outcome.completed:
        return TransitionResult(state=JobState.completed)

    if outcome == Outcome.terminal:
        return TransitionResult(state=JobState.failed, reason="terminal")

    if attempt >= max_attempts:
        return TransitionResult(state=JobState.failed, exhausted=True, reason="attempts_exhausted")

    return TransitionResult(
        state=JobState.delayed,
        delay_sec=backoff_delay(attempt, base_sec=backoff_base_sec, backoff_type=backoff_type),
        reason="retry_scheduled",
    )
