"""
Результат обработки задачи процессором.

Процессор не подписывается на события очереди: он возвращает результат,
а рантайм по нему выполняет переход состояния (completed / ретрай / failed).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Protocol

from clientflow_automation.common.errors import JobError
from clientflow_automation.contracts.jobs import JobEnvelope
from clientflow_automation.domain.enums import JobKind
from clientflow_automation.domain.state_machine import Outcome


@dataclass
class ProcessResult:
    outcome: Outcome
    error_code: str | None = None
    message: str | None = None
    data: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def completed(cls, data: dict[str, Any] | None = None) -> ProcessResult:
        return cls(outcome=Outcome.completed, data=dict(data or {}))

    @classmethod
    def retryable(cls, code: str, message: str, data: dict[str, Any] | None = None) -> ProcessResult:
        return cls(outcome=Outcome.retryable, error_code=code, message=message, data=dict(data or {}))

    @classmethod
    def terminal(cls, code: str, message: str, data: dict[str, Any] | None = None) -> ProcessResult:
        return cls(outcome=Outcome.terminal, error_code=code, message=message, data=dict(data or {}))

    @classmethod
    def from_error(cls, err: JobError, data: dict[str, Any] | None = None) -> ProcessResult:
        merged = {**(err.details or {}), **(data or {})}
        if err.retryable:
            return cls.retryable(err.code, err.message, merged)
        return cls.terminal(err.code, err.message, merged)

    @property
    def error_text(self) -> str:
        return f"{self.error_code or 'error'}: {self.message or ''}".strip()


class JobProcessor(Protocol):
    """
    Процессор одного вида задач.

    process: одна попытка; исключения трактуются рантаймом как временные ошибки.
    on_exhausted: вызывается один раз, когда задача окончательно провалена
    после исчерпания попыток (в том числе из-за зависания).
    """

    kind: JobKind

    def process(self, envelope: JobEnvelope) -> ProcessResult: ...

    def on_exhausted(self, envelope: JobEnvelope, result: ProcessResult) -> None: ...
