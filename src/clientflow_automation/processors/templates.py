"""
Рендеринг текста сообщений (Jinja2, sandbox).

- шаблон приходит из payload задачи, поэтому только SandboxedEnvironment
- поддерживаются старые плейсхолдеры вида {contact_name} (переводятся в {{ contact_name }})
- неизвестные переменные рендерятся пустой строкой
"""

from __future__ import annotations

import re
from typing import Any

from jinja2 import TemplateError
from jinja2.sandbox import SandboxedEnvironment

from clientflow_automation.common.errors import ErrCode, JobError

_RE_LEGACY_PLACEHOLDER = re.compile(r"(?<!\{)\{([A-Za-z_][A-Za-z0-9_]*)\}(?!\})")


def format_money(amount_cents: Any) -> str:
    """Минорные единицы -> строка с двумя знаками: 5000 -> "50.00"."""
    try:
        cents = int(amount_cents)
    except (TypeError, ValueError):
        return ""
    sign = "-" if cents < 0 else ""
    cents = abs(cents)
    return f"{sign}{cents // 100}.{cents % 100:02d}"


def _build_env() -> SandboxedEnvironment:
    env = SandboxedEnvironment(autoescape=False, keep_trailing_newline=False)
    env.filters["money"] = format_money
    return env


_env = _build_env()


def render_text(template: str, context: dict[str, Any]) -> str:
    source = _RE_LEGACY_PLACEHOLDER.sub(r"{{ \1 }}", template)
    try:
        return _env.from_string(source).render(**context).strip()
    except TemplateError as e:
        raise JobError(
            ErrCode.INVALID_PAYLOAD,
            "Шаблон сообщения не удалось отрендерить",
            details={"err": str(e)[:200]},
        ) from e
