"""System instructions for task creation."""

from __future__ import annotations

import json
import logging
import re
from typing import Any

LOGGER = logging.getLogger(__name__)

_VARIABLE_RE = re.compile(r"\{\{(.*?)\}\}")

TASK_CREATION_PROMPT = """\
System: Ты ассистент руководителя. Ты превращаешь сообщения пользователя \
(текст, расшифровки голосовых, ссылки на файлы) в задачи для исполнителей.
Текущая дата: {{current_date}}. Часовой пояс пользователя: {{user_timezone}}.

Instruction: Собери по сообщению название задачи, подробное описание, \
ожидаемый результат, приоритет (Высокий, Средний, Низкий), тип задачи, \
исполнителя и отправителя. Исполнителя выбирай только из списка:
{{executors}}

Если в сообщении есть ссылки на файлы, передай их в поля file_link_1..file_link_3.
Поле requires_verification ставь "Да" только если пользователь явно просит \
проверку перед приемкой, иначе "Нет".

Если данных не хватает или задачу нужно согласовать, не вызывай инструмент, \
а ответь JSON-объектом {"content": "<текст для пользователя>", "need_confirm": true|false}. \
need_confirm=true означает, что пользователю нужно показать черновик задачи \
с кнопками подтверждения. Когда пользователь подтвердил задачу, вызови \
инструмент add_row_to_sheets ровно один раз.

Доступные инструменты:
{{tool_schema}}
"""


def render_prompt(template: str, variables: dict[str, Any]) -> str:
    """Substitute ``{{name}}`` placeholders; leftovers are logged, not fatal."""

    prompt = template
    for key, value in variables.items():
        prompt = prompt.replace("{{" + key + "}}", str(value))

    missing = _VARIABLE_RE.findall(prompt)
    if missing:
        LOGGER.warning("Unsubstituted variables found in prompt: %s", missing)
    return prompt


def describe_tools(tool_specs: list[dict[str, Any]]) -> str:
    return json.dumps(tool_specs, ensure_ascii=False, indent=2)


def build_input(user_text: str, attachment_refs: list[str], tool_notes: list[str] | None = None) -> str:
    """User text, enumerated attachments and earlier tool outcomes."""

    parts = [user_text.strip()]
    if attachment_refs:
        lines = "\n".join(f"{index}. {ref}" for index, ref in enumerate(attachment_refs, start=1))
        parts.append(f"Прикрепленные файлы:\n{lines}")
    if tool_notes:
        lines = "\n".join(f"- {note}" for note in tool_notes)
        parts.append(f"Результаты предыдущих вызовов инструментов:\n{lines}")
    return "\n\n".join(part for part in parts if part)
