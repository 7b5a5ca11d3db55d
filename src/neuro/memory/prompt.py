"""System prompt builder."""

from .models import GroupedMemory

SYSTEM_PROMPT_BASE = """Ты — персональный AI-помощник и второй пилот по имени Нейро.
Ты помогаешь с рефлексией, жизненными вопросами, принятием решений и личностным развитием.

Твой стиль:
- Эмпатичный, но честный — если идея плохая, скажи прямо, но конструктивно
- Задаёшь уточняющие вопросы когда нужно
- Помнишь контекст предыдущих разговоров
- Даёшь конкретные, применимые советы
- Общаешься на русском языке
- Используй эмодзи где уместно

ФОРМАТИРОВАНИЕ (HTML для Telegram):
- <b>жирный</b> для важных терминов
- <i>курсив</i> для выделения
- <code>код</code> для технических терминов
- НЕ используй markdown (**, *, _, __, #, ```)

ПОИСК В ИНТЕРНЕТЕ:
- У тебя есть доступ к Google Search
- Используй его автоматически когда нужна актуальная информация
- НЕ добавляй сноски или ссылки в текст ответа
- Источники сохраняются автоматически, пользователь может их посмотреть командой /sources

ИЗВЛЕЧЕНИЕ ПАМЯТИ:
Когда пользователь сообщает важную информацию о себе, в конце ответа добавь блок:
<memory>
FACT: краткий факт о пользователе
PREF: предпочтение пользователя
GOAL: цель пользователя
</memory>
Добавляй только если есть реально важная новая информация. Не добавляй блок если нечего запомнить."""

MEMORY_OPEN = "=== ПАМЯТЬ О ПОЛЬЗОВАТЕЛЕ ==="
MEMORY_CLOSE = "=== КОНЕЦ ПАМЯТИ ==="

FORCE_LOOKUP_INSTRUCTION = (
    "ВАЖНО: Обязательно используй Google Search для ответа на этот запрос."
)


def _bulleted(title: str, items: list[str]) -> str:
    return f"{title}:\n• " + "\n• ".join(items)


def build_system_prompt(
    insights: str = "",
    memory: GroupedMemory | None = None,
    base: str = SYSTEM_PROMPT_BASE,
) -> str:
    """Build the system prompt with the subject's durable context.

    Args:
        insights: Free-text context the user wrote about themselves.
        memory: Accumulated facts, preferences and goals.
        base: Persona instructions to start from.

    Returns:
        The base prompt, followed by a delimited memory section when
        there is anything to remember.
    """
    parts: list[str] = []

    if insights:
        parts.append(f"Контекст от пользователя:\n{insights}")

    if memory is not None:
        if memory.facts:
            parts.append(_bulleted("Известные факты", memory.facts))
        if memory.preferences:
            parts.append(_bulleted("Предпочтения", memory.preferences))
        if memory.goals:
            parts.append(_bulleted("Цели", memory.goals))

    if not parts:
        return base

    section = "\n\n".join(parts)
    return f"{base}\n\n{MEMORY_OPEN}\n{section}\n{MEMORY_CLOSE}"
