from __future__ import annotations

from aiogram.types import InlineKeyboardButton, InlineKeyboardMarkup
from aiogram.utils.keyboard import InlineKeyboardBuilder

HOME_BUTTON_LABEL = "🏠 Главное меню"

_LONG_BUTTON_TEXT_THRESHOLD = 10
_MAX_BUTTONS_PER_LONG_TEXT_ROW = 2


def _button_label_length(button: InlineKeyboardButton) -> int:
    text = (button.text or "").strip()
    if not text:
        return 0
    parts = text.split(maxsplit=1)
    # Эмодзи в начале подписи не считаем.
    if len(parts) == 2 and len(parts[0]) <= 2:
        return len(parts[1])
    return len(text)


def enforce_long_button_rows(
    rows: list[list[InlineKeyboardButton]],
    *,
    long_text_threshold: int = _LONG_BUTTON_TEXT_THRESHOLD,
    max_buttons_per_row: int = _MAX_BUTTONS_PER_LONG_TEXT_ROW,
) -> list[list[InlineKeyboardButton]]:
    normalized_rows: list[list[InlineKeyboardButton]] = []
    safe_max_buttons = max(1, max_buttons_per_row)
    safe_threshold = max(1, long_text_threshold)

    for row in rows:
        if len(row) <= safe_max_buttons or not any(
            _button_label_length(button) > safe_threshold for button in row
        ):
            normalized_rows.append(row)
            continue
        for index in range(0, len(row), safe_max_buttons):
            normalized_rows.append(row[index : index + safe_max_buttons])

    return normalized_rows


def callback_button(text: str, data: str) -> InlineKeyboardButton:
    return InlineKeyboardButton(text=text, callback_data=data)


def url_button(text: str, url: str) -> InlineKeyboardButton:
    return InlineKeyboardButton(text=text, url=url)


def build_keyboard(rows: list[list[InlineKeyboardButton]]) -> InlineKeyboardMarkup:
    builder = InlineKeyboardBuilder()
    for row in enforce_long_button_rows(rows):
        builder.row(*row)
    return builder.as_markup()


def merge_keyboards(*keyboards: InlineKeyboardMarkup | None) -> InlineKeyboardMarkup | None:
    rows = [
        list(row)
        for keyboard in keyboards
        if keyboard is not None
        for row in keyboard.inline_keyboard
    ]
    if not rows:
        return None
    return InlineKeyboardMarkup(inline_keyboard=rows)


def append_home_button(
    keyboard: InlineKeyboardMarkup | None,
    action: str,
    label: str = HOME_BUTTON_LABEL,
) -> InlineKeyboardMarkup:
    home_keyboard = InlineKeyboardMarkup(inline_keyboard=[[callback_button(label, action)]])
    return merge_keyboards(keyboard, home_keyboard) or home_keyboard
