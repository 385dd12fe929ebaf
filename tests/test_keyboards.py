from freedom_bot.bot.keyboards import (
    HOME_BUTTON_LABEL,
    append_home_button,
    build_keyboard,
    callback_button,
    enforce_long_button_rows,
    merge_keyboards,
)


def test_long_labels_are_split_into_narrow_rows() -> None:
    row = [
        callback_button("🚕 Водитель такси", "a"),
        callback_button("🚚 Курьер", "b"),
        callback_button("🙋 Я клиент", "c"),
    ]

    rows = enforce_long_button_rows([row])

    assert [len(item) for item in rows] == [2, 1]


def test_short_labels_stay_on_one_row() -> None:
    row = [callback_button("7", "a"), callback_button("15", "b"), callback_button("30", "c")]

    assert enforce_long_button_rows([row]) == [row]


def test_emoji_prefix_is_not_counted() -> None:
    row = [callback_button("✅ Да", "a"), callback_button("❌ Нет", "b"), callback_button("🔁 Ещё", "c")]

    assert len(build_keyboard([row]).inline_keyboard) == 1


def test_home_button_is_appended_last() -> None:
    keyboard = build_keyboard([[callback_button("Проверка", "executor:verification:start")]])

    merged = append_home_button(keyboard, "executor:menu:refresh")

    assert merged.inline_keyboard[-1][0].text == HOME_BUTTON_LABEL
    assert len(merged.inline_keyboard) == 2
    assert append_home_button(None, "client:menu").inline_keyboard[0][0].callback_data == "client:menu"


def test_merge_without_rows_is_none() -> None:
    assert merge_keyboards(None, None) is None
