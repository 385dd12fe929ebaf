from __future__ import annotations

from dataclasses import dataclass

from freedom_bot.db.models import OrderKind

CLIENT_MENU_TEXT = "🏠 Меню клиента Freedom Bot.\nВыберите, что хотите оформить."


@dataclass(frozen=True)
class OrderCopy:
    emoji: str
    title: str
    pickup_prompt: str
    dropoff_prompt: str
    pickup_label: str
    dropoff_label: str
    cancelled: str


ORDER_COPY: dict[OrderKind, OrderCopy] = {
    OrderKind.TAXI: OrderCopy(
        emoji="🚕",
        title="Предварительный заказ такси",
        pickup_prompt="Введите адрес подачи такси.\nНапример: «Достык 1, подъезд 3».",
        dropoff_prompt="Адрес подачи: {pickup}.\nТеперь укажите пункт назначения.",
        pickup_label="📍 Подача",
        dropoff_label="🎯 Назначение",
        cancelled="Оформление заказа отменено.",
    ),
    OrderKind.DELIVERY: OrderCopy(
        emoji="📦",
        title="Предварительный заказ доставки",
        pickup_prompt="Укажите адрес, откуда курьер заберёт посылку.\nНапример: «Абылайхана 10, офис 5».",
        dropoff_prompt="Адрес забора: {pickup}.\nТеперь укажите адрес доставки.",
        pickup_label="📦 Забор",
        dropoff_label="🎯 Доставка",
        cancelled="Оформление доставки отменено.",
    ),
}

ORDER_CONFIRM_HINT = "Подтвердите заказ или отмените оформление."
ORDER_USE_BUTTONS = "Используйте кнопки ниже, чтобы подтвердить или отменить заказ."
ORDER_ADDRESS_EMPTY = "Не удалось распознать адрес. Пожалуйста, уточните формулировку и попробуйте снова."
ORDER_DRAFT_MISSING = "Черновик заказа не найден. Начните оформление заново."
ORDER_IN_PROGRESS = "Заказ уже обрабатывается."
ORDER_CREATED = "Заказ №{order_id} успешно создан.\nСтоимость исполнитель согласует с вами при принятии заказа."
ORDER_CHANNEL_MISSING = "⚠️ Канал исполнителей не настроен. Мы свяжемся с вами вручную."
ORDER_CREATE_FAILED = "Не удалось создать заказ. Попробуйте позже."
ORDER_PHONE_REQUIRED = "Чтобы оформить заказ, поделитесь номером телефона."

SUPPORT_PROMPT = "\n".join(
    [
        "🆘 Связаться с поддержкой.",
        "",
        "Опишите проблему или задайте вопрос — мы передадим сообщение модератору.",
        "Пожалуйста, отправьте текст или медиа одним сообщением.",
        "",
        "Если захотите вернуться в меню без сообщения, используйте /start.",
    ]
)
SUPPORT_SENT = "✅ Обращение отправлено модератору.\nОжидайте ответ — мы напишем вам в этот чат."
SUPPORT_SENT_WITH_ID = (
    "✅ Обращение отправлено модератору.\nНомер обращения: {short_id}.\n"
    "Ожидайте ответ — мы напишем вам в этот чат."
)
SUPPORT_UNAVAILABLE = (
    "⚠️ Не удалось передать обращение в поддержку.\n"
    "Попробуйте ещё раз позднее или воспользуйтесь альтернативными каналами связи."
)
SUPPORT_RETRY = (
    "Не удалось обработать сообщение для поддержки.\n"
    "Убедитесь, что отправляете текст, фото или видео одним сообщением, и попробуйте снова."
)
