from __future__ import annotations

from dataclasses import dataclass

from freedom_bot.bot.roles import ExecutorRole


@dataclass(frozen=True)
class ExecutorRoleCopy:
    emoji: str
    noun: str
    genitive: str
    plural_genitive: str


ROLE_COPY: dict[ExecutorRole, ExecutorRoleCopy] = {
    ExecutorRole.COURIER: ExecutorRoleCopy(
        emoji="🚚",
        noun="курьер",
        genitive="курьера",
        plural_genitive="курьеров",
    ),
    ExecutorRole.DRIVER: ExecutorRoleCopy(
        emoji="🚕",
        noun="водитель такси",
        genitive="водителя такси",
        plural_genitive="водителей такси",
    ),
}


def get_role_copy(role: ExecutorRole | None) -> ExecutorRoleCopy:
    if role is None:
        return ROLE_COPY[ExecutorRole.COURIER]
    return ROLE_COPY.get(role, ROLE_COPY[ExecutorRole.COURIER])


CITY_LABELS: dict[str, str] = {
    "almaty": "Алматы",
    "astana": "Астана",
    "shymkent": "Шымкент",
    "karaganda": "Караганда",
}

PRIVATE_ONLY = "Доступно только в личных сообщениях."
TRY_AGAIN_LATER = "Не удалось выполнить действие. Попробуйте позже."

ROLE_PICK_TEXT = "👋 Добро пожаловать в Freedom Bot!\nКем вы хотите пользоваться сервисом?"
EXECUTOR_KIND_TEXT = "Выберите, кем вы будете работать:"
CITY_PICK_TEXT = "Выберите город, чтобы продолжить работу с ботом:"
MODERATOR_ROLE_LOCKED = "Роль модератора нельзя изменить через бота."

VERIFICATION_PROMPT = "\n".join(
    [
        "Для доступа к заказам пришлите фотографии документов:",
        "1. Удостоверение личности — лицевая сторона.",
        "2. Удостоверение личности — обратная сторона.",
        "",
        "Отправляйте фотографии по одному сообщению в этот чат.",
    ]
)
VERIFICATION_REMINDER = "Отправьте, пожалуйста, фотографию документа."
VERIFICATION_ALREADY_SUBMITTED = "Документы уже на проверке. Мы свяжемся с вами после решения модераторов."
VERIFICATION_ALREADY_APPROVED = "✅ Документы уже подтверждены. Оформите подписку, чтобы получить доступ к заказам."
VERIFICATION_DUPLICATE = "Это фото уже получено ({uploaded}/{required})."
VERIFICATION_PROGRESS = "Фото {uploaded}/{required} получено."
VERIFICATION_SUBMITTED = "Спасибо! Мы получили ваши документы и передали их модераторам. Ожидайте решения."
VERIFICATION_CHANNEL_MISSING = "Канал верификации пока не настроен. Попробуйте позже."
VERIFICATION_SUBMIT_FAILED = "Не удалось отправить документы на проверку. Попробуйте позже."
VERIFICATION_ROLE_REQUIRED = "Сначала выберите роль исполнителя."

SUBSCRIPTION_VERIFICATION_REQUIRED = "Сначала завершите проверку документов, чтобы получить ссылку на канал."
SUBSCRIPTION_CHANNEL_MISSING = "Канал {plural_genitive} пока не настроен. Попробуйте позже."
SUBSCRIPTION_INVITE_FAILED = "Не удалось создать ссылку на канал. Попробуйте позже."
SUBSCRIPTION_INVITE_TEXT = "\n".join(
    [
        "Отправьте заявку на вступление в канал {plural_genitive} Freedom Bot.",
        "После одобрения вы будете получать новые заказы и уведомления.",
    ]
)
SUBSCRIPTION_PERIOD_PROMPT = "Выберите срок подписки:"
SUBSCRIPTION_PERIOD_UNKNOWN = "Такой срок подписки недоступен. Выберите вариант из списка."
SUBSCRIPTION_RECEIPT_REQUIRED = "Пришлите фото чека об оплате."
SUBSCRIPTION_RECEIPT_SENT = "Чек получен и передан модераторам. Ссылка на канал придёт после проверки."
SUBSCRIPTION_PENDING = "Оплата уже на проверке. Дождитесь решения модераторов."
SUBSCRIPTION_CANCELLED = "Оформление подписки отменено."


def format_amount(amount: int, currency: str) -> str:
    return f"{amount:,}".replace(",", " ") + f" {currency}"


def build_payment_instructions(
    period_label: str,
    amount: int,
    currency: str,
    *,
    card: str | None,
    name: str | None,
    phone: str | None,
) -> str:
    lines = [
        f"Подписка на {period_label}: {format_amount(amount, currency)}.",
        "",
        "Оплатите через Kaspi:",
    ]
    if card:
        lines.append(f"Карта: {card}")
    if name:
        lines.append(f"Получатель: {name}")
    if phone:
        lines.append(f"Телефон: {phone}")
    lines.append("")
    lines.append(SUBSCRIPTION_RECEIPT_REQUIRED)
    return "\n".join(lines)
