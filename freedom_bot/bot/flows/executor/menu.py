from __future__ import annotations

from aiogram import Bot, F, Router
from aiogram.types import CallbackQuery, InlineKeyboardMarkup

from freedom_bot.bot.auth import AuthState
from freedom_bot.bot.flows.executor.copy import PRIVATE_ONLY, get_role_copy
from freedom_bot.bot.keyboards import build_keyboard, callback_button
from freedom_bot.bot.session.document import ExecutorFlowState, SessionDocument
from freedom_bot.bot.ui import StepResult, step_tracker
from freedom_bot.core.timezone import format_app_datetime

EXECUTOR_MENU_STEP_ID = "executor:menu"
EXECUTOR_MENU_ACTION = "executor:menu:refresh"
EXECUTOR_VERIFICATION_ACTION = "executor:verification:start"
EXECUTOR_SUBSCRIPTION_ACTION = "executor:subscription:link"
EXECUTOR_SUBSCRIPTION_NEW_LINK_ACTION = "executor:subscription:new-link"
EXECUTOR_ROLE_SWITCH_ACTION = "executor:role:switch"

_VERIFICATION_STATUS_LABELS = {
    "idle": "не начата",
    "collecting": "ожидаем фотографии",
    "submitted": "на проверке",
}

_VERIFICATION_INSTRUCTIONS = {
    "idle": "Нажмите «📸 Отправить документы», чтобы начать проверку.",
    "collecting": "Пришлите фотографии документов в этот чат.",
    "submitted": "Мы передали документы модераторам. Ожидайте обратной связи.",
}

router = Router()


def _is_verified(state: ExecutorFlowState, auth: AuthState | None) -> bool:
    return auth is not None and auth.executor.is_role_verified(state.role)


def _verification_section(state: ExecutorFlowState, auth: AuthState | None) -> list[str]:
    if _is_verified(state, auth):
        return ["Статус проверки: документы подтверждены ✅."]
    verification = state.verification[state.role] if state.role else None
    if verification is None:
        return ["Роль исполнителя не выбрана."]
    lines = [
        f"Статус проверки: {_VERIFICATION_STATUS_LABELS[verification.status]}.",
        f"Фотографии: {len(verification.uploaded_photos)}/{verification.required_photos}.",
        _VERIFICATION_INSTRUCTIONS[verification.status],
    ]
    return lines


def _subscription_section(state: ExecutorFlowState, auth: AuthState | None) -> list[str]:
    copy = get_role_copy(state.role)
    channel_label = f"канал {copy.plural_genitive}"
    verification = state.verification[state.role] if state.role else None
    verified = _is_verified(state, auth)
    if not verified and (verification is None or verification.status != "submitted"):
        return [f"Ссылка на {channel_label} станет доступна после отправки документов."]

    subscription = state.subscription
    if subscription.status == "selecting_period":
        return ["Выберите срок подписки, чтобы получить реквизиты для оплаты."]
    if subscription.status == "awaiting_receipt":
        return ["Ожидаем фото чека об оплате подписки."]
    if subscription.status == "pending_moderation":
        return ["Оплата подписки на проверке у модераторов."]

    has_subscription = auth is not None and auth.executor.has_active_subscription
    if subscription.last_invite_link and has_subscription:
        issued = ""
        if subscription.last_issued_at is not None:
            issued = f" (выдана {format_app_datetime(subscription.last_issued_at)})"
        return [
            f"Ссылка на канал уже выдана{issued}. При необходимости запросите новую с помощью кнопки ниже."
        ]
    if has_subscription:
        return [f"Подписка активна. Получите ссылку на {channel_label} кнопкой ниже."]
    return [f"Оформите подписку, чтобы получить доступ к {channel_label}."]


def build_menu_text(state: ExecutorFlowState, auth: AuthState | None) -> str:
    copy = get_role_copy(state.role)
    parts = [
        f"{copy.emoji} Меню {copy.genitive} Freedom Bot",
        "",
        *_verification_section(state, auth),
        "",
        *_subscription_section(state, auth),
    ]
    return "\n".join(parts)


def build_menu_keyboard(state: ExecutorFlowState, auth: AuthState | None) -> InlineKeyboardMarkup:
    rows = []
    if not _is_verified(state, auth):
        rows.append([callback_button("📸 Отправить документы", EXECUTOR_VERIFICATION_ACTION)])
    rows.append([callback_button("📨 Получить ссылку на канал", EXECUTOR_SUBSCRIPTION_ACTION)])
    if state.subscription.last_invite_link:
        rows.append([callback_button("🔁 Новая ссылка", EXECUTOR_SUBSCRIPTION_NEW_LINK_ACTION)])
    rows.append([callback_button("🔄 Обновить меню", EXECUTOR_MENU_ACTION)])
    rows.append([callback_button("👥 Сменить роль", EXECUTOR_ROLE_SWITCH_ACTION)])
    return build_keyboard(rows)


async def show_executor_menu(
    bot: Bot,
    chat_id: int,
    session: SessionDocument,
    auth: AuthState | None,
) -> StepResult:
    state = session.executor
    return await step_tracker.step(
        bot,
        chat_id,
        session,
        step_id=EXECUTOR_MENU_STEP_ID,
        text=build_menu_text(state, auth),
        keyboard=build_menu_keyboard(state, auth),
        cleanup=False,
    )


@router.callback_query(F.data == EXECUTOR_MENU_ACTION)
async def handle_menu_refresh(
    callback: CallbackQuery,
    session: SessionDocument,
    auth: AuthState | None = None,
) -> None:
    message = callback.message
    if message is None or message.chat.type != "private":
        await callback.answer(PRIVATE_ONLY)
        return
    await callback.answer()
    await show_executor_menu(callback.bot, message.chat.id, session, auth)
