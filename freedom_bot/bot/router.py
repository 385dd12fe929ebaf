from aiogram import Dispatcher

from freedom_bot.bot.auth import AuthMiddleware
from freedom_bot.bot.flows.client import menu as client_menu
from freedom_bot.bot.flows.client import orders
from freedom_bot.bot.flows.common import phone, support
from freedom_bot.bot.flows.executor import menu, role_select, subscription, verification
from freedom_bot.bot.handlers import fallback, start
from freedom_bot.bot.moderation import decisions
from freedom_bot.bot.session.cache import SessionCache
from freedom_bot.bot.session.middleware import SessionMiddleware
from freedom_bot.bot.ui import UiMiddleware


def setup_bot(dispatcher: Dispatcher) -> None:
    # Порядок важен: Auth и UI читают документ, который открывает SessionMiddleware.
    dispatcher.update.outer_middleware(SessionMiddleware(cache=SessionCache.from_settings()))
    dispatcher.update.outer_middleware(AuthMiddleware())
    dispatcher.update.outer_middleware(UiMiddleware())

    dispatcher.include_router(start.router)
    dispatcher.include_router(decisions.router)
    # Ожидающее обращение в поддержку перехватывает сообщение раньше остальных сценариев.
    dispatcher.include_router(support.router)
    dispatcher.include_router(role_select.router)
    dispatcher.include_router(client_menu.router)
    dispatcher.include_router(orders.router)
    dispatcher.include_router(menu.router)
    dispatcher.include_router(subscription.router)
    dispatcher.include_router(verification.router)
    dispatcher.include_router(phone.router)
    dispatcher.include_router(fallback.router)
