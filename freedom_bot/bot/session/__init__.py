from freedom_bot.bot.session.document import SessionDocument, dump_document, load_document
from freedom_bot.bot.session.middleware import SessionControl, SessionMiddleware
from freedom_bot.bot.session.store import SessionKey, SessionStore, resolve_session_key

__all__ = [
    "SessionControl",
    "SessionDocument",
    "SessionKey",
    "SessionMiddleware",
    "SessionStore",
    "dump_document",
    "load_document",
    "resolve_session_key",
]
