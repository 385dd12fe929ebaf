from __future__ import annotations

from freedom_bot.bot.session.document import ClientState, OrderDraftState, OrderLocation, SupportState
from freedom_bot.db.models import OrderKind


def reset_order_draft(draft: OrderDraftState) -> None:
    draft.stage = "idle"
    draft.pickup = None
    draft.dropoff = None


def start_order_draft(client: ClientState, kind: OrderKind) -> OrderDraftState:
    """Начинает новый черновик. Одновременно оформляется только один заказ."""
    for other in OrderKind:
        reset_order_draft(get_order_draft(client, other))
    draft = get_order_draft(client, kind)
    draft.stage = "collecting_pickup"
    return draft


def get_order_draft(client: ClientState, kind: OrderKind) -> OrderDraftState:
    return client.taxi if kind is OrderKind.TAXI else client.delivery


def active_order_draft(client: ClientState) -> tuple[OrderKind, OrderDraftState] | None:
    for kind in OrderKind:
        draft = get_order_draft(client, kind)
        if draft.stage != "idle":
            return kind, draft
    return None


def normalize_address(text: str) -> str | None:
    address = " ".join(text.split())
    return address or None


def apply_pickup(draft: OrderDraftState, address: str) -> None:
    draft.pickup = OrderLocation(address=address)
    draft.dropoff = None
    draft.stage = "collecting_dropoff"


def apply_dropoff(draft: OrderDraftState, address: str) -> bool:
    if draft.pickup is None:
        reset_order_draft(draft)
        return False
    draft.dropoff = OrderLocation(address=address)
    draft.stage = "awaiting_confirmation"
    return True


def is_order_draft_complete(draft: OrderDraftState) -> bool:
    return draft.pickup is not None and draft.dropoff is not None


def begin_order_creation(draft: OrderDraftState) -> bool:
    if draft.stage != "awaiting_confirmation" or not is_order_draft_complete(draft):
        return False
    draft.stage = "creating_order"
    return True


def begin_support_request(support: SupportState) -> None:
    if support.status == "awaiting_message":
        return
    support.status = "awaiting_message"
    support.last_thread_id = None
    support.last_thread_short_id = None


def finish_support_request(
    support: SupportState, *, thread_id: str | None = None, short_id: str | None = None
) -> None:
    support.status = "idle"
    support.last_thread_id = thread_id
    support.last_thread_short_id = short_id


def cancel_support_request(support: SupportState) -> None:
    support.status = "idle"
