"""Receipt dispatcher factory."""

from storefront.receipts.port import ReceiptDispatcher, RecordingReceiptDispatcher

_current_dispatcher: ReceiptDispatcher | None = None


def get_dispatcher() -> ReceiptDispatcher:
    """Return the current dispatcher. Defaults to RecordingReceiptDispatcher."""
    global _current_dispatcher
    if _current_dispatcher is None:
        _current_dispatcher = RecordingReceiptDispatcher()
    return _current_dispatcher


def set_dispatcher(dispatcher: ReceiptDispatcher) -> None:
    global _current_dispatcher
    _current_dispatcher = dispatcher


def reset_dispatcher() -> None:
    global _current_dispatcher
    _current_dispatcher = None
