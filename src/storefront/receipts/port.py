"""Receipt dispatch port: one receipt per successful seller charge."""

from abc import ABC, abstractmethod
from dataclasses import dataclass


@dataclass(frozen=True)
class ReceiptRequest:
    order_id: str
    charge_id: str
    seller_id: str
    buyer_id: str | None
    email: str | None
    purchase_ids: tuple[str, ...]


class ReceiptDispatcher(ABC):
    @abstractmethod
    def send_receipt(self, request: ReceiptRequest) -> None: ...


class RecordingReceiptDispatcher(ReceiptDispatcher):
    """Keeps dispatched receipts in memory; the default outside production."""

    def __init__(self) -> None:
        self.sent: list[ReceiptRequest] = []

    def send_receipt(self, request: ReceiptRequest) -> None:
        self.sent.append(request)
