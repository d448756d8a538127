"""Pending command transactions waiting for a _result or _error reply."""

from __future__ import annotations

import io
import threading
from typing import BinaryIO

from rtmpkit.amf0 import EncodingType


class Transaction:
    """A command sent to the peer whose reply has not yet been consumed."""

    def __init__(self) -> None:
        self.command_name: str = ""
        self.encoding: EncodingType = EncodingType.AMF0
        self.body: io.BytesIO = io.BytesIO()
        self.last_error: Exception | None = None
        self._done = threading.Event()

    @property
    def done(self) -> bool:
        """Whether a reply has been stored."""
        return self._done.is_set()

    def reply(self, command_name: str, encoding: EncodingType, body: BinaryIO) -> None:
        """Store the reply and wake every waiter."""
        if self._done.is_set():
            raise RuntimeError("Transaction already replied")
        self.command_name = command_name
        self.encoding = encoding
        try:
            data = body.read()
            self.body = io.BytesIO(data)
        except OSError as exc:
            self.body = io.BytesIO()
            self.last_error = exc
        self._done.set()

    def wait(self, timeout: float | None = None) -> bool:
        """Block until a reply arrives; return False if the timeout expired first."""
        return self._done.wait(timeout)


class Transactions:
    """Thread-safe table of transactions keyed by transaction id."""

    def __init__(self) -> None:
        self._transactions: dict[int, Transaction] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._transactions)

    def __contains__(self, transaction_id: object) -> bool:
        with self._lock:
            return transaction_id in self._transactions

    def create(self, transaction_id: int) -> Transaction:
        """Register and return a new transaction."""
        with self._lock:
            if transaction_id in self._transactions:
                raise ValueError(
                    f"Transaction already exists: TransactionID = {transaction_id}"
                )
            transaction = Transaction()
            self._transactions[transaction_id] = transaction
            return transaction

    def delete(self, transaction_id: int) -> None:
        """Remove a transaction."""
        with self._lock:
            if transaction_id not in self._transactions:
                raise KeyError(f"Transaction not exists: TransactionID = {transaction_id}")
            del self._transactions[transaction_id]

    def at(self, transaction_id: int) -> Transaction:
        """Return a registered transaction."""
        with self._lock:
            try:
                return self._transactions[transaction_id]
            except KeyError:
                raise KeyError(
                    f"Transaction is not found: TransactionID = {transaction_id}"
                ) from None