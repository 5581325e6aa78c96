"""
fake_source.py - Test Helper for EventSource

A scripted event source holding arbitrary raw logs, including malformed
ones, with manual control over what is history and what arrives live.
"""

from __future__ import annotations
from typing import Any, Callable, Dict, List, Optional

from tests.will_helpers import TESTATOR


def raw_log(kind: str, block: int, index: int = 0, block_timestamp: int = 1_735_689_600, **args) -> Dict[str, Any]:
    """Raw log dict; integer args should be passed as strings to mimic the wire."""
    return {
        "event": kind,
        "blockNumber": block,
        "logIndex": index,
        "blockTimestamp": block_timestamp,
        "args": args,
    }


def will_created(block: int, index: int = 0, testator: str = TESTATOR, timestamp: int = 1_735_689_600):
    return raw_log("WillCreated", block, index, timestamp,
                   testator=testator, checkInPeriod="2592000", disputePeriod="604800")


def beneficiary_added(block: int, beneficiary: str, share: int, guardian: bool = False,
                      index: int = 0, testator: str = TESTATOR):
    return raw_log("BeneficiaryAdded", block, index,
                   testator=testator, beneficiary=beneficiary, share=str(share), isGuardian=guardian)


def deposit_locked(block: int, amount: int, balance: int, index: int = 0, testator: str = TESTATOR):
    return raw_log("DepositLocked", block, index,
                   testator=testator, amount=str(amount), balance=str(balance))


class FakeSource:
    """
    EventSource over a list of raw logs.

    Logs added with add() are history returned by get_logs(); push() delivers
    a log to subscribers (and records it, like a real source would).
    """

    def __init__(self, logs: Optional[List[Dict[str, Any]]] = None):
        self.logs: List[Dict[str, Any]] = list(logs or [])
        self.subscribers: List[Callable[[Dict[str, Any]], None]] = []
        self.fetches: List[tuple] = []
        self.on_fetch: Optional[Callable[[], None]] = None

    def add(self, *logs: Dict[str, Any]) -> None:
        self.logs.extend(logs)

    def push(self, raw: Dict[str, Any]) -> None:
        self.logs.append(raw)
        for callback in list(self.subscribers):
            callback(raw)

    def head(self) -> int:
        blocks = [
            raw["blockNumber"] for raw in self.logs
            if isinstance(raw, dict) and isinstance(raw.get("blockNumber"), int)
        ]
        return max(blocks, default=0)

    def get_logs(self, from_block: int, to_block: Optional[int] = None) -> List[Dict[str, Any]]:
        self.fetches.append((from_block, to_block))
        if self.on_fetch is not None:
            hook, self.on_fetch = self.on_fetch, None
            hook()
        last = self.head() if to_block is None else to_block
        return [
            raw for raw in self.logs
            if not isinstance(raw, dict)
            or not isinstance(raw.get("blockNumber"), int)
            or from_block <= raw["blockNumber"] <= last
        ]

    def subscribe(self, callback: Callable[[Dict[str, Any]], None]) -> Callable[[], None]:
        self.subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self.subscribers:
                self.subscribers.remove(callback)

        return unsubscribe
