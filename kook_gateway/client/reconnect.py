"""
MODULE OVERVIEW:
The reconnect policy.

WHAT IS HAPPENING HERE:
A dropped connection is retried only while auto-reconnect is on, the close was
not caller-initiated, and the attempt ceiling has not been reached. Every retry
waits the same fixed delay: no exponential growth, no jitter. A successful
handshake resets the counter. The policy never touches the endpoint URL; the
session manager keeps reusing the one it resolved first.
"""
from dataclasses import dataclass
from enum import Enum


class ReconnectDecision(str, Enum):
    RETRY = "retry"
    GIVE_UP = "give_up"


def decide(auto_reconnect: bool, manual_close: bool, attempt_count: int, max_attempts: int) -> ReconnectDecision:
    if auto_reconnect and not manual_close and attempt_count < max_attempts:
        return ReconnectDecision.RETRY
    return ReconnectDecision.GIVE_UP


@dataclass
class ReconnectPolicy:
    auto_reconnect: bool = True
    max_attempts: int = 10
    delay_ms: int = 5000
    attempts: int = 0

    @property
    def delay_s(self) -> float:
        return self.delay_ms / 1000.0

    def decide(self, manual_close: bool = False) -> ReconnectDecision:
        return decide(self.auto_reconnect, manual_close, self.attempts, self.max_attempts)

    def record_attempt(self) -> int:
        self.attempts += 1
        return self.attempts

    def reset(self) -> None:
        self.attempts = 0
