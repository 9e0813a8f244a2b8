"""Normalised output of the discovery ingestors."""

import time
from dataclasses import dataclass, field
from enum import Enum


class EventKind(Enum):
    DISCOVERED = "discovered"  # new candidate: gate, then enroll
    DESIGNATED = "designated"  # signal channel confirmed this is the token to hold


@dataclass(frozen=True)
class DiscoveryEvent:
    address: str
    kind: EventKind = EventKind.DISCOVERED
    source: str = ""  # "stream" | "signal"
    signature: str | None = None
    channel: str | None = None
    received_at: float = field(default_factory=time.time)
