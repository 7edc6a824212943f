"""Settings of the order message consumer."""

from dataclasses import dataclass, field
from typing import List

FIRST_OFFSET = -2
"""Start from the oldest message still kept by the broker."""

LAST_OFFSET = -1
"""Start from messages published after the consumer joined."""


@dataclass
class ReaderConfig:
    """Settings handed to the message reader.

    A commit interval of zero means offsets are committed by hand, only
    after a message was handled.
    """

    brokers: List[str] = field(default_factory=list)
    group_id: str = ""
    topic: str = ""
    start_offset: int = LAST_OFFSET
    commit_interval: float = 0.0


@dataclass
class ConsumerConfig:
    """Connection and retry settings of the consumer; times are in seconds."""

    brokers: List[str] = field(default_factory=list)
    topic: str = ""
    group_id: str = ""
    start_offset: str = ""
    process_timeout: float = 0.0
    retry_initial: float = 0.0
    retry_max: float = 0.0

    def reader_config(self) -> ReaderConfig:
        """Build the reader settings with manual commits.

        ``start_offset`` is matched case-insensitively after trimming;
        only ``first`` selects the oldest offset, anything else the newest.
        """
        if self.start_offset.strip().lower() == "first":
            offset = FIRST_OFFSET
        else:
            offset = LAST_OFFSET
        return ReaderConfig(
            brokers=list(self.brokers),
            group_id=self.group_id,
            topic=self.topic,
            start_offset=offset,
            commit_interval=0.0,
        )