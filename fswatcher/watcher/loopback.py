# fswatcher/watcher/loopback.py

"""
Attribute detected changes to the watcher itself or to the outside world
"""
import logging
from enum import Enum
from typing import Optional

from .events import ChangeRecord, Origin
from .ledger import SelfModificationLedger

logger = logging.getLogger(__name__)


class LoopbackPolicy(Enum):
    TAG = "tag"          # deliver self-caused changes as origin=internal
    DISCARD = "discard"  # drop self-caused changes


class LoopbackFilter:
    """
    Finalize raw records with an origin, reading only the ledger
    """

    def __init__(self, ledger: SelfModificationLedger,
                 policy: LoopbackPolicy = LoopbackPolicy.TAG):
        self.ledger = ledger
        self.policy = policy

    def apply(self, record: ChangeRecord) -> Optional[ChangeRecord]:
        """
        Args:
            record: Record fresh from the change detector

        Returns:
            The record tagged with its origin, or None when an internal
            change is discarded by policy
        """
        if self.ledger.was_self_modified(record.path):
            if self.policy is LoopbackPolicy.DISCARD:
                logger.debug(f"Discarding self-caused change: {record}")
                return None
            return record.with_origin(Origin.INTERNAL)

        return record.with_origin(Origin.EXTERNAL)
