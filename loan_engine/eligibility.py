"""
Eligibility Module

Consumer facts the lifecycle checks before a loan may be created. The
consumer and settlement-account records live outside the engine; callers
plug in an EligibilityChecker that reads them.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Dict, Optional
import threading


@dataclass(frozen=True)
class EligibilityFacts:
    """Read-only eligibility facts about one consumer"""
    consumer_id: str
    kyc_verified: bool
    active: bool
    has_verified_account: bool
    has_active_loan: bool = False


class EligibilityChecker(ABC):
    """Collaborator that supplies eligibility facts for a consumer"""

    @abstractmethod
    def is_eligible(self, consumer_id: str) -> Optional[EligibilityFacts]:
        """Return the consumer's facts, or None if the consumer is unknown"""
        pass


class InMemoryEligibilityChecker(EligibilityChecker):
    """Dictionary-backed checker for tests and embedded use"""

    def __init__(self, facts: Optional[Dict[str, EligibilityFacts]] = None):
        self._facts: Dict[str, EligibilityFacts] = dict(facts or {})
        self._lock = threading.Lock()

    def register(self, facts: EligibilityFacts) -> None:
        """Add or replace a consumer's facts"""
        with self._lock:
            self._facts[facts.consumer_id] = facts

    def is_eligible(self, consumer_id: str) -> Optional[EligibilityFacts]:
        with self._lock:
            return self._facts.get(consumer_id)
