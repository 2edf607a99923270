"""Per-site audit state: the dismissal ledger and the cached latest result."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Set

from ..logging_config import get_logger
from .presentation import PresentedIssue

logger = get_logger(__name__)


@dataclass
class SiteAuditState:
    """Mutable state owned by one site.

    ``dismissed_keys`` is only ever mutated with single set operations, so
    concurrent dismiss/restore calls on the event loop need no extra lock.
    """
    site_id: str
    dismissed_keys: Set[str] = field(default_factory=set)
    dismissals_loaded: bool = False
    last_issues: Optional[List[PresentedIssue]] = None
    last_score: Optional[int] = None
    last_audit_time: Optional[datetime] = None

    def hydrate(self, keys: Iterable[str]) -> None:
        self.dismissed_keys.update(keys)
        self.dismissals_loaded = True

    def dismiss(self, key: str) -> bool:
        """Returns True when the key was not already dismissed."""
        if key in self.dismissed_keys:
            return False
        self.dismissed_keys.add(key)
        return True

    def restore(self, key: str) -> bool:
        if key not in self.dismissed_keys:
            return False
        self.dismissed_keys.discard(key)
        return True

    def clear(self) -> None:
        self.dismissed_keys.clear()

    def is_dismissed(self, issue: PresentedIssue) -> bool:
        return issue.key in self.dismissed_keys

    def active_issues(self) -> List[PresentedIssue]:
        return [i for i in self.last_issues or [] if not self.is_dismissed(i)]

    def dismissed_issues(self) -> List[PresentedIssue]:
        return [i for i in self.last_issues or [] if self.is_dismissed(i)]

    def remember(self, issues: List[PresentedIssue], score: int, when: datetime) -> None:
        self.last_issues = list(issues)
        self.last_score = score
        self.last_audit_time = when


class SiteStateRegistry:
    """Map of site ID to its state, created on first use."""

    def __init__(self):
        self._states: Dict[str, SiteAuditState] = {}

    def get(self, site_id: str) -> SiteAuditState:
        state = self._states.get(site_id)
        if state is None:
            state = self._states.setdefault(site_id, SiteAuditState(site_id=site_id))
        return state

    def evict(self, site_id: Optional[str] = None) -> None:
        """Drop cached state for one site, or for every site."""
        if site_id is None:
            self._states.clear()
        else:
            self._states.pop(site_id, None)
        logger.info(f"Audit cache cleared for {site_id or 'all sites'}")
