"""Keeper discovery and selection.

Keepers are found through a paginated ``KeeperDirectory`` so discovery cost
is bounded by the sample size, not by the number of registered keepers.
Each candidate is scored as ``reputation_score * success_rate`` (success
rate defaults to 0.5 without history); inactive or slashed keepers are
dropped before scoring and ties go to the first keeper seen.
"""

import abc
import logging
from typing import List, Optional, Sequence

from tradeprivate.constants import KEEPER_SAMPLE_SIZE
from tradeprivate.exceptions import CounterpartyError, ValidationError
from tradeprivate.ledger.base import KeeperInfo, LedgerClient

logger = logging.getLogger(__name__)


class KeeperDirectory(abc.ABC):
    """Paginated source of keeper records."""

    @abc.abstractmethod
    async def count(self) -> int:
        """Number of listed keepers."""

    @abc.abstractmethod
    async def page(self, offset: int, limit: int) -> List[KeeperInfo]:
        """Up to ``limit`` keepers starting at ``offset``."""


class LedgerKeeperDirectory(KeeperDirectory):
    """Pages over the ledger's activeKeeperList and keepers mappings."""

    def __init__(self, client: LedgerClient):
        self.client = client

    async def count(self) -> int:
        return await self.client.call("active_keeper_count")

    async def page(self, offset: int, limit: int) -> List[KeeperInfo]:
        if offset < 0 or limit < 0:
            raise ValidationError("offset and limit must be non-negative")
        end = min(offset + limit, await self.count())
        keepers = []
        for index in range(offset, end):
            address = await self.client.call("active_keeper_list", index)
            keepers.append(await self.client.call("keepers", address))
        return keepers


class StaticKeeperDirectory(KeeperDirectory):
    """Directory over a fixed list, e.g. a cached snapshot."""

    def __init__(self, keepers: Sequence[KeeperInfo]):
        self._keepers = list(keepers)

    async def count(self) -> int:
        return len(self._keepers)

    async def page(self, offset: int, limit: int) -> List[KeeperInfo]:
        return self._keepers[offset:offset + limit]


class KeeperSelector:
    """Chooses the keeper an order is encrypted to."""

    def __init__(
        self,
        directory: KeeperDirectory,
        sample_size: int = KEEPER_SAMPLE_SIZE,
        page_size: int = 25,
    ):
        if sample_size < 1 or page_size < 1:
            raise ValidationError("sample_size and page_size must be positive")
        self.directory = directory
        self.sample_size = sample_size
        self.page_size = page_size

    @staticmethod
    def is_eligible(keeper: KeeperInfo) -> bool:
        return keeper.is_active and not keeper.is_slashed

    @staticmethod
    def score(keeper: KeeperInfo) -> float:
        return keeper.reputation_score * keeper.success_rate

    async def sample(self) -> List[KeeperInfo]:
        """Fetch at most ``sample_size`` keepers, page by page."""
        keepers: List[KeeperInfo] = []
        offset = 0
        while len(keepers) < self.sample_size:
            limit = min(self.page_size, self.sample_size - len(keepers))
            page = await self.directory.page(offset, limit)
            if not page:
                break
            keepers.extend(page)
            offset += len(page)
        return keepers

    def select(self, keepers: Sequence[KeeperInfo]) -> Optional[KeeperInfo]:
        """Highest scoring eligible keeper; the first one wins a tie."""
        best: Optional[KeeperInfo] = None
        best_score = float("-inf")
        for keeper in keepers:
            if not self.is_eligible(keeper):
                continue
            keeper_score = self.score(keeper)
            if keeper_score > best_score:
                best, best_score = keeper, keeper_score
        return best

    async def select_keeper(self) -> KeeperInfo:
        """
        Sample the directory and pick a keeper.

        Raises:
            CounterpartyError: If no eligible keeper is found
        """
        candidates = await self.sample()
        keeper = self.select(candidates)
        if keeper is None:
            raise CounterpartyError(
                f"No eligible keeper among {len(candidates)} candidates"
            )
        logger.info("Selected keeper %s (score %.2f)", keeper.address, self.score(keeper))
        return keeper
