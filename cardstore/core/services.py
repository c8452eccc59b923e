"""
Process-wide wiring: one database handle and one vector index, built at start and passed around explicitly.
"""

from dataclasses import dataclass
from typing import Optional

from . import config
from .coordinator import ConsistencyCoordinator
from .dao import DAO
from .db import Database, open_database
from .heartbeat import Heartbeat
from .locks import DeckLocks
from .reconcile import Reconciler
from .search_service import SearchExecutor
from ..util.logging import logger
from ..vector.adapter import IVectorIndex

RECONCILE_TASK = "reconcile"


@dataclass
class Services:
    db: Database
    dao: DAO
    vector_index: IVectorIndex
    locks: DeckLocks
    coordinator: ConsistencyCoordinator
    search: SearchExecutor
    reconciler: Reconciler
    heartbeat: Heartbeat

    def start_reconciliation(self, interval_sec: int = None):
        """Run reconciliation periodically on the heartbeat thread."""
        self.heartbeat.register_task(RECONCILE_TASK, interval_sec or config.get_reconcile_interval(), self.reconciler.run)
        self.heartbeat.start()

    def close(self):
        if self.heartbeat.running:
            self.heartbeat.stop()
        self.db.close()
        logger.info("Services closed")


def build_services(db_path: Optional[str] = None, vector_index: Optional[IVectorIndex] = None,
                   retry_attempts: Optional[int] = None, retry_delay: Optional[float] = None) -> Services:
    """Construct every component around one database handle and one vector index."""
    db = open_database(db_path)
    dao = DAO(db)
    if vector_index is None:
        vector_index = config.get_vector_index()
    locks = DeckLocks()
    coordinator = ConsistencyCoordinator(
        dao,
        vector_index,
        locks,
        retry_attempts=config.INDEX_RETRY_ATTEMPTS if retry_attempts is None else retry_attempts,
        retry_delay=config.INDEX_RETRY_DELAY_SEC if retry_delay is None else retry_delay,
    )
    search = SearchExecutor(dao, vector_index, default_k=config.DEFAULT_SEARCH_K)
    reconciler = Reconciler(dao, vector_index, coordinator)

    return Services(
        db=db,
        dao=dao,
        vector_index=vector_index,
        locks=locks,
        coordinator=coordinator,
        search=search,
        reconciler=reconciler,
        heartbeat=Heartbeat(),
    )
