from dealroom.repositories.closure_requests import InMemoryClosureRequestsRepository, PostgresClosureRequestsRepository
from dealroom.repositories.complaints import InMemoryComplaintsRepository, PostgresComplaintsRepository
from dealroom.repositories.documents import InMemoryDocumentsRepository, PostgresDocumentsRepository
from dealroom.repositories.tasks import InMemoryTasksRepository, PostgresTasksRepository
from dealroom.repositories.transactions import InMemoryTransactionsRepository, PostgresTransactionsRepository

__all__ = [
    "InMemoryClosureRequestsRepository",
    "PostgresClosureRequestsRepository",
    "InMemoryComplaintsRepository",
    "PostgresComplaintsRepository",
    "InMemoryDocumentsRepository",
    "PostgresDocumentsRepository",
    "InMemoryTasksRepository",
    "PostgresTasksRepository",
    "InMemoryTransactionsRepository",
    "PostgresTransactionsRepository",
]
