from src.infrastructure.quotes.in_memory import InMemoryQuoteWorkflowRepository
from src.infrastructure.quotes.postgres import PostgresQuoteWorkflowRepository

__all__ = ["InMemoryQuoteWorkflowRepository", "PostgresQuoteWorkflowRepository"]
