from .filing_repository import InMemoryFilingRepository, SqlFilingRepository

__all__ = [
    "InMemoryFilingRepository",
    "SqlFilingRepository",
]
