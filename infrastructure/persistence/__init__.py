from infrastructure.persistence.sqlite_response_repository import SQLiteResponseRepository

__all__ = ["SQLiteResponseRepository"]
