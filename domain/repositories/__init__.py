from domain.repositories.response_repository import ResponseRepository

__all__ = ["ResponseRepository"]
