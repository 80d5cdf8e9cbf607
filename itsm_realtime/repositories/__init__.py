from .memory import InMemoryNotificationRepository, InMemoryUserRepository

__all__ = ["InMemoryNotificationRepository", "InMemoryUserRepository"]
