from .repository import TOKEN_USERNAME, GitRepository, GitTransport

__all__ = ["TOKEN_USERNAME", "GitRepository", "GitTransport"]
