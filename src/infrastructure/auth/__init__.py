from src.infrastructure.auth.http import HttpAuthProvider
from src.infrastructure.auth.static import StaticTokenAuthProvider

__all__ = ["HttpAuthProvider", "StaticTokenAuthProvider"]
