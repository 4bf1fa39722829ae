"""
Repositories for email delivery.
"""

from .email_failure_repository import EmailFailureRepository, EmailFailureRepositoryError

__all__ = ["EmailFailureRepository", "EmailFailureRepositoryError"]
