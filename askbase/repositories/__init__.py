"""Repositories package."""

from askbase.repositories.knowledge import KnowledgeRepository, knowledge_repository

__all__ = [
    "KnowledgeRepository",
    "knowledge_repository",
]
