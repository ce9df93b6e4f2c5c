"""Exception hierarchy for the knowledge base."""

from pathlib import Path


class KnowledgeBaseError(Exception):
    """Root error for everything raised by pkb."""

    def __init__(self, message: str, cause: BaseException | None = None):
        super().__init__(message)
        self.cause = cause


class FileProcessingError(KnowledgeBaseError):
    """A source file is missing, unreadable, unsupported or corrupt."""

    def __init__(self, message: str, path: str | Path, cause: BaseException | None = None):
        super().__init__(f"Error processing file {path}: {message}", cause)
        self.path = str(path)


class DatabaseError(KnowledgeBaseError):
    """Schema or transaction failure in the metadata store."""

    def __init__(self, message: str, cause: BaseException | None = None):
        super().__init__(f"Database error: {message}", cause)


class EmbeddingError(KnowledgeBaseError):
    """The embedding collaborator failed or returned an unusable vector."""

    def __init__(self, message: str, cause: BaseException | None = None):
        super().__init__(f"Embedding error: {message}", cause)
