"""Type aliases and payload types used throughout the project."""
from dataclasses import asdict, dataclass
from typing import Any, Dict, Literal, Optional, TypedDict

ProgressEventType = Literal['progress', 'completed', 'failed']


@dataclass
class ProgressEvent:
    """Progress payload handed to observers."""
    event: ProgressEventType
    progress: int
    total_chunks: int
    uploaded_chunks: int
    file_name: str
    file_size: int
    chunk_size: int
    message: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class AssemblyResult:
    """Outcome of a successful reassembly."""
    path: str
    size: int
    checksum: str
    url: Optional[str] = None


class InitializeResult(TypedDict):
    upload_id: str
    chunk_size: int
    total_chunks: int


class ChunkResult(TypedDict):
    upload_id: str
    index: int
    progress: int
    uploaded_chunks: int
    total_chunks: int
    duplicate: bool


class FinalizeResult(TypedDict, total=False):
    success: bool
    file_name: str
    message: str
    path: Optional[str]
    url: Optional[str]
    size: Optional[int]
    checksum: Optional[str]


class CancelResult(TypedDict):
    success: bool
    message: str
