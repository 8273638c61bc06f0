"""
Data model shared by the orchestrator, the stores and the HTTP layer.
"""
import enum
import json
from dataclasses import dataclass, asdict
from typing import Optional


class Outcome(str, enum.Enum):
    ready = "ready"
    queued = "queued"
    in_progress = "in_progress"
    unsupported_toolchain = "unsupported_toolchain"
    repo_not_found = "repo_not_found"
    unknown_error = "unknown_error"
    no_tests_found = "no_tests_found"


@dataclass(frozen=True)
class CoverageJobKey:
    """Identity of one coverage job: a repository tested with a toolchain."""

    repository: str
    tag: str

    def __str__(self):
        return f"{self.repository}-{self.tag}"

    def to_message(self):
        return json.dumps({'repo': self.repository, 'tag': self.tag}, sort_keys=True)

    @classmethod
    def from_message(cls, message):
        if isinstance(message, bytes):
            message = message.decode('utf-8')
        data = json.loads(message)
        return cls(repository=data['repo'], tag=data['tag'])


@dataclass(frozen=True)
class CoverageResult:
    repository: str
    tag: str
    coverage_text: str
    has_output: bool = False
    error: Optional[Outcome] = None

    @property
    def key(self):
        return CoverageJobKey(self.repository, self.tag)

    def to_dict(self):
        """Render the result with the field names used by the JSON API."""
        return {
            'Repo': self.repository,
            'Tag': self.tag,
            'Cover': self.coverage_text,
            'Output': self.has_output,
        }

    def to_json(self):
        data = asdict(self)
        data['error'] = self.error.value if self.error else None
        return json.dumps(data, sort_keys=True)

    @classmethod
    def from_json(cls, raw):
        data = json.loads(raw)
        if not isinstance(data, dict):
            raise ValueError(f"Expected a JSON object, got {type(data).__name__}")
        error = data.get('error')
        return cls(
            repository=data['repository'],
            tag=data['tag'],
            coverage_text=data.get('coverage_text', ''),
            has_output=bool(data.get('has_output', False)),
            error=Outcome(error) if error else None,
        )
