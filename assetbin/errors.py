from dataclasses import dataclass, field
from typing import List

from assetbin.debug_console import DebugConsole


# ==========================================================================
# File-scoped failures. The batch driver logs these and moves on.
# ==========================================================================
class ExtractionError(Exception):
    """Base class for failures that skip the current source file."""


class SceneImportError(ExtractionError):
    """Source file could not be read or parsed into a scene."""


class MissingAnimationError(ExtractionError):
    """Scene has no animation stack to extract a clip from."""


class EmptyResultError(ExtractionError):
    """Extraction produced nothing worth writing."""


class OutputWriteError(ExtractionError):
    """Destination file could not be written."""


# ==========================================================================
# Resolution warnings. Never fatal, recorded per occurrence.
# ==========================================================================
class IssueKind:
    MissingBoneNode = "missing_bone_node"
    SingularMatrix = "singular_matrix"
    ZeroWeight = "zero_weight"


@dataclass
class ResolutionIssue:
    kind: str
    subject: str
    message: str


@dataclass
class IssueLog:
    """Collects resolution warnings for one source file."""
    issues: List[ResolutionIssue] = field(default_factory=list)

    def warn(self, kind: str, subject: str, message: str) -> ResolutionIssue:
        issue = ResolutionIssue(kind, subject, message)
        self.issues.append(issue)
        DebugConsole.warning(f"[{kind}] {subject}: {message}")
        return issue

    def of_kind(self, kind: str) -> List[ResolutionIssue]:
        return [i for i in self.issues if i.kind == kind]

    def __len__(self):
        return len(self.issues)
