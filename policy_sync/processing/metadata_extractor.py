"""Identity and title extraction for policy documents."""

import re

import structlog

from policy_sync.diagnostics import DiagnosticChannel, DiagnosticKind
from policy_sync.models.config import DocumentConfig
from policy_sync.models.document import Document

log = structlog.stdlib.get_logger()

# '#' at the start of a line followed by whitespace; '## x' does not match.
LEVEL_ONE_HEADING = re.compile(r"^#[ \t]+(.+?)[ \t]*$", re.MULTILINE)


def filename_of(path: str) -> str:
    """Final segment of a '/'-separated path."""
    return path.rsplit("/", 1)[-1]


class MetadataExtractor:
    """Derives a document's identity and title from its path and content.

    Identity is the filename with the document suffix removed, so
    ``"a/b/C.md"``, ``"C.md"`` and ``"a/b/C.MD"`` all map to ``"C"``.
    Title is the first level-1 heading, falling back to the identity.
    """

    def __init__(
        self,
        config: DocumentConfig | None = None,
        diagnostics: DiagnosticChannel | None = None,
    ):
        """
        Initialize metadata extractor.

        Args:
            config: Suffix and excluded filenames (defaults to .md / README.md)
            diagnostics: Channel that receives fallback-title warnings
        """
        self._config = config or DocumentConfig()
        self._suffix = self._config.suffix.lower()
        self._excluded = {name.lower() for name in self._config.excluded_filenames}
        self._diagnostics = diagnostics or DiagnosticChannel()

    def is_eligible(self, path: str) -> bool:
        """
        Check whether a path names a policy document.

        Args:
            path: Path within the source repository

        Returns:
            False for paths without the document suffix and for excluded
            filenames (e.g. README.md) in any directory, True otherwise
        """
        filename = filename_of(path).lower()
        if not filename.endswith(self._suffix):
            return False
        return filename not in self._excluded

    def extract_identity(self, path: str) -> str:
        """
        Derive the identity for a path.

        Args:
            path: Path within the source repository

        Returns:
            Final path segment without the document suffix (case-insensitive)
        """
        filename = filename_of(path)
        if filename.lower().endswith(self._suffix):
            return filename[: len(filename) - len(self._suffix)]
        return filename

    @staticmethod
    def extract_title(content: str) -> str:
        """
        Find the first level-1 heading.

        Returns:
            Heading text with surrounding whitespace removed, or "" if none
        """
        for match in LEVEL_ONE_HEADING.finditer(content):
            title = match.group(1).strip()
            if title:
                return title
        return ""

    def extract(self, path: str, content: str, version_token: str) -> Document:
        """
        Build a Document from a path, its content, and its version token.

        Args:
            path: Path within the source repository
            content: Full document text
            version_token: Source-assigned content hash

        Returns:
            Immutable Document
        """
        identity = self.extract_identity(path)
        title = self.extract_title(content)

        if not title:
            self._diagnostics.emit(
                DiagnosticKind.FALLBACK_TITLE,
                "No level-1 heading found, using identity as title",
                identity=identity,
                path=path,
            )
            title = identity

        log.debug("document_extracted", identity=identity, path=path, title=title)

        return Document(
            identity=identity,
            title=title,
            body=content,
            version_token=version_token,
            path=path,
        )
