from __future__ import annotations

from enum import StrEnum

from repo2txt.models import extension_of


class ProviderType(StrEnum):
    """Closed set of repository backends."""

    GITHUB = "github"
    GITLAB = "gitlab"
    AZURE = "azure"
    LOCAL = "local"
    ARCHIVE = "archive"


EXT2LANG: dict[str, str] = {
    ".bash": "bash",
    ".c": "c",
    ".cpp": "cpp",
    ".cs": "csharp",
    ".css": "css",
    ".go": "go",
    ".h": "c",
    ".hpp": "cpp",
    ".html": "html",
    ".java": "java",
    ".js": "javascript",
    ".json": "json",
    ".jsx": "javascript",
    ".kt": "kotlin",
    ".md": "markdown",
    ".php": "php",
    ".py": "python",
    ".rb": "ruby",
    ".rs": "rust",
    ".scss": "scss",
    ".sh": "bash",
    ".sql": "sql",
    ".swift": "swift",
    ".toml": "toml",
    ".ts": "typescript",
    ".tsx": "typescript",
    ".xml": "xml",
    ".yaml": "yaml",
    ".yml": "yaml",
}

COMMON_EXTENSIONS: frozenset[str] = frozenset(
    {".js", ".ts", ".jsx", ".tsx", ".py", ".java", ".cpp", ".html", ".css"},
)

VCS_DIRS: frozenset[str] = frozenset({".git", ".hg", ".svn"})

GITHUB_API_BASE = "https://api.github.com"
GITLAB_API_BASE = "https://gitlab.com/api/v4"
AZURE_API_VERSION = "7.1"

TOKEN_PAGES: dict[ProviderType, str] = {
    ProviderType.GITHUB: "https://github.com/settings/tokens/new?description=repo2txt&scopes=repo",
    ProviderType.GITLAB: "https://gitlab.com/-/profile/personal_access_tokens",
    ProviderType.AZURE: "https://dev.azure.com/_usersSettings/tokens",
}


def guess_language(path: str) -> str:
    """Get the fenced code block language for a repository path.

    Known extensions map to their usual highlighter name; anything else falls back
    to the bare extension (without the dot), which is empty for extensionless files.

    Args:
        path (str): repository-relative path.

    Returns:
        str: language tag for a fenced code block.
    """
    ext = extension_of(path).lower()
    return EXT2LANG.get(ext, ext.lstrip("."))
