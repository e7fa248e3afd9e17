"""Repository URL normalization."""

from __future__ import annotations


def normalize_repo_url(url: str) -> str:
    """Return the canonical https form of a repository URL.

    ``git@host:owner/repo.git`` becomes ``https://host/owner/repo``; trailing
    slashes and a ``.git`` suffix are removed.
    """

    normalized = url.strip().rstrip("/")
    if normalized.startswith("git@") and ":" in normalized:
        host, _, path = normalized[len("git@"):].partition(":")
        normalized = f"https://{host}/{path}"
    if normalized.endswith(".git"):
        normalized = normalized[: -len(".git")]
    return normalized.rstrip("/")


def repo_url_variants(url: str) -> list[str]:
    """URLs to try, in order, when looking up a registered codebase."""

    normalized = normalize_repo_url(url)
    return [normalized, f"{normalized}.git"]


def repo_name_from_url(url: str) -> str:
    """Derive a codebase name from the last path segment of ``url``."""

    segment = normalize_repo_url(url).rsplit("/", 1)[-1]
    return segment or "unknown"


__all__ = ["normalize_repo_url", "repo_name_from_url", "repo_url_variants"]
