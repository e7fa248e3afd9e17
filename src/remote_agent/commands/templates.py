"""Command template loading from markdown files with YAML front matter."""

from __future__ import annotations

from pathlib import Path

import yaml

from ..models import CommandTemplate

# Checked in this order when a repository is cloned or linked.
COMMAND_FOLDERS = (".claude/commands", ".agents/commands")

_FRONT_MATTER_DELIMITER = "---"


class TemplateLoadError(RuntimeError):
    """Raised when one or more template files cannot be parsed."""


def detect_command_folder(cwd: str | Path) -> str | None:
    """Return the first conventional command folder present under ``cwd``."""

    base = Path(cwd)
    for folder in COMMAND_FOLDERS:
        if (base / folder).is_dir():
            return folder
    return None


def read_front_matter(content: str) -> dict:
    """Parse the ``---`` delimited YAML header of a markdown document."""

    lines = content.splitlines()
    if not lines or lines[0].strip() != _FRONT_MATTER_DELIMITER:
        return {}
    for index, line in enumerate(lines[1:], start=1):
        if line.strip() == _FRONT_MATTER_DELIMITER:
            document = yaml.safe_load("\n".join(lines[1:index]))
            return document if isinstance(document, dict) else {}
    return {}


def load_template(path: Path, base: Path) -> CommandTemplate:
    try:
        front_matter = read_front_matter(path.read_text(encoding="utf-8"))
    except yaml.YAMLError as exc:
        raise TemplateLoadError(f"Failed to parse front matter in {path.name}: {exc}") from exc
    description = front_matter.get("description")
    return CommandTemplate(
        path=path.relative_to(base).as_posix(),
        description=str(description).strip() if description else None,
    )


def load_command_templates(folder: Path, base: Path) -> dict[str, CommandTemplate]:
    """Load every ``*.md`` template in ``folder``, keyed by file stem.

    Paths are stored relative to ``base`` (the codebase working directory).
    """

    if not folder.is_dir():
        raise TemplateLoadError(f"Folder not found: {folder}")

    templates: dict[str, CommandTemplate] = {}
    errors: list[str] = []
    for path in sorted(folder.glob("*.md")):
        try:
            templates[path.stem] = load_template(path, base)
        except TemplateLoadError as exc:
            errors.append(str(exc))

    if errors:
        raise TemplateLoadError("; ".join(errors))
    return templates


__all__ = [
    "COMMAND_FOLDERS",
    "TemplateLoadError",
    "detect_command_folder",
    "load_command_templates",
    "load_template",
    "read_front_matter",
]
