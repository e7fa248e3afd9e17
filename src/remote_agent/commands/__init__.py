"""Slash-command tokenizer, router and template loading."""

from .handler import CommandHandler, HELP_TEXT, NO_CODEBASE_MESSAGE
from .parser import ParsedCommand, parse_command, tokenize
from .templates import TemplateLoadError, detect_command_folder, load_command_templates

__all__ = [
    "CommandHandler",
    "HELP_TEXT",
    "NO_CODEBASE_MESSAGE",
    "ParsedCommand",
    "TemplateLoadError",
    "detect_command_folder",
    "load_command_templates",
    "parse_command",
    "tokenize",
]
