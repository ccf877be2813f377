from pathlib import Path
from typing import Tuple

from jinja2 import Environment, FileSystemLoader

from core.models import ChangeSet

# Resolve template directory relative to this file
TEMPLATE_DIR = Path(__file__).resolve().parent / "templates"
env = Environment(loader=FileSystemLoader(str(TEMPLATE_DIR)))

CHANGE_TITLE = "OpenRouter free models update"
ERROR_TITLE = "OpenRouter Monitor Error"


def change_category(changes: ChangeSet) -> str:
    if changes.added and changes.removed:
        return "update"
    return "added" if changes.added else "removed"


def build_change_message(changes: ChangeSet) -> Tuple[str, str]:
    template = env.get_template("change_body.txt")
    body = template.render(
        added=[it.display_name for it in changes.added],
        removed=[it.display_name for it in changes.removed],
    )
    return CHANGE_TITLE, body.strip()


def build_error_message(error: str) -> Tuple[str, str]:
    template = env.get_template("error_body.txt")
    return ERROR_TITLE, template.render(error=error).strip()
