"""Load kitty files into input records."""

import logging
from pathlib import Path

from pydantic import ValidationError

from .exceptions import InvalidInputError
from .models import KittyInput

logger = logging.getLogger(__name__)


def load_kitty(path: Path) -> KittyInput:
    """
    Load a kitty from a JSON file.

    Both the record-list form and the nested-mapping form are accepted; see
    ``KittyInput``.

    Args:
        path: Path to the kitty file

    Returns:
        Parsed kitty

    Raises:
        InvalidInputError: If the file is missing or not a valid kitty
    """
    try:
        raw = path.read_text(encoding="utf-8")
    except OSError as e:
        raise InvalidInputError(f"Cannot read kitty file {path}: {e}") from e

    try:
        kitty = KittyInput.model_validate_json(raw)
    except ValidationError as e:
        raise InvalidInputError(f"Malformed kitty file {path}:\n{e}") from e

    logger.info(
        f"Loaded kitty from {path}: {len(kitty.people)} people, "
        f"{len(kitty.gifts)} gifts, {len(kitty.contributions)} contributions"
    )
    return kitty
