from __future__ import annotations

import logging
import tomllib
from pathlib import Path

from pydantic import ValidationError

from .errors import MetadataInvalid, MetadataMissing
from .models import ModMetadata

logger = logging.getLogger(__name__)


def load_mod_metadata(directory: Path, metadata_filename: str = "mod.toml") -> ModMetadata:
    """Read and validate the metadata file at the root of a mod directory.

    Args:
        directory: Mod root directory.
        metadata_filename: Name of the TOML descriptor inside ``directory``.

    Returns:
        The validated metadata.

    Raises:
        MetadataMissing: If the descriptor does not exist.
        MetadataInvalid: If it is unreadable, not valid TOML, or fails validation.
    """
    path = directory / metadata_filename
    if not path.is_file():
        raise MetadataMissing(f"mod metadata missing: {path}")
    try:
        with path.open("rb") as handle:
            data = tomllib.load(handle)
    except (OSError, tomllib.TOMLDecodeError) as exc:
        raise MetadataInvalid(f"mod metadata at {path} is not readable TOML: {exc}") from exc
    try:
        metadata = ModMetadata.model_validate(data)
    except ValidationError as exc:
        raise MetadataInvalid(f"mod metadata at {path} failed validation: {exc}") from exc
    logger.debug("Loaded metadata for %s %s (%s)", metadata.name, metadata.version, metadata.uuid)
    return metadata
