"""Base model shared by configuration records.

Every configuration record inherits from :class:`DwsBaseModel` which
provides:

* frozen instances (records are loaded once and never mutated),
* whitespace stripping on string fields,
* ``extra="forbid"`` so typos in configuration files surface as errors.
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict


class DwsBaseModel(BaseModel):
    """Immutable, strict base for configuration records."""

    model_config = ConfigDict(
        frozen=True,
        extra="forbid",
        validate_default=True,
        str_strip_whitespace=True,
        populate_by_name=True,
    )
