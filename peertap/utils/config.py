"""TOML serialization of pydantic configuration models."""

from __future__ import annotations

import pathlib
import sys
from typing import BinaryIO
from typing import TypeVar

import tomli_w
from pydantic import BaseModel

if sys.version_info >= (3, 11):  # pragma: >=3.11 cover
    import tomllib
else:  # pragma: <3.11 cover
    import tomli as tomllib


ModelT = TypeVar('ModelT', bound=BaseModel)


def dumps(model: BaseModel, *, exclude_none: bool = True) -> str:
    """Render a config model as a TOML string.

    Args:
        model: Config model to render.
        exclude_none: Omit fields set to `None` (TOML has no null).
    """
    return tomli_w.dumps(model.model_dump(exclude_none=exclude_none))


def dump(
    model: BaseModel,
    fp: BinaryIO,
    *,
    exclude_none: bool = True,
) -> None:
    """Write a config model as TOML to a binary file object."""
    fp.write(dumps(model, exclude_none=exclude_none).encode())


def loads(model: type[ModelT], data: str) -> ModelT:
    """Validate a TOML string against a config model.

    Omitted fields take their defaults.

    Raises:
        pydantic.ValidationError: If the document does not match `model`.
    """
    return model.model_validate(tomllib.loads(data))


def load(model: type[ModelT], fp: BinaryIO) -> ModelT:
    """Validate TOML read from a binary file object against a config model."""
    return loads(model, fp.read().decode())


def read_toml(model: type[ModelT], filepath: str | pathlib.Path) -> ModelT:
    """Load a config model from a TOML file."""
    with open(filepath, 'rb') as f:
        return load(model, f)


def write_toml(model: BaseModel, filepath: str | pathlib.Path) -> None:
    """Write a config model to a TOML file, creating parent directories."""
    filepath = pathlib.Path(filepath)
    filepath.parent.mkdir(parents=True, exist_ok=True)
    with open(filepath, 'wb') as f:
        dump(model, f)
