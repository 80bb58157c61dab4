"""Field path model: dot-notation paths parsed into typed segments."""

from typing import Literal

from pydantic import BaseModel, ConfigDict


class PropertySegment(BaseModel):
    """A named property step, e.g. `details` in `details.width`."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["property"] = "property"
    name: str

    def __str__(self) -> str:
        return self.name


class IndexSegment(BaseModel):
    """An array element step, e.g. `0` in `images.0.url`."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["index"] = "index"
    index: int

    def __str__(self) -> str:
        return str(self.index)


PathSegment = PropertySegment | IndexSegment


class FieldPath(BaseModel):
    """A parsed field path.

    Paths are parsed once when the builder receives them, so the compiler works on
    typed segments instead of re-splitting strings.

    Attributes:
        segments: Ordered segments. Always starts with a PropertySegment.
    """

    model_config = ConfigDict(frozen=True)

    segments: tuple[PathSegment, ...]

    @classmethod
    def parse(cls, raw: str) -> "FieldPath":
        """Parse a dot-notation string into a FieldPath.

        Args:
            raw (str): The path, e.g. "metadata.tags.0.name".

        Returns:
            FieldPath: The parsed path.

        Raises:
            ValueError: If the path is empty, has an empty segment, or starts with an index.
        """
        if not isinstance(raw, str) or not raw.strip():
            raise ValueError("Field path must be a non-empty string.")
        segments: list[PathSegment] = []
        for part in raw.strip().split("."):
            part = part.strip()
            if not part:
                raise ValueError(f"Field path '{raw}' contains an empty segment.")
            if part.isdigit():
                if segments and isinstance(segments[-1], IndexSegment):
                    raise ValueError(f"Field path '{raw}' indexes the same list twice in a row.")
                segments.append(IndexSegment(index=int(part)))
            else:
                segments.append(PropertySegment(name=part))
        if not isinstance(segments[0], PropertySegment):
            raise ValueError(f"Field path '{raw}' must start with a property name, not an index.")
        return cls(segments=tuple(segments))

    @property
    def root(self) -> str:
        return self.segments[0].name

    def property_names(self) -> list[str]:
        """Return the property names only, skipping index segments."""
        return [s.name for s in self.segments if isinstance(s, PropertySegment)]

    def __str__(self) -> str:
        return ".".join(str(s) for s in self.segments)
