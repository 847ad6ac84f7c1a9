"""Extraction of inline properties from note content.

The store only needs (name, value, weight) triples out of content; anything
that renders content lives outside this package. A parser is any object
with a ``parse(content) -> List[ParsedProperty]`` method.
"""
import re
from typing import List, NamedTuple, Protocol


class ParsedProperty(NamedTuple):
    name: str
    value: str
    weight: int


class PropertyParser(Protocol):
    def parse(self, content: str) -> List[ParsedProperty]:
        ...


class BracePropertyParser:
    """Parser for ``{name::value}`` markup.

    The number of colons is the weight: ``{status::done}`` is weight 2,
    ``{token:::abc}`` weight 3 and ``{seen::::today}`` weight 4.
    """

    PATTERN = re.compile(r"\{([a-zA-Z0-9_.-]+)(:{2,})([^}]+)\}")

    def parse(self, content: str) -> List[ParsedProperty]:
        """Return the properties in content, in order of appearance."""
        if not content:
            return []
        parsed = []
        for match in self.PATTERN.finditer(content):
            name, colons, value = match.groups()
            parsed.append(ParsedProperty(name.strip(), value.strip(), len(colons)))
        return parsed
