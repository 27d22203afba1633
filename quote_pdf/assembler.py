"""Placeholder substitution and conditional sections for the HTML template.

The template language has two constructs:

* ``{{KEY}}`` is replaced by ``fields[KEY]``. Unknown keys are left verbatim.
* ``<!--IF:NAME-->...<!--ENDIF:NAME-->`` keeps its inner content when
  ``flags[NAME]`` is true and drops the whole span otherwise.

Both are resolved in a single scan of the template. Placeholders inside a
dropped section are never evaluated, and substituted values are never
rescanned, so a value containing ``{{...}}`` or a marker is inserted as-is.
Markers whose name is not in ``flags`` are passed through untouched, as is
an ENDIF with no open section of that name. An ENDIF closes the nearest open
section of its name; sections opened inside it and left unclosed are kept as
literal text within it, so they are dropped along with it when it is hidden.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import List, Mapping

TOKEN_RE = re.compile(
    r"\{\{(?P<key>[A-Za-z0-9_]+)\}\}"
    r"|<!--(?P<kind>IF|ENDIF):(?P<name>[A-Za-z0-9_]+)-->"
)


@dataclass
class _Section:
    name: str
    visible: bool
    marker: str
    parts: List[str] = field(default_factory=list)


def assemble(template: str, fields: Mapping[str, str], flags: Mapping[str, bool]) -> str:
    root: List[str] = []
    stack: List[_Section] = []

    def emit(text: str) -> None:
        if text:
            (stack[-1].parts if stack else root).append(text)

    position = 0
    for match in TOKEN_RE.finditer(template):
        emit(template[position:match.start()])
        position = match.end()

        key = match.group("key")
        kind = match.group("kind")
        name = match.group("name")

        if key is not None:
            emit(str(fields[key]) if key in fields else match.group(0))
        elif kind == "IF" and name in flags:
            stack.append(_Section(name, bool(flags[name]), match.group(0)))
        elif kind == "ENDIF" and any(section.name == name for section in stack):
            while stack[-1].name != name:
                inner = stack.pop()
                emit(inner.marker + "".join(inner.parts))
            section = stack.pop()
            if section.visible:
                emit("".join(section.parts))
        else:
            emit(match.group(0))
    emit(template[position:])

    # Unterminated sections are emitted literally, outermost last.
    while stack:
        section = stack.pop()
        emit(section.marker + "".join(section.parts))

    return "".join(root)
