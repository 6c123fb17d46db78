"""URI templates for resource addressing.

Supports the simple RFC 6570 forms:

- ``{name}``  matches one path segment (one or more characters, no ``/``)
- ``{+name}`` matches one or more characters including ``/``

Templates compile to an anchored regex for matching, and to an atom sequence
for the overlap test the registry uses to refuse ambiguous registrations.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from functools import cached_property

_VAR = re.compile(r"\{(\+?)([A-Za-z_][A-Za-z0-9_]*)\}")

# Atom kinds for overlap analysis
_CHAR, _ONE, _LOOP = 0, 1, 2


@dataclass(frozen=True, slots=True)
class _Atom:
    kind: int
    char: str = ""
    slash: bool = False  # wildcard may consume '/'

    def accepts(self, c: str) -> bool:
        if self.kind == _CHAR:
            return c == self.char
        return self.slash or c != "/"


def _compatible(a: _Atom, b: _Atom) -> bool:
    """Whether some single character is accepted by both atoms."""
    if a.kind == _CHAR:
        return b.accepts(a.char)
    if b.kind == _CHAR:
        return a.accepts(b.char)
    return True  # two wildcards always share e.g. 'x'


@dataclass(frozen=True)
class UriTemplate:
    """Parsed URI template.

    Example:
        >>> t = UriTemplate.parse("docs://{project}/pages/{+path}")
        >>> t.match("docs://acme/pages/a/b.md")
        {'project': 'acme', 'path': 'a/b.md'}
        >>> t.literal_prefix
        'docs://'
    """

    raw: str
    variables: tuple[str, ...] = field(default=())
    _parts: tuple[tuple[str, str, bool], ...] = field(default=(), repr=False)  # (literal, var, reserved)

    @classmethod
    def parse(cls, raw: str) -> UriTemplate:
        if not raw:
            raise ValueError("URI template cannot be empty")
        parts: list[tuple[str, str, bool]] = []
        names: list[str] = []
        pos = 0
        for m in _VAR.finditer(raw):
            literal = raw[pos:m.start()]
            if "{" in literal or "}" in literal:
                raise ValueError(f"Malformed URI template: {raw!r}")
            name = m.group(2)
            if name in names:
                raise ValueError(f"Duplicate variable '{name}' in URI template {raw!r}")
            if parts and not literal:
                raise ValueError(f"Adjacent variables are ambiguous in URI template {raw!r}")
            names.append(name)
            parts.append((literal, name, bool(m.group(1))))
            pos = m.end()
        tail = raw[pos:]
        if "{" in tail or "}" in tail:
            raise ValueError(f"Malformed URI template: {raw!r}")
        if tail:
            parts.append((tail, "", False))
        return cls(raw=raw, variables=tuple(names), _parts=tuple(parts))

    @cached_property
    def pattern(self) -> re.Pattern[str]:
        regex = "".join(
            re.escape(literal) + (f"(?P<{var}>{'.+' if reserved else '[^/]+'})" if var else "")
            for literal, var, reserved in self._parts
        )
        return re.compile(f"^{regex}$", re.DOTALL)

    @property
    def literal_prefix(self) -> str:
        """Literal text before the first variable (the whole template if none)."""
        return self._parts[0][0] if self._parts else ""

    @property
    def is_literal(self) -> bool:
        return not self.variables

    def match(self, uri: str) -> dict[str, str] | None:
        """Return variable bindings if ``uri`` matches, else None."""
        m = self.pattern.match(uri)
        return m.groupdict() if m else None

    def expand(self, **values: str) -> str:
        """Inverse of match: substitute variables into the template."""
        missing = [v for v in self.variables if v not in values]
        if missing:
            raise KeyError(f"Missing template variables: {', '.join(missing)}")
        return "".join(literal + (str(values[var]) if var else "") for literal, var, _ in self._parts)

    @cached_property
    def _atoms(self) -> tuple[_Atom, ...]:
        atoms: list[_Atom] = []
        for literal, var, reserved in self._parts:
            atoms.extend(_Atom(_CHAR, c) for c in literal)
            if var:
                # one-or-more = one mandatory char followed by zero-or-more
                atoms.append(_Atom(_ONE, slash=reserved))
                atoms.append(_Atom(_LOOP, slash=reserved))
        return tuple(atoms)

    def overlaps(self, other: UriTemplate) -> bool:
        """Whether at least one concrete URI matches both templates.

        Explores the product of both atom sequences; every state is a pair of
        positions, so the search is bounded by len(a) * len(b).
        """
        a, b = self._atoms, other._atoms
        end = (len(a), len(b))
        seen: set[tuple[int, int]] = set()
        stack = [(0, 0)]
        while stack:
            state = stack.pop()
            if state in seen:
                continue
            seen.add(state)
            if state == end:
                return True
            i, j = state
            if i < len(a) and a[i].kind == _LOOP:
                stack.append((i + 1, j))
            if j < len(b) and b[j].kind == _LOOP:
                stack.append((i, j + 1))
            if i < len(a) and j < len(b) and _compatible(a[i], b[j]):
                stack.append((i if a[i].kind == _LOOP else i + 1, j if b[j].kind == _LOOP else j + 1))
        return False

    def __str__(self) -> str:
        return self.raw
