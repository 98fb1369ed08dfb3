"""A command that prints a person built from its arguments."""

from __future__ import annotations

import logging
import os
import re
import sys
from typing import Optional, Sequence

from .person import Person

_log = logging.getLogger(__name__)

_LEADING_INT = re.compile(r"\s*([+-]?\d+)")


def _atoi(text: str) -> int:
    match = _LEADING_INT.match(text)
    return int(match.group(1)) if match else 0


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Print the name and number given as arguments."""
    program = sys.argv[0] if sys.argv and sys.argv[0] else "hello"
    args = list(sys.argv[1:] if argv is None else argv)
    _log.debug("argv[0] = %s", program)

    if args and args[0] == "-h":
        print(f"usage: {os.path.basename(program)} name number", file=sys.stderr)
        return 0

    person = Person(
        name=args[0] if args else "",
        number=_atoi(args[1]) if len(args) > 1 else -1,
    )
    size = len(person.name.encode("utf-8", "surrogateescape"))
    print(f'person\'s name:   "{person.name}" ({size} bytes)')
    print(f"person's number: {person.number}")
    return 0


if __name__ == "__main__":
    sys.exit(main())