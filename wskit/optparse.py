"""A reentrant getopt-style command-line option parser.

Options are described with a getopt option string: a character followed by
no colon takes no argument, by one colon a required argument, and by two
colons an optional argument. GNU-style long options are handled by
:meth:`OptParser.next_long`. By default non-option arguments are moved to
the end of ``argv`` as parsing goes on.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from enum import IntEnum

MSG_INVALID = "invalid option"
MSG_MISSING = "option requires an argument"
MSG_TOOMANY = "option takes no arguments"

_ERRMSG_SIZE = 64


class ArgType(IntEnum):
    """Whether an option takes an argument."""

    NONE = 0
    REQUIRED = 1
    OPTIONAL = 2


@dataclass(frozen=True)
class LongOption:
    """A long option, its optional one-character short form and argument type."""

    longname: str | None
    shortname: str | None = None
    argtype: ArgType = ArgType.NONE


class OptionError(Exception):
    """Raised for an unknown option or a missing or unexpected argument."""

    def __init__(self, message: str, option: str) -> None:
        self.message = message
        self.option = option
        self.errmsg = _format_error(message, option)
        super().__init__(self.errmsg)


def _format_error(message: str, data: str) -> str:
    prefix = f"{message} -- '"
    room = max(0, _ERRMSG_SIZE - 2 - len(prefix))
    return f"{prefix}{data[:room]}'"


def _is_dashdash(arg: str | None) -> bool:
    return arg == "--"


def _is_shortopt(arg: str | None) -> bool:
    return arg is not None and len(arg) >= 2 and arg[0] == "-" and arg[1] != "-"


def _is_longopt(arg: str | None) -> bool:
    return arg is not None and len(arg) >= 3 and arg.startswith("--")


def _argtype(optstring: str, char: str) -> ArgType | None:
    if char == ":":
        return None
    position = optstring.find(char)
    if position < 0:
        return None
    colons = optstring[position + 1 : position + 3]
    if colons == "::":
        return ArgType.OPTIONAL
    if colons.startswith(":"):
        return ArgType.REQUIRED
    return ArgType.NONE


def _optstring_from_long(longopts: Sequence[LongOption]) -> str:
    return "".join(
        opt.shortname + ":" * int(opt.argtype) for opt in longopts if opt.shortname
    )


def _long_matches(longname: str | None, option: str) -> bool:
    if longname is None:
        return False
    return option.partition("=")[0] == longname


def _long_argument(option: str) -> str | None:
    name, sep, value = option.partition("=")
    return value if sep else None


class OptParser:
    """Parser state over one argument vector.

    ``argv`` holds the program name first; parsing starts at index 1.
    After each option, ``optopt`` holds the option character and ``optarg``
    its argument, if any.
    """

    def __init__(self, argv: Sequence[str], permute: bool = True) -> None:
        self.argv: list[str] = list(argv)
        self.permute = permute
        self.optind = 1
        self.optopt: str | None = None
        self.optarg: str | None = None
        self.errmsg = ""
        self.longindex: int | None = None
        self._subopt = 0

    def _current(self, index: int | None = None) -> str | None:
        position = self.optind if index is None else index
        if 0 <= position < len(self.argv):
            return self.argv[position]
        return None

    def _fail(self, message: str, data: str) -> OptionError:
        error = OptionError(message, data)
        self.errmsg = error.errmsg
        return error

    def _permute(self, index: int) -> None:
        nonoption = self.argv.pop(index)
        self.argv.insert(self.optind - 1, nonoption)

    def _skip_nonoption(self, parse):
        index = self.optind
        self.optind += 1
        try:
            return parse()
        finally:
            self._permute(index)
            self.optind -= 1

    def next(self, optstring: str) -> str | None:
        """Return the next option character, or None when options are done.

        Raises OptionError for an unknown option or a missing argument.
        """
        option = self._current()
        self.errmsg = ""
        self.optopt = None
        self.optarg = None
        if option is None:
            return None
        if _is_dashdash(option):
            self.optind += 1
            return None
        if not _is_shortopt(option):
            if self.permute:
                return self._skip_nonoption(lambda: self.next(optstring))
            return None

        char = option[self._subopt + 1]
        rest = option[self._subopt + 2 :]
        self.optopt = char
        kind = _argtype(optstring, char)
        following = self._current(self.optind + 1)

        if kind is None:
            self.optind += 1
            raise self._fail(MSG_INVALID, char)
        if kind is ArgType.NONE:
            if rest:
                self._subopt += 1
            else:
                self._subopt = 0
                self.optind += 1
            return char
        if kind is ArgType.REQUIRED:
            self._subopt = 0
            self.optind += 1
            if rest:
                self.optarg = rest
            elif following is not None:
                self.optarg = following
                self.optind += 1
            else:
                self.optarg = None
                raise self._fail(MSG_MISSING, char)
            return char
        self._subopt = 0
        self.optind += 1
        self.optarg = rest or None
        return char

    def arg(self) -> str | None:
        """Step over and return the next non-option argument, or None."""
        option = self._current()
        self._subopt = 0
        if option is not None:
            self.optind += 1
        return option

    def _long_fallback(self, longopts: Sequence[LongOption]) -> str | None:
        self.longindex = None
        result = self.next(_optstring_from_long(longopts))
        if result is not None:
            for index, opt in enumerate(longopts):
                if opt.shortname == self.optopt:
                    self.longindex = index
        return result

    def next_long(self, longopts: Sequence[LongOption]) -> str | None:
        """Return the next short or long option, or None when done.

        The result is the option's short name, or its long name when it has
        no short form. ``longindex`` is set to the matching entry's index.
        Raises OptionError on unknown options and bad arguments.
        """
        option = self._current()
        if option is None:
            return None
        if _is_dashdash(option):
            self.optind += 1
            return None
        if _is_shortopt(option):
            return self._long_fallback(longopts)
        if not _is_longopt(option):
            if self.permute:
                return self._skip_nonoption(lambda: self.next_long(longopts))
            return None

        self.errmsg = ""
        self.optopt = None
        self.optarg = None
        body = option[2:]
        self.optind += 1
        for index, opt in enumerate(longopts):
            if not _long_matches(opt.longname, body):
                continue
            self.longindex = index
            self.optopt = opt.shortname
            value = _long_argument(body)
            if opt.argtype is ArgType.NONE and value is not None:
                raise self._fail(MSG_TOOMANY, opt.longname or "")
            if value is not None:
                self.optarg = value
            elif opt.argtype is ArgType.REQUIRED:
                self.optarg = self._current()
                if self.optarg is None:
                    raise self._fail(MSG_MISSING, opt.longname or "")
                self.optind += 1
            return opt.shortname or opt.longname
        raise self._fail(MSG_INVALID, body)