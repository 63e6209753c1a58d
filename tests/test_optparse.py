import pytest

from wskit.optparse import ArgType, LongOption, OptionError, OptParser

LONGOPTS = [
    LongOption("amend", "a", ArgType.NONE),
    LongOption("brief", "b", ArgType.NONE),
    LongOption("color", "c", ArgType.REQUIRED),
    LongOption("delay", "d", ArgType.OPTIONAL),
    LongOption("verbose", None, ArgType.NONE),
]


def collect(parser, optstring):
    found = []
    while (opt := parser.next(optstring)) is not None:
        found.append((opt, parser.optarg))
    return found


def test_simple_short_options_and_remaining_argument():
    parser = OptParser(["prog", "-a", "-b", "x", "file"])
    assert collect(parser, "ab:") == [("a", None), ("b", "x")]
    assert parser.arg() == "file"
    assert parser.arg() is None


def test_grouped_flags():
    parser = OptParser(["prog", "-abc"])
    assert collect(parser, "abc") == [("a", None), ("b", None), ("c", None)]
    assert parser.optind == 2


def test_attached_required_argument():
    parser = OptParser(["prog", "-bvalue"])
    assert collect(parser, "b:") == [("b", "value")]


def test_optional_argument_only_when_attached():
    parser = OptParser(["prog", "-c", "-cval", "rest"])
    assert collect(parser, "c::") == [("c", None), ("c", "val")]
    assert parser.arg() == "rest"


def test_nonoptions_are_permuted_to_the_end():
    parser = OptParser(["prog", "file", "-a", "other", "-b"])
    assert collect(parser, "ab") == [("a", None), ("b", None)]
    assert parser.argv == ["prog", "-a", "-b", "file", "other"]
    assert parser.arg() == "file"
    assert parser.arg() == "other"


def test_without_permute_stops_at_first_nonoption():
    parser = OptParser(["prog", "file", "-a"], permute=False)
    assert parser.next("a") is None
    assert parser.argv == ["prog", "file", "-a"]
    assert parser.arg() == "file"


def test_double_dash_ends_options():
    parser = OptParser(["prog", "-a", "--", "-b"])
    assert collect(parser, "ab") == [("a", None)]
    assert parser.arg() == "-b"


def test_invalid_short_option_raises():
    parser = OptParser(["prog", "-z"])
    with pytest.raises(OptionError) as info:
        parser.next("ab")
    assert str(info.value) == "invalid option -- 'z'"
    assert parser.errmsg == "invalid option -- 'z'"
    assert parser.optind == 2


def test_colon_is_never_an_option():
    parser = OptParser(["prog", "-:"])
    with pytest.raises(OptionError) as info:
        parser.next("a:")
    assert info.value.option == ":"


def test_missing_required_argument_raises():
    parser = OptParser(["prog", "-b"])
    with pytest.raises(OptionError) as info:
        parser.next("b:")
    assert str(info.value) == "option requires an argument -- 'b'"
    assert parser.optarg is None


def test_long_options():
    parser = OptParser(
        ["prog", "--amend", "--color=red", "--color", "blue", "--delay", "--verbose", "x"]
    )
    found = []
    while (opt := parser.next_long(LONGOPTS)) is not None:
        found.append((opt, parser.optarg, parser.longindex))
    assert found == [
        ("a", None, 0),
        ("c", "red", 2),
        ("c", "blue", 2),
        ("d", None, 3),
        ("verbose", None, 4),
    ]
    assert parser.arg() == "x"


def test_long_optional_with_equals():
    parser = OptParser(["prog", "--delay=5"])
    assert parser.next_long(LONGOPTS) == "d"
    assert parser.optarg == "5"


def test_long_option_with_unwanted_argument_raises():
    parser = OptParser(["prog", "--amend=yes"])
    with pytest.raises(OptionError) as info:
        parser.next_long(LONGOPTS)
    assert str(info.value) == "option takes no arguments -- 'amend'"


def test_long_option_missing_argument_raises():
    parser = OptParser(["prog", "--color"])
    with pytest.raises(OptionError) as info:
        parser.next_long(LONGOPTS)
    assert info.value.message == "option requires an argument"
    assert info.value.option == "color"


def test_unknown_long_option_raises():
    parser = OptParser(["prog", "--bogus"])
    with pytest.raises(OptionError) as info:
        parser.next_long(LONGOPTS)
    assert str(info.value) == "invalid option -- 'bogus'"


def test_short_options_through_long_parser():
    parser = OptParser(["prog", "-ab", "-c", "green", "file"])
    found = []
    while (opt := parser.next_long(LONGOPTS)) is not None:
        found.append((opt, parser.optarg, parser.longindex))
    assert found == [("a", None, 0), ("b", None, 1), ("c", "green", 2)]
    assert parser.arg() == "file"


def test_long_parser_permutes_nonoptions():
    parser = OptParser(["prog", "file", "--brief"])
    assert parser.next_long(LONGOPTS) == "b"
    assert parser.next_long(LONGOPTS) is None
    assert parser.argv == ["prog", "--brief", "file"]


def test_error_message_is_truncated_to_fit():
    name = "x" * 200
    parser = OptParser(["prog", "--" + name])
    with pytest.raises(OptionError) as info:
        parser.next_long(LONGOPTS)
    message = str(info.value)
    assert len(message) <= 63
    assert message.startswith("invalid option -- 'x")
    assert message.endswith("'")


def test_error_inside_permuted_scan_still_permutes():
    parser = OptParser(["prog", "file", "-z"])
    with pytest.raises(OptionError):
        parser.next("a")
    assert parser.argv == ["prog", "-z", "file"]
    assert parser.arg() == "file"