# Copyright 2024 Canonical Ltd.
# See LICENSE file for licensing details.

import pytest
from debctl.entry import Comment, Entry, SourceType
from debctl.errors import (
    DuplicateOptionError,
    InvalidOptionNameError,
    MalformedLineError,
    MissingParameterError,
    ParseError,
    SourceFileError,
)
from debctl.parse import parse_file, parse_line, parse_lines
from pyfakefs.fake_filesystem_unittest import TestCase

DOCKER_LINE = "deb [arch=amd64 lang=en,de] https://download.docker.com/linux/ubuntu jammy stable"

sources_list = """## This is a comment which should be kept!
deb http://us.archive.ubuntu.com/ubuntu focal main restricted universe multiverse

deb http://us.archive.ubuntu.com/ubuntu focal-updates main restricted universe multiverse

# deb http://us.archive.ubuntu.com/ubuntu focal-backports main restricted universe multiverse
"""

nodesource_sources_list = """deb [signed-by=/usr/share/keyrings/nodesource.gpg] https://deb.nodesource.com/node_16.x focal main
deb-src [signed-by=/usr/share/keyrings/nodesource.gpg] https://deb.nodesource.com/node_16.x focal main #useless comment
"""  # noqa: E501


def test_parse_line():
    entry = parse_line(DOCKER_LINE)
    assert entry == Entry(
        enabled=True,
        source_types={SourceType.BINARY},
        uris=["https://download.docker.com/linux/ubuntu"],
        suites=["jammy"],
        components=["stable"],
        options={"Architectures": ["amd64"], "Languages": ["en", "de"]},
    )


def test_parse_line_three_params_yields_one_component():
    entry = parse_line("deb https://example.com jammy main")
    assert entry.uris == ["https://example.com"]
    assert entry.suites == ["jammy"]
    assert entry.components == ["main"]


def test_parse_line_two_params_fails():
    with pytest.raises(MissingParameterError) as ctx:
        parse_line("deb https://example.com jammy")
    assert ctx.value.missing == "component"


def test_parse_line_single_value_option():
    entry = parse_line("deb [arch=amd64] https://example.com jammy main")
    assert entry.options == {"Architectures": ["amd64"]}


def test_parse_line_multi_value_option():
    entry = parse_line("deb [arch=amd64,arm64] https://example.com jammy main")
    assert entry.options == {"Architectures": ["amd64", "arm64"]}


def test_parse_line_keeps_option_order():
    entry = parse_line("deb [lang=en trusted=yes arch=amd64] https://example.com jammy main")
    assert list(entry.options) == ["Languages", "Trusted", "Architectures"]


def test_parse_line_option_names_are_case_insensitive():
    entry = parse_line("deb [Arch=amd64 ARCHITECTURES=amd64] https://example.com jammy main")
    assert entry.options == {"Architectures": ["amd64"]}


def test_parse_line_signed_by_is_not_an_option():
    entry = parse_line(
        "deb [signed-by=/usr/share/keyrings/nodesource.gpg] https://deb.nodesource.com/node_16.x focal main"  # noqa: E501
    )
    assert entry.signed_by == "/usr/share/keyrings/nodesource.gpg"
    assert entry.options == {}


def test_parse_line_unknown_option():
    with pytest.raises(InvalidOptionNameError) as ctx:
        parse_line("deb [foo=bar] https://example.com jammy main")
    assert ctx.value.option == "foo"
    assert ctx.value.line == "deb [foo=bar] https://example.com jammy main"


def test_parse_line_conflicting_option():
    with pytest.raises(DuplicateOptionError) as ctx:
        parse_line("deb [arch=amd64 arch=arm64] https://example.com jammy main")
    assert ctx.value.option == "Architectures"
    assert ctx.value.values == [["amd64"], ["arm64"]]


def test_parse_line_conflicting_option_via_alias():
    with pytest.raises(DuplicateOptionError):
        parse_line("deb [arch=amd64 Architectures=arm64] https://example.com jammy main")


def test_parse_line_source_type():
    entry = parse_line("deb-src https://example.com jammy main")
    assert entry.source_types == {SourceType.SOURCE}


def test_disabled_and_enabled_lines_differ_only_in_enabled():
    [disabled] = parse_lines(["# " + DOCKER_LINE])
    [enabled] = parse_lines([DOCKER_LINE])
    assert disabled.enabled is False
    assert enabled.enabled is True
    disabled.enabled = True
    assert disabled == enabled


def test_disabled_line_without_space_after_marker():
    [entry] = parse_lines(["#deb https://example.com jammy main"])
    assert entry.enabled is False
    assert entry.uris == ["https://example.com"]


def test_comment_attaches_to_next_entry():
    items = parse_lines(["# Docker CE", DOCKER_LINE])
    assert len(items) == 1
    assert items[0].leading_comment == "# Docker CE"


def test_consecutive_comments_are_joined():
    items = parse_lines(["# first", "", "#   second  ", DOCKER_LINE])
    assert items[0].leading_comment == "# first\n#   second"


def test_trailing_comment_is_standalone():
    items = parse_lines([DOCKER_LINE, "", "# nothing follows this"])
    assert len(items) == 2
    assert isinstance(items[0], Entry)
    assert items[0].leading_comment is None
    assert items[1] == Comment("# nothing follows this")


def test_only_a_comment():
    assert parse_lines(["# just a comment"]) == [Comment("# just a comment")]


def test_commented_line_that_does_not_match_is_a_comment():
    items = parse_lines(["# deb https://example.com jammy", DOCKER_LINE])
    assert len(items) == 1
    assert items[0].enabled is True
    assert items[0].leading_comment == "# deb https://example.com jammy"


def test_commented_line_with_unknown_option_is_a_comment():
    items = parse_lines(["# deb [foo=bar] https://example.com jammy main"])
    assert items == [Comment("# deb [foo=bar] https://example.com jammy main")]


def test_blank_lines_are_skipped():
    items = parse_lines(["", "   ", DOCKER_LINE, "\n"])
    assert len(items) == 1


def test_skip_comments():
    items = parse_lines(["# a comment", DOCKER_LINE, "# trailing"], skip_comments=True)
    assert len(items) == 1
    assert items[0].leading_comment is None


def test_skip_disabled():
    items = parse_lines(
        ["# a comment", "# deb https://example.com jammy main", DOCKER_LINE], skip_disabled=True
    )
    assert len(items) == 1
    assert items[0].enabled is True
    assert items[0].leading_comment == "# a comment"


def test_malformed_line_is_fatal():
    lines = [DOCKER_LINE, "# a comment", "deb https://example.com jammy"]
    with pytest.raises(MalformedLineError) as ctx:
        parse_lines(lines, filename="broken.list")
    assert ctx.value.lineno == 3
    assert ctx.value.filename == "broken.list"
    assert ctx.value.line == "deb https://example.com jammy"
    assert ctx.value.message.startswith("broken.list:3: missing component")


def test_conflicting_option_on_disabled_line_is_fatal():
    with pytest.raises(DuplicateOptionError) as ctx:
        parse_lines(["", "# deb [arch=amd64 arch=i386] https://example.com jammy main"])
    assert ctx.value.lineno == 2
    assert isinstance(ctx.value, ParseError)


def test_sources_list_document():
    items = parse_lines(sources_list.splitlines())
    assert len(items) == 3
    first, second, third = items
    assert first.leading_comment == "## This is a comment which should be kept!"
    assert first.suites == ["focal"]
    assert first.components == ["main", "restricted", "universe", "multiverse"]
    assert second.suites == ["focal-updates"]
    assert second.leading_comment is None
    assert third.enabled is False
    assert third.suites == ["focal-backports"]


def test_entries_are_never_merged():
    first, second = parse_lines(nodesource_sources_list.splitlines())
    assert first.source_types == {SourceType.BINARY}
    assert second.source_types == {SourceType.SOURCE}
    assert first.signed_by == second.signed_by == "/usr/share/keyrings/nodesource.gpg"


class TestParseFile(TestCase):
    def setUp(self):
        self.setUpPyfakefs()
        self.fs.create_file(
            "/etc/apt/sources.list.d/nodesource.list", contents=nodesource_sources_list
        )

    def test_parse_file(self):
        items = parse_file("/etc/apt/sources.list.d/nodesource.list")
        self.assertEqual(len(items), 2)
        self.assertEqual(items[0].uris, ["https://deb.nodesource.com/node_16.x"])

    def test_parse_file_reports_filename(self):
        self.fs.create_file("/tmp/bad.list", contents="dontload http://example.com invalid\n")
        with self.assertRaises(MalformedLineError) as ctx:
            parse_file("/tmp/bad.list")
        self.assertEqual(ctx.exception.filename, "/tmp/bad.list")
        self.assertEqual(ctx.exception.lineno, 1)
        self.assertEqual(
            "<debctl.errors.MalformedLineError>",
            ctx.exception.name,
        )

    def test_parse_file_not_utf8(self):
        self.fs.create_file(
            "/tmp/latin.list", contents=b"deb http://example.com jammy main\n# caf\xe9 comment\n"
        )
        with self.assertRaises(SourceFileError) as ctx:
            parse_file("/tmp/latin.list")
        self.assertIn("/tmp/latin.list is not valid UTF-8", ctx.exception.message)
