# Copyright 2024 Canonical Ltd.
# See LICENSE file for licensing details.

import pytest
from debctl.errors import MalformedLineError, MissingParameterError
from debctl.grammar import match_line, strip_comment


def test_minimal_line():
    match = match_line("deb http://archive.ubuntu.com/ubuntu jammy main")
    assert match.source_type == "deb"
    assert match.options == []
    assert match.params == ["http://archive.ubuntu.com/ubuntu", "jammy", "main"]


def test_deb_src_is_not_read_as_deb():
    match = match_line("deb-src http://archive.ubuntu.com/ubuntu jammy main")
    assert match.source_type == "deb-src"


def test_many_components():
    match = match_line("deb http://archive.ubuntu.com/ubuntu jammy main restricted universe")
    assert match.params[2:] == ["main", "restricted", "universe"]


def test_option_list():
    match = match_line(
        "deb [arch=amd64,arm64 signed-by=/usr/share/keyrings/x.gpg] https://example.com jammy main"
    )
    assert match.options == [
        ("arch", ["amd64", "arm64"]),
        ("signed-by", ["/usr/share/keyrings/x.gpg"]),
    ]
    assert match.params == ["https://example.com", "jammy", "main"]


def test_option_list_with_inner_padding():
    match = match_line("deb [ arch=amd64 ] https://example.com jammy main")
    assert match.options == [("arch", ["amd64"])]


def test_runs_of_spaces_separate_tokens():
    match = match_line("deb   https://example.com    jammy  main")
    assert match.params == ["https://example.com", "jammy", "main"]


def test_trailing_comment_is_discarded():
    match = match_line("deb https://example.com jammy main # the main archive")
    assert match.params == ["https://example.com", "jammy", "main"]


def test_strip_comment():
    assert strip_comment("deb https://example.com jammy main #comment \n") == (
        "deb https://example.com jammy main"
    )


@pytest.mark.parametrize(
    "line,missing",
    [
        ("deb", "URI"),
        ("deb https://example.com", "suite"),
        ("deb https://example.com jammy", "component"),
        ("deb [arch=amd64] https://example.com jammy", "component"),
        ("deb [arch=amd64]", "URI"),
    ],
)
def test_missing_parameters(line, missing):
    with pytest.raises(MissingParameterError) as ctx:
        match_line(line)
    assert ctx.value.missing == missing
    assert f"missing {missing}" in ctx.value.message


@pytest.mark.parametrize(
    "line",
    [
        "",
        "dontload http://example.com invalid nogroups",
        "debx https://example.com jammy main",
        "deb\thttps://example.com jammy main",
        "deb https://example.com\tjammy main",
        "deb [] https://example.com jammy main",
        "deb [arch] https://example.com jammy main",
        "deb [arch=] https://example.com jammy main",
        "deb [arch=amd64,,arm64] https://example.com jammy main",
        "deb [arch=amd64,] https://example.com jammy main",
        "deb [arch=amd64 https://example.com jammy main",
        "deb [arch=amd64][lang=en] https://example.com jammy main",
        "deb [arch=amd64]https://example.com jammy main",
        "deb https://example.com jammy main]",
        "deb https://example.com [jammy] main",
        "deb [_arch=amd64] https://example.com jammy main",
        "deb [arch-=amd64] https://example.com jammy main",
    ],
)
def test_malformed_lines(line):
    with pytest.raises(MalformedLineError):
        match_line(line)


def test_malformed_line_reports_column():
    with pytest.raises(MalformedLineError) as ctx:
        match_line("deb [arch=] https://example.com jammy main")
    assert ctx.value.column == len("deb [arch=")
    assert ctx.value.line == "deb [arch=] https://example.com jammy main"


def test_hyphenated_option_names():
    match = match_line("deb [check-valid-until=no] https://example.com jammy main")
    assert match.options == [("check-valid-until", ["no"])]
