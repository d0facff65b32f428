# Copyright (c) 2020-2022, Adam Karpierz
# Licensed under the BSD license
# https://opensource.org/licenses/BSD-3-Clause

import re

import pytest

from covagg import util
from covagg.__config__ import defaults, load_options, convert_value
from covagg.util import read_config, read_covagg_config_file, parse_rc_options
from covagg.util import transform_pattern, get_common_prefix, sort_unique


def test_defaults():
    assert defaults["precision"] == 1
    assert defaults["function_coverage"] is True
    assert defaults["branch_coverage"] is True
    assert defaults["jobs"] == 1


def test_convert_value():
    assert convert_value("branch_coverage", "off") is False
    assert convert_value("branch_coverage", "1") is True
    assert convert_value("precision", "3") == 3
    assert convert_value("fail_under_lines", "80.5") == 80.5
    with pytest.raises(ValueError):
        convert_value("checksum", "maybe")


def test_load_options():
    options = load_options({"covagg_precision": "2", "branch_coverage": "0"},
                           {"precision": "3"})
    assert options.precision == 3
    assert options.branch_coverage is False
    assert options.function_coverage is True


def test_load_options_unknown_key():
    with pytest.warns(UserWarning, match="unknown configuration key"):
        options = load_options({"no_such_key": "1"})
    assert not hasattr(options, "no_such_key")


def test_read_config(tmp_path):
    rcfile = tmp_path/"covaggrc"
    rcfile.write_text("# comment\n"
                      "covagg_precision = 2   # trailing comment\n"
                      "\n"
                      "list_width=100\n")
    assert read_config(rcfile) == {"covagg_precision": "2", "list_width": "100"}
    assert read_covagg_config_file(rcfile) == read_config(rcfile)


def test_read_config_malformed_line(tmp_path):
    rcfile = tmp_path/"covaggrc"
    rcfile.write_text("precision\n")
    with pytest.warns(UserWarning, match="malformed statement in line 1"):
        assert read_config(rcfile) == {}


def test_home_config(tmp_path, monkeypatch):
    (tmp_path/".covaggrc").write_text("jobs = 4\n")
    monkeypatch.setenv("HOME", str(tmp_path))
    assert read_covagg_config_file() == {"jobs": "4"}


def test_parse_rc_options():
    assert parse_rc_options([" precision = 2", "checksum=1"]) == {
        "precision": "2", "checksum": "1"}
    assert parse_rc_options(None) == {}
    with pytest.raises(SystemExit):
        parse_rc_options(["precision"])


def test_transform_pattern():
    regex = re.compile(transform_pattern("/usr/*/lib?.h"))
    assert regex.fullmatch("/usr/include/libc.h")
    assert not regex.fullmatch("/usr/include/lib.h")
    assert not re.compile(transform_pattern("a.c")).fullmatch("abc")


def test_get_common_prefix():
    assert get_common_prefix(["/a/b/c.c", "/a/b/d/e.c"]) == "/a/b"
    assert get_common_prefix(["/a/b/c.c"]) == "/a/b"
    assert get_common_prefix([]) == ""
    assert get_common_prefix(["/a/b.c", "rel/c.c"]) == ""


def test_sort_unique():
    assert sort_unique(["dir10", "dir2", "dir2", "dir1"]) == ["dir1", "dir2", "dir10"]


def test_info_respects_quiet(capsys, monkeypatch):
    monkeypatch.setattr(util, "quiet", False)
    util.info("hello")
    assert capsys.readouterr().err == "hello\n"
    monkeypatch.setattr(util, "quiet", True)
    util.info("hello")
    assert capsys.readouterr().err == ""
