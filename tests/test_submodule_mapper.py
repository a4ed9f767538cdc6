"""
Tests for submodule discovery, path matching and registration.
"""

from unittest.mock import Mock

import pytest
from git.config import GitConfigParser

from submodule_sync.models import SubmoduleEntry, SubmoduleInitError
from submodule_sync.submodule_mapper import SubmoduleMapper, resolve_relative_url

from tests.fixtures.reporters import RecordingReporter

OID = "7777777777777777777777777777777777777777"

GITMODULES = """\
[submodule "lib"]
\tpath = vendor/lib
\turl = ../lib.git
\tbranch = stable
\tshallow = true
[submodule "docs"]
\tpath = docs
\turl = https://example.com/docs.git
\tupdate = !rm -rf /
"""


class TestResolveRelativeUrl:
    @pytest.mark.parametrize("url,base,expected", [
        ("../lib.git", "https://example.com/org/super.git", "https://example.com/org/lib.git"),
        ("./lib.git", "https://example.com/org/super", "https://example.com/org/super/lib.git"),
        ("../../other/lib", "https://example.com/org/super", "https://example.com/other/lib"),
        ("../lib.git", "git@example.com:org/super.git", "git@example.com:org/lib.git"),
        ("../lib", "/srv/git/super", "/srv/git/lib"),
    ])
    def test_resolve(self, url, base, expected):
        assert resolve_relative_url(url, base) == expected


class TestMatchPaths:
    """Test selection of submodules by path."""

    def setup_method(self):
        self.entries = [
            SubmoduleEntry(name=p, path=p) for p in ("docs", "vendor/lib", "vendor/tools")
        ]

    def paths(self, selected):
        return [e.path for e in selected]

    def test_no_paths_selects_all(self):
        selected, unmatched = SubmoduleMapper.match_paths(self.entries, [], "vendor/")
        assert self.paths(selected) == ["docs", "vendor/lib", "vendor/tools"]
        assert unmatched == []

    def test_directory_selects_contained_submodules(self):
        selected, _ = SubmoduleMapper.match_paths(self.entries, ["vendor"])
        assert self.paths(selected) == ["vendor/lib", "vendor/tools"]

    def test_paths_relative_to_prefix(self):
        selected, _ = SubmoduleMapper.match_paths(self.entries, ["lib"], "vendor/")
        assert self.paths(selected) == ["vendor/lib"]

    def test_parent_reference_from_prefix(self):
        selected, _ = SubmoduleMapper.match_paths(self.entries, ["../docs"], "vendor/")
        assert self.paths(selected) == ["docs"]

    def test_unmatched(self):
        selected, unmatched = SubmoduleMapper.match_paths(self.entries, ["docs", "nope", "../.."])
        assert self.paths(selected) == ["docs"]
        assert unmatched == ["nope", "../.."]

    def test_order_follows_discovery(self):
        selected, _ = SubmoduleMapper.match_paths(self.entries, ["vendor/tools", "docs"])
        assert self.paths(selected) == ["docs", "vendor/tools"]


class TestSubmoduleMapper:
    """Test discovery and registration against a mocked repository."""

    def setup_method(self):
        self.config = {}
        self.gm = Mock()
        self.gm.config_value.side_effect = lambda section, option, default=None: self.config.get(
            (section, option), default
        )
        self.gm.set_config_value.side_effect = lambda section, option, value: self.config.__setitem__(
            (section, option), value
        )
        self.gm.gitlink_oids.return_value = {"vendor/lib": OID, "docs": OID, "orphan": OID}
        self.gm.default_remote_name.return_value = "origin"
        self.gm.remote_url.return_value = "https://example.com/org/super.git"
        self.reporter = RecordingReporter()

    def mapper(self, tmp_path):
        gitmodules = tmp_path / ".gitmodules"
        gitmodules.write_text(GITMODULES)
        self.gm.gitmodules_parser.return_value = GitConfigParser(str(gitmodules), read_only=True)
        return SubmoduleMapper(self.gm, self.reporter)

    def test_discovery(self, tmp_path):
        entries = self.mapper(tmp_path).discover_submodules()
        assert [e.path for e in entries] == ["docs", "orphan", "vendor/lib"]
        lib = entries[2]
        assert lib.name == "lib"
        assert lib.url is None
        assert lib.gitmodules_url == "../lib.git"
        assert lib.branch == "stable"
        assert lib.shallow is True
        assert lib.gitlink_oid == OID

    def test_gitmodules_command_is_ignored(self, tmp_path):
        docs = self.mapper(tmp_path).discover_submodules()[0]
        assert docs.update is None

    def test_local_configuration_wins(self, tmp_path):
        self.config[('submodule "docs"', "update")] = "!make docs"
        self.config[('submodule "lib"', "branch")] = "main"
        entries = self.mapper(tmp_path).discover_submodules()
        assert entries[0].custom_command == "make docs"
        assert entries[2].branch == "main"

    def test_find_by_path(self, tmp_path):
        mapper = self.mapper(tmp_path)
        assert mapper.find_by_path("vendor/lib").name == "lib"
        assert mapper.find_by_path("missing") is None

    def test_find_by_path_discovers_once(self, tmp_path):
        mapper = self.mapper(tmp_path)
        for _ in range(40):
            mapper.find_by_path("docs")
            mapper.find_by_path("vendor/lib")
        assert self.gm.gitlink_oids.call_count == 1
        assert self.gm.gitmodules_parser.call_count == 1

    def test_init_registers_urls(self, tmp_path):
        self.mapper(tmp_path).init_submodules(["vendor/lib"])
        assert self.config[('submodule "lib"', "url")] == "https://example.com/org/lib.git"
        assert self.config[('submodule "lib"', "active")] == "true"
        assert self.reporter.infos == [
            "Submodule 'lib' (https://example.com/org/lib.git) registered for path 'vendor/lib'"
        ]

    def test_init_keeps_existing_url(self, tmp_path):
        self.config[('submodule "docs"', "url")] = "https://mirror.example.com/docs.git"
        self.mapper(tmp_path).init_submodules(["docs"])
        assert self.config[('submodule "docs"', "url")] == "https://mirror.example.com/docs.git"
        assert self.reporter.infos == []

    def test_init_quiet(self, tmp_path):
        self.mapper(tmp_path).init_submodules(["docs"], quiet=True)
        assert self.config[('submodule "docs"', "url")] == "https://example.com/docs.git"
        assert self.reporter.infos == []

    def test_init_display_relative_to_prefix(self, tmp_path):
        self.mapper(tmp_path).init_submodules(["lib"], prefix="vendor/")
        assert self.reporter.infos[0].endswith("registered for path 'lib'")

    def test_init_without_url(self, tmp_path):
        with pytest.raises(SubmoduleInitError):
            self.mapper(tmp_path).init_submodules(["orphan"])

    def test_init_unmatched_path(self, tmp_path):
        with pytest.raises(SubmoduleInitError):
            self.mapper(tmp_path).init_submodules(["nope"])
        assert self.reporter.errors == [
            "error: pathspec 'nope' did not match any file(s) known to git"
        ]
