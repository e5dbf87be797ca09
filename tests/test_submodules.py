"""Tests for submodule configuration, url resolution and submodule diffs."""

import pytest

from conftest import Gitlink, make_commit, meta_files
from metastitch import (
    Exclude,
    ExcludeGlob,
    ExcludePattern,
    Error,
    Submodule,
    SubmoduleChange,
    SubmoduleReader,
    diff_submodules,
    make_exclude,
    parse_modules_file,
    resolve_url,
    write_modules_file,
)


def test_write_modules_file():
    text = write_modules_file({"b": "../b.git", "a/x": "https://example.com/x"})
    assert text == (
        '[submodule "a/x"]\n'
        "\tpath = a/x\n"
        "\turl = https://example.com/x\n"
        '[submodule "b"]\n'
        "\tpath = b\n"
        "\turl = ../b.git\n"
    )


def test_write_empty_modules_file():
    assert write_modules_file({}) == ""


def test_parse_modules_file():
    text = """
# comment
[submodule "lib"]
	path = vendor/lib
	url = git@example.com:org/lib.git
[submodule "quoted"]
    url = "../quoted"
[core]
	url = ignored
[submodule "no-url"]
	path = no-url
"""
    assert parse_modules_file(text) == {
        "vendor/lib": "git@example.com:org/lib.git",
        "quoted": "../quoted",
    }


def test_parse_written_modules_file():
    urls = {"a": "../a", "b/c": "/srv/c"}
    assert parse_modules_file(write_modules_file(urls)) == urls


@pytest.mark.parametrize(
    "root, url, expected",
    [
        ("https://example.com/org/meta", "../sub", "https://example.com/org/sub"),
        ("https://example.com/org/meta/", "./sub", "https://example.com/org/meta/sub"),
        ("https://example.com", "../sub", "https://example.com/sub"),
        ("git@example.com:org/meta.git", "../sub.git", "git@example.com:org/sub.git"),
        ("/srv/git/meta", "../sub", "/srv/git/sub"),
        ("/srv/git/meta", "./a/../b", "/srv/git/meta/b"),
        ("meta", "../sub", "sub"),
        ("/srv/git/meta", "https://other.com/sub", "https://other.com/sub"),
        ("/srv/git/meta", "/abs/sub", "/abs/sub"),
    ],
)
def test_resolve_url(root, url, expected):
    assert resolve_url(root, url) == expected


def test_diff_submodules():
    old = {
        "same": Submodule("u", "1"),
        "moved": Submodule("u", "1"),
        "bumped": Submodule("u", "1"),
        "gone": Submodule("u", "1"),
    }
    new = {
        "same": Submodule("u", "1"),
        "moved": Submodule("v", "1"),
        "bumped": Submodule("u", "2"),
        "new": Submodule("w", "3"),
    }
    changes = diff_submodules(new, old)
    assert changes.added == {"new": Submodule("w", "3")}
    assert changes.changed == {
        "moved": SubmoduleChange(url="v", old_sha="1", new_sha="1", old_url="u"),
        "bumped": SubmoduleChange(url="u", old_sha="1", new_sha="2", old_url="u"),
    }
    assert changes.removed == {"gone"}


def test_diff_against_nothing():
    changes = diff_submodules({"s": Submodule("u", "1")}, {})
    assert changes.added == {"s": Submodule("u", "1")}
    assert changes.changed == {}
    assert changes.removed == set()


class CountingRepo:
    def __init__(self, repo):
        self.repo = repo
        self.reads = []

    def read_blob(self, tree, path):
        self.reads.append(str(tree.id))
        return self.repo.read_blob(tree, path)

    def __getattr__(self, name):
        return getattr(self.repo, name)


def test_reader_table(repo, git):
    sub = "ab" * 20
    files = meta_files({"lib/s": ("../s", sub)}, README="hi")
    # a stanza without a gitlink is not a submodule
    files[".gitmodules"] += '[submodule "stale"]\n\tpath = stale\n\turl = ../stale\n'
    meta = make_commit(git, files)

    reader = SubmoduleReader(repo)
    assert reader.table(meta) == {"lib/s": Submodule("../s", sub)}


def test_reader_table_without_modules_file(repo, git):
    meta = make_commit(git, {"README": "hi", "s": Gitlink("ab" * 20)})
    assert SubmoduleReader(repo).table(meta) == {}


def test_reader_caches_tables(repo, git):
    one = make_commit(git, meta_files({"s": ("../s", "11" * 20)}))
    two = make_commit(git, meta_files({"s": ("../s", "22" * 20)}), parents=[one])
    three = make_commit(git, meta_files({"s": ("../s", "33" * 20)}), parents=[two])

    counting = CountingRepo(repo)
    reader = SubmoduleReader(counting)
    reader.diff(two)
    reader.diff(three)
    reader.diff(three)

    assert len(counting.reads) == 3


def test_reader_diff(repo, git):
    one = make_commit(git, meta_files({"s": ("../s", "11" * 20), "t": ("../t", "aa" * 20)}))
    two = make_commit(
        git,
        meta_files({"s": ("../s", "22" * 20), "u": ("../u", "bb" * 20)}),
        parents=[one],
    )
    reader = SubmoduleReader(repo)

    root = reader.diff(one)
    assert set(root.added) == {"s", "t"}

    changes = reader.diff(two)
    assert changes.added == {"u": Submodule("../u", "bb" * 20)}
    assert changes.changed == {
        "s": SubmoduleChange(
            url="../s", old_sha="11" * 20, new_sha="22" * 20, old_url="../s"
        )
    }
    assert changes.removed == {"t"}


def test_exclude_strategies():
    assert not Exclude().is_excluded("anything")

    pattern = ExcludePattern("^vendor/")
    assert pattern.is_excluded("vendor/lib")
    assert not pattern.is_excluded("src/vendor/lib")

    globs = ExcludeGlob(["vendor/**", "tools"])
    assert globs.is_excluded("vendor/a/b")
    assert globs.is_excluded("tools")
    assert not globs.is_excluded("tools/x")


def test_make_exclude():
    assert type(make_exclude(None)) is Exclude
    assert make_exclude("^t$").is_excluded("t")
    assert make_exclude(["t*"]).is_excluded("tea")

    strategy = ExcludePattern("x")
    assert make_exclude(strategy) is strategy

    with pytest.raises(Error):
        make_exclude(42)
