"""Shared fixtures for metastitch tests."""

from dataclasses import dataclass

import pygit2
import pytest

import metastitch
from metastitch import GIT_DIR_MODE, GIT_FILE_MODE, GIT_GITLINK_MODE


# fixed signatures keep commit ids identical across repositories
AUTHOR = pygit2.Signature("Test Author", "author@example.com", 1500000000, 60)
COMMITTER = pygit2.Signature("Test Committer", "committer@example.com", 1500000100, -300)


@dataclass(frozen=True)
class Gitlink:
    sha: str


def write_tree(git, files):
    """Write a tree from a flat ``path -> content`` mapping.

    Content is ``str``/``bytes`` for a file or a :class:`Gitlink`.
    """
    nested = {}
    for path, value in files.items():
        *dirs, name = path.split("/")
        node = nested
        for d in dirs:
            node = node.setdefault(d, {})
        node[name] = value
    return str(_write_nested(git, nested))


def _write_nested(git, node):
    tb = git.TreeBuilder()
    for name, value in node.items():
        if isinstance(value, dict):
            tb.insert(name, _write_nested(git, value), GIT_DIR_MODE)
        elif isinstance(value, Gitlink):
            tb.insert(name, pygit2.Oid(hex=value.sha), GIT_GITLINK_MODE)
        else:
            if isinstance(value, str):
                value = value.encode()
            tb.insert(name, git.create_blob(value), GIT_FILE_MODE)
    return tb.write()


def make_commit(git, files, parents=(), message="a commit\n"):
    tree = pygit2.Oid(hex=write_tree(git, files))
    parents = [pygit2.Oid(hex=p) for p in parents]
    return str(git.create_commit(None, AUTHOR, COMMITTER, message, tree, parents))


def meta_files(subs, **files):
    """Files of a meta-repo commit holding ``subs``: path -> (url, sha)."""
    out = dict(files)
    urls = {path: url for path, (url, _) in subs.items()}
    if subs:
        out[".gitmodules"] = metastitch.write_modules_file(urls)
    for path, (_, sha) in subs.items():
        out[path] = Gitlink(sha)
    return out


def file_at(git, tree_id, path):
    tree = git.get(tree_id)
    return git.get(tree[path].id).data


class MemoryRefs:
    def __init__(self):
        self.refs = {}

    def get(self, name):
        return self.refs.get(name)

    def put(self, name, sha):
        existing = self.refs.setdefault(name, sha)
        if existing != sha:
            raise metastitch.Bug(f"{name} already points at {existing}")

    def delete(self, name):
        self.refs.pop(name, None)

    def list(self, prefix):
        return sorted(n for n in self.refs if n.startswith(prefix))


class Report:
    def __init__(self):
        self.lines = []

    def __call__(self, *args, **kwargs):
        self.lines.append(" ".join(str(a) for a in args))

    def matching(self, text):
        return [line for line in self.lines if text in line]


@pytest.fixture()
def repo(tmp_path):
    return metastitch.GitRepo(str(tmp_path / "target"))


@pytest.fixture()
def git(repo):
    return repo.git


@pytest.fixture()
def report():
    return Report()
