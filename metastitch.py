#!env/bin/python3

import concurrent.futures
import functools
import glob
import json
import os.path
import posixpath
import re
import sys

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from urllib.parse import urlsplit, urlunsplit

import pygit2

GIT_DIR_MODE = 0o040_000
GIT_FILE_MODE = 0o100_644
GIT_GITLINK_MODE = 0o160_000  # actually a submodule, blegh
GIT_EMPTY_TREE = "4b825dc642cb6eb9a060e54bf8d69288fbee4904"  # Wow, isn't git amazing.

MODULES_FILE = ".gitmodules"

STITCHED_REFS = "refs/stitched/"
CONVERTED_REFS = STITCHED_REFS + "converted/"
FETCHED_REFS = STITCHED_REFS + "fetched/"

DEFAULT_PARALLEL = 8


class Bug(Exception):
    pass


class Error(Exception):
    pass


class Unresolvable(Error):
    pass


class MissingSubmoduleCommit(Error):
    pass


@functools.cache
def compile_pattern(pattern):
    regex = glob.translate(pattern, recursive=True)
    return re.compile(regex)


def glob_match(pattern, string):
    if not pattern:
        return False
    if pattern is True:
        return True
    rx = compile_pattern(pattern)
    return rx.match(string) is not None


# exclusion strategies, deciding which submodules stay as submodules


class Exclude:
    def is_excluded(self, path):
        return False

    def __repr__(self):
        return f"{type(self).__name__}()"


class ExcludePattern(Exclude):
    def __init__(self, pattern):
        self.pattern = pattern
        self.rx = re.compile(pattern)

    def is_excluded(self, path):
        return self.rx.search(path) is not None

    def __repr__(self):
        return f"ExcludePattern({self.pattern!r})"


class ExcludeGlob(Exclude):
    def __init__(self, patterns):
        self.patterns = tuple(patterns)

    def is_excluded(self, path):
        return any(glob_match(p, path) for p in self.patterns)

    def __repr__(self):
        return f"ExcludeGlob({list(self.patterns)!r})"


def make_exclude(value):
    if value is None or value is False:
        return Exclude()
    elif isinstance(value, Exclude):
        return value
    elif isinstance(value, str):
        return ExcludePattern(value)
    elif isinstance(value, (list, tuple)):
        return ExcludeGlob(value)
    else:
        raise Error(f"unsupported exclude: {value!r}")


@dataclass
class GitSignature:
    name: str
    email: str
    time: int
    offset: int

    @property
    def date(self):
        tz = timezone(timedelta(minutes=self.offset))
        date = datetime.fromtimestamp(float(self.time), tz)
        return date

    def format_date(self):
        # same layout as `git log`, e.g. "Fri Jul 14 03:40:00 2017 +0100"
        d = self.date
        return f"{d:%a %b} {d.day} {d:%H:%M:%S %Y %z}"

    def to_pygit(self):
        return pygit2.Signature(
            name=self.name, email=self.email, time=self.time, offset=self.offset
        )

    def __str__(self):
        return f"{self.name} <{self.email}>"

    @classmethod
    def from_pygit(self, obj):
        return GitSignature(
            name=obj.name, email=obj.email, time=obj.time, offset=obj.offset
        )


@dataclass
class GitCommit:
    tree: str
    parents: list
    author: GitSignature
    committer: GitSignature
    message: bytes
    encoding: object = None

    def clone(self):
        return GitCommit(
            tree=self.tree,
            parents=list(self.parents),
            author=self.author,
            committer=self.committer,
            message=self.message,
            encoding=self.encoding,
        )


def summarize_sub_commit(name, sha, commit, encoding=None):
    # messages stay raw bytes, only the header is encoded
    header = (
        f"Includes changes from submodule {name} on {sha}.\n"
        f"Author: {commit.author}\n"
        f"Date:   {commit.author.format_date()}\n"
        f"\n"
    )
    return header.encode(encoding or "utf-8") + commit.message


# marker refs
#
# refs/stitched/converted/ab/cdef...               -> stitched commit
# refs/stitched/fetched/ab/cdef.../sub/12/3456...  -> fetched submodule commit


def split_sha(sha):
    return f"{sha[:2]}/{sha[2:]}"


def join_sha(name):
    return name.replace("/", "", 1)


def converted_ref_name(sha):
    return CONVERTED_REFS + split_sha(sha)


def fetched_ref_name(meta_sha, sub_sha):
    return FETCHED_REFS + split_sha(meta_sha) + "/sub/" + split_sha(sub_sha)


# submodule configuration


@dataclass(frozen=True)
class Submodule:
    url: str
    sha: str


@dataclass(frozen=True)
class SubmoduleChange:
    url: str
    old_sha: str
    new_sha: str
    old_url: str


@dataclass
class SubmoduleChanges:
    added: dict = field(default_factory=dict)
    changed: dict = field(default_factory=dict)
    removed: set = field(default_factory=set)


SECTION_RX = re.compile(r'^\[submodule\s+"(.*)"\]$')
SCP_RX = re.compile(r"^([^/:@]+@)?[^/:]+:")


def parse_modules_file(text):
    stanzas = []
    current = None

    for line in text.splitlines():
        line = line.strip()
        if not line or line.startswith(("#", ";")):
            continue

        m = SECTION_RX.match(line)
        if m:
            current = {"name": m.group(1)}
            stanzas.append(current)
        elif line.startswith("["):
            current = None
        elif current is not None and "=" in line:
            key, value = line.split("=", 1)
            value = value.strip()
            if len(value) > 1 and value[0] == value[-1] == '"':
                value = value[1:-1]
            current[key.strip().lower()] = value

    urls = {}
    for s in stanzas:
        if "url" not in s:
            continue
        urls[s.get("path", s["name"])] = s["url"]
    return urls


def write_modules_file(urls):
    out = []
    for path in sorted(urls):
        out.append(f'[submodule "{path}"]\n\tpath = {path}\n\turl = {urls[path]}\n')
    return "".join(out)


def resolve_url(root, url):
    if not url.startswith(("./", "../")):
        return url

    root = root.rstrip("/")

    if "://" in root:
        parts = urlsplit(root)
        path = posixpath.normpath(posixpath.join(parts.path or "/", url))
        return urlunsplit(parts._replace(path=path))

    m = SCP_RX.match(root)
    if m:
        host, path = root[: m.end()], root[m.end() :]
        return host + posixpath.normpath(posixpath.join(path, url))

    return posixpath.normpath(posixpath.join(root, url))


def diff_submodules(new, old):
    changes = SubmoduleChanges()

    for path, sub in new.items():
        prev = old.get(path)
        if prev is None:
            changes.added[path] = sub
        elif prev != sub:
            changes.changed[path] = SubmoduleChange(
                url=sub.url, old_sha=prev.sha, new_sha=sub.sha, old_url=prev.url
            )

    changes.removed = set(old) - set(new)
    return changes


class SubmoduleReader:
    def __init__(self, repo):
        self.repo = repo
        self.tables = {}
        self.diffs = {}

    def table(self, idx):
        if idx in self.tables:
            return self.tables[idx]

        tree = self.repo.get_commit_tree(idx)
        data = self.repo.read_blob(tree, MODULES_FILE)

        table = {}
        if data is not None:
            for path, url in parse_modules_file(data.decode("utf-8")).items():
                if path not in tree:
                    continue
                entry = tree[path]
                if entry.filemode == GIT_GITLINK_MODE:
                    table[path] = Submodule(url=url, sha=str(entry.id))

        self.tables[idx] = table
        return table

    def diff(self, idx):
        if idx in self.diffs:
            return self.diffs[idx]

        parents = self.repo.get_parents(idx)
        old = self.table(parents[0]) if parents else {}
        changes = diff_submodules(self.table(idx), old)

        self.diffs[idx] = changes
        return changes


# tree merging


@dataclass(frozen=True)
class Change:
    id: str
    mode: int

    @classmethod
    def blob(cls, idx):
        return cls(idx, GIT_FILE_MODE)

    @classmethod
    def tree(cls, idx):
        return cls(idx, GIT_DIR_MODE)

    @classmethod
    def commit(cls, idx):
        return cls(idx, GIT_GITLINK_MODE)


@dataclass
class Leaf:
    change: object  # None deletes the entry


@dataclass
class Subtree:
    children: dict = field(default_factory=dict)


def build_directory_tree(changes):
    root = Subtree()

    for path, change in changes.items():
        names = path.split("/")
        node = root

        for name in names[:-1]:
            child = node.children.get(name)
            # a deleted file can turn into a directory
            if child is None or (isinstance(child, Leaf) and child.change is None):
                child = Subtree()
                node.children[name] = child
            elif isinstance(child, Leaf):
                raise Bug(f"Change for {path} is below another change")
            node = child

        name = names[-1]
        existing = node.children.get(name)
        if existing is None:
            node.children[name] = Leaf(change)
        elif change is not None:
            raise Bug(f"Duplicate change for {path}")

    return root


# commit ordering


def commit_levels(parents, entry):
    levels = {}
    expanded = set()
    search = [entry]

    while search:
        idx = search[-1]
        if idx in levels:
            search.pop()
            continue

        known = [p for p in parents.get(idx, ()) if p in parents]
        waiting = [p for p in known if p not in levels]

        if waiting:
            if idx in expanded:
                raise Bug(f"Commit graph has a cycle through {idx}")
            expanded.add(idx)
            search.extend(waiting)
            continue

        search.pop()
        levels[idx] = 1 + max((levels[p] for p in known), default=-1)

    return levels


def order_commits(parents, entry):
    levels = commit_levels(parents, entry)
    return sorted(levels, key=lambda idx: (levels[idx], idx))


# conversion ledger


class GitRefs:
    def __init__(self, git):
        self.git = git

    def get(self, name):
        ref = self.git.references.get(name)
        if ref is None:
            return None
        return str(ref.target)

    def put(self, name, sha):
        try:
            self.git.references.create(name, pygit2.Oid(hex=sha))
        except pygit2.AlreadyExistsError:
            existing = self.get(name)
            if existing != sha:
                raise Bug(f"{name} already points at {existing}, not {sha}")

    def delete(self, name):
        if self.git.references.get(name) is not None:
            self.git.references.delete(name)

    def list(self, prefix):
        return sorted(n for n in self.git.references if n.startswith(prefix))


class Ledger:
    def __init__(self, refs):
        self.refs = refs

    def converted(self, sha):
        return self.refs.get(converted_ref_name(sha))

    def mark_converted(self, sha, new_sha):
        self.refs.put(converted_ref_name(sha), new_sha)

    def fetched(self, meta_sha, sub_sha):
        return self.refs.get(fetched_ref_name(meta_sha, sub_sha)) is not None

    def mark_fetched(self, meta_sha, sub_sha):
        self.refs.put(fetched_ref_name(meta_sha, sub_sha), sub_sha)

    def clear_fetched(self, meta_sha, sub_shas):
        for sub_sha in sub_shas:
            self.refs.delete(fetched_ref_name(meta_sha, sub_sha))

    def all_converted(self):
        out = {}
        for name in self.refs.list(CONVERTED_REFS):
            out[join_sha(name[len(CONVERTED_REFS) :])] = self.refs.get(name)
        return out

    def prune_fetched(self):
        count = 0
        for name in self.refs.list(FETCHED_REFS):
            meta, _ = name[len(FETCHED_REFS) :].split("/sub/", 1)
            if self.converted(join_sha(meta)) is not None:
                self.refs.delete(name)
                count += 1
        return count

    def list_unconverted(self, entry, get_parents):
        # a converted commit implies converted ancestors, so stop there
        parents = {}
        search = [entry]

        while search:
            idx = search.pop()
            if idx in parents or self.converted(idx) is not None:
                continue

            parents[idx] = list(get_parents(idx))
            search.extend(p for p in parents[idx] if p not in parents)

        if not parents:
            return parents, []
        return parents, order_commits(parents, entry)


# used for fetch
class AuthCallbacks(pygit2.RemoteCallbacks):
    def credentials(self, url, username_from_url, allowed_types):
        if allowed_types & pygit2.enums.CredentialType.USERNAME:
            return pygit2.Username("git")
        elif allowed_types & pygit2.enums.CredentialType.SSH_KEY:
            x = os.path.expanduser("~/.ssh/id_ed25519.pub")
            y = os.path.expanduser("~/.ssh/id_ed25519")
            return pygit2.Keypair("git", x, y, "")
        else:
            return None


class GitRepo:
    def __init__(self, repo_dir):
        if not repo_dir.endswith(".git"):
            repo_dir += ".git"
        self.path = repo_dir
        self.git = pygit2.init_repository(repo_dir, bare=True)
        self.refs = GitRefs(self.git)

    def add_remote(self, rname, url):
        names = list(self.git.remotes.names())

        if rname not in names:
            self.git.remotes.create(rname, url)
            return True
        else:
            return False

    def fetch_remote(self, rname):
        o = self.git.remotes[rname]
        o.fetch(callbacks=AuthCallbacks())

    def fetch_sha(self, url, sha):
        # fetches run on worker threads, each with its own handle
        git = pygit2.Repository(self.path)
        if isinstance(git.get(sha), pygit2.Commit):
            return False

        remote = git.remotes.create_anonymous(url)
        remote.fetch([sha], callbacks=AuthCallbacks())

        if not isinstance(git.get(sha), pygit2.Commit):
            raise Error(f"Fetched {url} but {sha} is still missing")
        return True

    def resolve(self, commitish):
        try:
            obj = self.git.revparse_single(commitish)
            commit = obj.peel(pygit2.Commit)
        except (KeyError, ValueError, pygit2.GitError) as e:
            raise Unresolvable(f"Could not resolve {commitish}") from e
        return str(commit.id)

    def has_commit(self, sha):
        return isinstance(self.git.get(sha), pygit2.Commit)

    def get_commit(self, sha):
        obj = self.git.get(sha)
        if not isinstance(obj, pygit2.Commit):
            return None

        return GitCommit(
            tree=str(obj.tree_id),
            parents=list(str(x) for x in obj.parent_ids),
            author=GitSignature.from_pygit(obj.author),
            committer=GitSignature.from_pygit(obj.committer),
            message=obj.raw_message,
            encoding=obj.message_encoding,
        )

    def get_parents(self, sha):
        c = self.get_commit(sha)
        if c is None:
            raise Bug(f"Missing commit: {sha}")
        return c.parents

    def get_commit_tree(self, sha):
        return self.git.get(sha).tree

    def read_blob(self, tree, path):
        if path not in tree:
            return None
        obj = self.git.get(tree[path].id)
        if not isinstance(obj, pygit2.Blob):
            return None
        return obj.data

    def write_blob(self, data):
        return str(self.git.create_blob(data))

    def merge_tree(self, base, changes):
        if isinstance(base, str):
            base = self.git.get(base)
        directory = build_directory_tree(changes)
        out, _ = self.merge_subtree(base, directory)
        return str(out)

    def merge_subtree(self, base, directory):
        if base is None:
            tb = self.git.TreeBuilder()
        else:
            tb = self.git.TreeBuilder(base)

        # xxx - sibling subtrees are independent and could be written in parallel
        for name, node in directory.children.items():
            if isinstance(node, Leaf):
                if node.change is None:
                    if tb.get(name) is not None:
                        tb.remove(name)
                else:
                    tb.insert(name, pygit2.Oid(hex=node.change.id), node.change.mode)
                continue

            sub_base = None
            if base is not None and name in base:
                entry = base[name]
                if entry.filemode == GIT_DIR_MODE:
                    sub_base = self.git.get(entry.id)

            sub_tree, count = self.merge_subtree(sub_base, node)
            if count == 0:
                if tb.get(name) is not None:
                    tb.remove(name)
            else:
                tb.insert(name, sub_tree, GIT_DIR_MODE)

        count = len(tb)
        return tb.write(), count

    def write_commit(self, c):
        tree = pygit2.Oid(hex=c.tree)
        parents = [pygit2.Oid(hex=p) for p in c.parents]
        author = c.author.to_pygit()
        committer = c.committer.to_pygit()
        args = [None, author, committer, c.message, tree, parents]
        if c.encoding:
            args.append(c.encoding)
        out = self.git.create_commit(*args)
        if not out:
            raise Error("Couldn't write commit")
        return str(out)

    def get_branch_head(self, name):
        if name in self.git.branches:
            return str(self.git.branches[name].target)

    def write_branch_head(self, name, addr):
        c = self.git.revparse_single(addr)
        self.git.branches.create(name, c, force=True)


@dataclass(frozen=True)
class FetchRequest:
    meta: str
    path: str
    url: str
    sha: str


class Fetcher:
    def __init__(self, repo, ledger, reader, fetch=None, report=print):
        self.repo = repo
        self.ledger = ledger
        self.reader = reader
        self.fetch = fetch or repo.fetch_sha
        self.report = report

    def plan(self, commits, url, exclude):
        requests = []

        for idx in commits:
            changes = self.reader.diff(idx)

            wanted = dict(changes.added)
            for path, c in changes.changed.items():
                # a moved url with the same sha is not restitched
                if c.new_sha != c.old_sha:
                    wanted[path] = Submodule(url=c.url, sha=c.new_sha)

            for path in sorted(wanted):
                if exclude.is_excluded(path):
                    continue
                sub = wanted[path]
                requests.append(
                    FetchRequest(
                        meta=idx, path=path, url=resolve_url(url, sub.url), sha=sub.sha
                    )
                )

        return requests

    def run(self, requests, parallel=DEFAULT_PARALLEL):
        if parallel < 1:
            raise Error(f"Parallel fetches must be at least 1, not {parallel}")

        todo = {}
        for r in requests:
            if self.ledger.fetched(r.meta, r.sha):
                continue
            todo.setdefault((r.url, r.sha), []).append(r)

        if requests:
            self.report(
                "    > potential fetches:",
                len(requests),
                "distinct:",
                len(todo),
            )

        done = []
        if not todo:
            return done

        with concurrent.futures.ThreadPoolExecutor(max_workers=parallel) as executor:
            futures = {
                executor.submit(self.fetch_one, url, sha): (url, sha)
                for url, sha in todo
            }
            for future in concurrent.futures.as_completed(futures):
                key = futures[future]
                if not future.result():
                    continue
                for r in todo[key]:
                    self.ledger.mark_fetched(r.meta, r.sha)
                    done.append(r)

        return done

    def fetch_one(self, url, sha):
        try:
            self.fetch(url, sha)
        except (pygit2.GitError, ValueError, Error) as e:
            self.report(f"    ! failed to fetch {sha} from {url}: {e}")
            return False
        return True


class StitchWriter:
    def __init__(
        self, repo, ledger, reader, exclude, detach=False, strict=False, report=print
    ):
        self.repo = repo
        self.ledger = ledger
        self.reader = reader
        self.exclude = exclude
        self.detach = detach
        self.strict = strict
        self.report = report

    def write(self, idx):
        commit = self.repo.get_commit(idx)
        if commit is None:
            raise Bug(f"Missing commit: {idx}")

        parents = []
        for p in commit.parents:
            new_p = self.ledger.converted(p)
            if new_p is None:
                raise Bug(f"Commit {idx} has unconverted parent {p}")
            parents.append(new_p)

        base = self.repo.get_commit(parents[0]).tree if parents else None

        subs = self.reader.diff(idx)
        stitched = []
        changes = {}
        message = commit.message
        update_modules = False  # if any excluded subs added, moved or removed

        def stitch_sub(path, sha, replacing=False):
            nonlocal message
            sub = self.repo.get_commit(sha)
            if sub is None:
                if self.strict:
                    raise MissingSubmoduleCommit(
                        f"On meta-commit {idx} {path} is missing {sha}"
                    )
                # no instruction for the path, so any previous content stays
                kept = ", keeping previous content" if replacing else ""
                self.report(f"    ! on meta-commit {idx} {path} is missing {sha}{kept}")
                return

            changes[path] = Change.tree(sub.tree)
            stitched.append(sha)

            if self.detach:
                encoding = commit.encoding or "utf-8"
                message += b"\n" + summarize_sub_commit(path, sha, sub, encoding)
            elif sha not in parents:
                parents.append(sha)

        for path, sub in sorted(subs.added.items()):
            if self.exclude.is_excluded(path):
                update_modules = True
                changes[path] = Change.commit(sub.sha)
            else:
                stitch_sub(path, sub.sha)

        for path, c in sorted(subs.changed.items()):
            if self.exclude.is_excluded(path):
                if c.url != c.old_url:
                    update_modules = True
                changes[path] = Change.commit(c.new_sha)
            elif c.new_sha != c.old_sha:
                stitch_sub(path, c.new_sha, replacing=True)

        for path in sorted(subs.removed):
            changes[path] = None
            if self.exclude.is_excluded(path):
                update_modules = True

        if update_modules:
            table = self.reader.table(idx)
            urls = {p: s.url for p, s in table.items() if self.exclude.is_excluded(p)}
            text = write_modules_file(urls)
            changes[MODULES_FILE] = Change.blob(self.repo.write_blob(text.encode()))

        tree = self.repo.merge_tree(base, changes)

        c = commit.clone()
        c.tree = tree
        c.parents = parents
        c.message = message

        new_idx = self.repo.write_commit(c)
        self.ledger.mark_converted(idx, new_idx)
        self.ledger.clear_fetched(idx, stitched)

        self.report(idx, "->", new_idx)
        return new_idx


class Stitcher:
    def __init__(self, repo, report=print, fetch=None):
        self.repo = repo
        self.report = report
        self.fetch = fetch
        self.fetched = set()
        self.ledger = Ledger(repo.refs)

    def stitch(
        self,
        commitish,
        url,
        exclude=None,
        detach=False,
        parallel=DEFAULT_PARALLEL,
        strict=False,
    ):
        exclude = make_exclude(exclude)
        head = self.repo.resolve(commitish)

        _, todo = self.ledger.list_unconverted(head, self.repo.get_parents)

        if not todo:
            new_head = self.ledger.converted(head)
            self.report(f"    already converted {head} -> {new_head}")
            return new_head

        self.report(f"    > {len(todo)} commits to convert")

        reader = SubmoduleReader(self.repo)

        fetcher = Fetcher(
            self.repo, self.ledger, reader, fetch=self.fetch, report=self.report
        )
        requests = fetcher.plan(todo, url, exclude)
        fetcher.run(requests, parallel)

        writer = StitchWriter(
            self.repo,
            self.ledger,
            reader,
            exclude,
            detach=detach,
            strict=strict,
            report=self.report,
        )
        for idx in todo:
            writer.write(idx)

        return self.ledger.converted(head)

    def run(self, steps, refresh=False):
        if refresh:
            self.fetched = set()

        out = {}
        for name, config in steps.items():
            step = config.get("step")
            if step == "fetch_meta":
                config = dict(config, refresh=refresh)
                self.fetch_meta(name, config)
            elif step == "stitch":
                out[name] = self.stitch_step(name, config)
            elif step == "prune_fetched":
                self.prune_fetched(name, config)
            elif step == "show_converted":
                self.show_converted(name, config)
            else:
                raise Bug(f"Bad step for {name}: {step}")
            self.report()

        return out

    def fetch_meta(self, name, config):
        url = required(name, config, "url")
        remote_name = config.get("remote_name", name)
        refresh = config.get("refresh", False)

        self.report("adding meta remote", remote_name)

        if self.repo.add_remote(remote_name, url) or refresh:
            if url not in self.fetched:
                self.report(f"    fetching {remote_name} from {url}")
                self.repo.fetch_remote(remote_name)
                self.fetched.add(url)
        else:
            self.report(f"    already fetched {remote_name} from {url}")

    def stitch_step(self, name, config):
        commitish = config.get("commitish", "HEAD")
        url = required(name, config, "url")
        detach = config.get("detach", False)

        self.report("stitching", commitish, "detached" if detach else "linked")

        new_head = self.stitch(
            commitish,
            url,
            exclude=config.get("exclude"),
            detach=detach,
            parallel=config.get("parallel", DEFAULT_PARALLEL),
            strict=config.get("strict", False),
        )

        branch = config.get("branch")
        if branch:
            self.repo.write_branch_head(branch, new_head)
            self.report(f"    writing {new_head} to branch '{branch}'")

        return new_head

    def prune_fetched(self, name, config):
        count = self.ledger.prune_fetched()
        self.report("pruned", count, "fetch markers")

    def show_converted(self, name, config):
        converted = self.ledger.all_converted()
        self.report("converted", len(converted), "commits")
        for old, new in sorted(converted.items()):
            self.report("   ", old, "->", new)


def required(name, config, key):
    if key not in config:
        raise Error(f"Step {name} is missing '{key}'")
    return config[key]


def load_config(filename):
    with open(filename, "r+") as fh:
        return json.load(fh)


def main(name, argv=None):
    if name != "__main__":
        return

    # cmd run config.file --fetch
    # cmd stitch repo url [commitish] --detach --strict --exclude=... -j8

    argv = sys.argv if argv is None else argv

    if len(argv) <= 2:
        print(argv[0], "run <name> [--fetch]")
        print(argv[0], "stitch <repo> <url> [commitish] [--detach] [--strict]")
        print(" " * len(argv[0]), "   [--exclude=<regex>] [-j<n>]")
        return

    arg = argv[1]
    args = [x for x in argv[2:] if not x.startswith("-")]
    flags = [x for x in argv[2:] if x.startswith("-")]

    try:
        if arg == "run":
            name = args[0]
            refresh = "--fetch" in flags
            builder_config = load_config(f"{name}.json")

            git_repo = GitRepo(name)
            builder = Stitcher(git_repo)
            builder.run(builder_config, refresh=refresh)

        elif arg == "stitch":
            if len(args) < 2:
                raise Error("stitch needs a repo and a url")

            config = {"step": "stitch", "url": args[1]}
            if len(args) > 2:
                config["commitish"] = args[2]
            for f in flags:
                if f in ("-d", "--detach"):
                    config["detach"] = True
                elif f == "--strict":
                    config["strict"] = True
                elif f.startswith("--exclude="):
                    config["exclude"] = f.split("=", 1)[1]
                elif f.startswith("-j") and f[2:].isdigit():
                    config["parallel"] = int(f[2:])
                else:
                    raise Error(f"Unknown option: {f}")

            git_repo = GitRepo(args[0])
            builder = Stitcher(git_repo)
            builder.run({"stitch": config})

        else:
            raise Error(f"Unknown command: {arg}")
    except Error as e:
        sys.exit(f"error: {e}")


main(__name__)
