"""
Cat-Scale File-Set Queries

A find(1)-like filesystem walk used by archive, listing and timeline jobs.
Walks are depth-first in sorted order, never follow symlinks, optionally stay
on the starting device, and report unreadable paths instead of failing.
"""

import fnmatch
import grp
import os
import pwd
import stat
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from functools import lru_cache
from pathlib import Path
from typing import Iterator, List, NamedTuple, Optional, Set, Tuple

# How many entries to visit between deadline/cancellation checks.
CHECK_EVERY = 512

SECONDS_PER_DAY = 86400


@dataclass(frozen=True)
class FileQuery:
    """Selection of files under one or more host roots."""

    roots: Tuple[str, ...]
    xdev: bool = False
    max_depth: Optional[int] = None
    types: str = "f"  # any of "f" (regular), "d" (directory), "l" (symlink)
    names: Tuple[str, ...] = ()
    ignore_case: bool = True
    perm_all: int = 0
    perm_any: int = 0
    modified_within_days: Optional[float] = None
    exclude: Tuple[str, ...] = ()
    include_root: bool = False
    # Pattern on the path relative to its root, e.g. "[0-9]*/cmdline".
    relpath_glob: Optional[str] = None

    def matches(self, name: str, st: os.stat_result, now: float) -> bool:
        mode = st.st_mode
        if not self._type_matches(mode):
            return False

        if self.names:
            candidate = name.lower() if self.ignore_case else name
            patterns = [p.lower() for p in self.names] if self.ignore_case else self.names
            if not any(fnmatch.fnmatchcase(candidate, p) for p in patterns):
                return False

        if self.perm_all and (mode & self.perm_all) != self.perm_all:
            return False
        if self.perm_any and not (mode & self.perm_any):
            return False

        if self.modified_within_days is not None:
            if now - st.st_mtime >= self.modified_within_days * SECONDS_PER_DAY:
                return False

        return True

    def _type_matches(self, mode: int) -> bool:
        if stat.S_ISREG(mode):
            return "f" in self.types
        if stat.S_ISDIR(mode):
            return "d" in self.types
        if stat.S_ISLNK(mode):
            return "l" in self.types
        return False

    def iter_matches(self, ctx) -> Iterator[Tuple[Path, os.stat_result]]:
        """
        Yield (path, lstat) for every match, reporting unreadable paths to ctx.

        Args:
            ctx: JobContext providing host path mapping, note() and check()
        """
        now = time.time()
        skip = _identity_set([ctx.workspace.path] + [ctx.host_path(p) for p in self.exclude])
        visited = 0

        for root in self.roots:
            base = ctx.host_path(root)
            try:
                root_st = os.lstat(base)
            except FileNotFoundError:
                continue
            except OSError as e:
                ctx.note(f"find: '{base}': {e.strerror}")
                continue

            if self.include_root and self.matches(base.name, root_st, now):
                yield base, root_st

            if not stat.S_ISDIR(root_st.st_mode):
                continue

            children = _scan(base, ctx)
            if children is None:
                continue
            stack = [(iter(children), 1)]

            while stack:
                entries, depth = stack[-1]
                entry = next(entries, None)
                if entry is None:
                    stack.pop()
                    continue

                visited += 1
                if visited % CHECK_EVERY == 0:
                    ctx.check()

                try:
                    st = entry.stat(follow_symlinks=False)
                except OSError as e:
                    ctx.note(f"find: '{entry.path}': {e.strerror}")
                    continue

                if (st.st_dev, st.st_ino) in skip:
                    continue

                if self.matches(entry.name, st, now) and self._relpath_matches(base, entry.path):
                    yield Path(entry.path), st

                if not stat.S_ISDIR(st.st_mode):
                    continue
                if self.max_depth is not None and depth >= self.max_depth:
                    continue
                if self.xdev and st.st_dev != root_st.st_dev:
                    continue

                grandchildren = _scan(Path(entry.path), ctx)
                if grandchildren is not None:
                    stack.append((iter(grandchildren), depth + 1))

    def _relpath_matches(self, base: Path, path: str) -> bool:
        if self.relpath_glob is None:
            return True
        return fnmatch.fnmatchcase(os.path.relpath(path, base), self.relpath_glob)

    def collect(self, ctx) -> List[Tuple[Path, os.stat_result]]:
        return list(self.iter_matches(ctx))


def _scan(path: Path, ctx) -> Optional[List[os.DirEntry]]:
    try:
        with os.scandir(path) as it:
            return sorted(it, key=lambda e: e.name)
    except OSError as e:
        ctx.note(f"find: '{path}': {e.strerror}")
        return None


def _identity_set(paths) -> Set[Tuple[int, int]]:
    identities = set()
    for path in paths:
        try:
            st = os.stat(path)
        except OSError:
            continue
        identities.add((st.st_dev, st.st_ino))
    return identities


# =============================================================================
# Formatting helpers
# =============================================================================

@lru_cache(maxsize=4096)
def user_name(uid: int) -> str:
    try:
        return pwd.getpwuid(uid).pw_name
    except KeyError:
        return str(uid)


@lru_cache(maxsize=4096)
def group_name(gid: int) -> str:
    try:
        return grp.getgrgid(gid).gr_name
    except KeyError:
        return str(gid)


def format_time(ts: float) -> str:
    """Full-precision UTC timestamp, like `ls --full-time` with TZ=UTC."""
    dt = datetime.fromtimestamp(ts, tz=timezone.utc)
    return dt.strftime("%Y-%m-%d %H:%M:%S.%f +0000")


def format_long_listing(path: Path, st: os.stat_result) -> str:
    """One `ls -l --full-time` style line."""
    line = (
        f"{stat.filemode(st.st_mode)} {st.st_nlink} {user_name(st.st_uid)} "
        f"{group_name(st.st_gid)} {st.st_size} {format_time(st.st_mtime)} {path}"
    )
    if stat.S_ISLNK(st.st_mode):
        try:
            line += f" -> {os.readlink(path)}"
        except OSError:
            pass
    return line


# =============================================================================
# Accounts
# =============================================================================

class PasswdEntry(NamedTuple):
    name: str
    uid: int
    home: str
    shell: str


def read_interactive_users(passwd_path: Path, shells: Tuple[str, ...]) -> List[PasswdEntry]:
    """
    Users from a passwd file whose login shell is an interactive shell.
    Service accounts (nologin, false, sync, ...) are filtered out.
    """
    users = []
    with open(passwd_path, "r", errors="replace") as f:
        for line in f:
            line = line.strip()
            if not line or line.startswith("#"):
                continue
            parts = line.split(":")
            if len(parts) < 7:
                continue
            shell = parts[6].strip()
            if os.path.basename(shell) not in shells:
                continue
            try:
                uid = int(parts[2])
            except ValueError:
                continue
            users.append(PasswdEntry(name=parts[0], uid=uid, home=parts[5], shell=shell))
    return users
