"""
Cat-Scale Job Actions

Two kinds of actions make up every catalogue:
- command capture: run a read-only diagnostic command, stdout to an artifact
  file, stderr buffered for the shared error log
- file-set collection: walk a FileQuery and archive, list, head or timeline
  the matches
"""

import csv
import json
import logging
import os
import stat
import subprocess
import tarfile
import tempfile
from pathlib import Path
from typing import Callable, List, Optional, Sequence, Tuple, Union

import psutil

from catscale.collectors.filesets import (
    FileQuery,
    format_long_listing,
    format_time,
    group_name,
    read_interactive_users,
    user_name,
)
from catscale.collectors.job import Action, CommandFailed, JobContext, JobError
from catscale.core.utils import hash_file, utc_now_iso

logger = logging.getLogger(__name__)

# Interval between deadline/cancellation checks while a command runs.
POLL_INTERVAL_S = 0.25

COPY_CHUNK = 1024 * 1024
SPOOL_MAX_BYTES = 16 * 1024 * 1024

TIMELINE_HEADER = [
    "Inode",
    "Hard link Count",
    "Full Path",
    "Last Access",
    "Last Modification",
    "Last Status Change",
    "File Creation",
    "User",
    "Group",
    "File Permissions",
    "File Size(bytes)",
]


def run_to_file(argv: Sequence[str], out, ctx: JobContext, merge_stderr: bool = False) -> int:
    """
    Run argv with stdout going to the open file `out`.

    stderr is buffered into ctx (or merged into `out`). The child is killed
    when the run is cancelled or the job deadline passes; partial output stays
    in `out`.

    Returns:
        The command's exit status
    """
    out.flush()
    with tempfile.TemporaryFile() as err:
        try:
            proc = subprocess.Popen(
                list(argv),
                stdin=subprocess.DEVNULL,
                stdout=out,
                stderr=subprocess.STDOUT if merge_stderr else err,
                close_fds=True,
            )
        except FileNotFoundError as e:
            raise JobError(f"command not found: {argv[0]}") from e

        try:
            while True:
                try:
                    return proc.wait(timeout=POLL_INTERVAL_S)
                except subprocess.TimeoutExpired:
                    if ctx.cancelled or ctx.expired:
                        proc.kill()
                        proc.wait()
                        ctx.check()
        finally:
            if proc.poll() is None:
                proc.kill()
                proc.wait()
            err.seek(0)
            ctx.note(err.read().decode("utf-8", errors="replace"))


class CommandCapture(Action):
    """
    Run one or more commands into a single artifact.

    If any command fails and a fallback (argv, output) is given, the fallback
    runs into its own artifact and decides the job outcome.
    """

    live_only = True

    def __init__(
        self,
        commands: Sequence[Sequence[str]],
        output: str,
        fallback: Optional[Tuple[Sequence[str], str]] = None,
        merge_stderr: bool = False,
    ):
        if not commands:
            raise ValueError("CommandCapture needs at least one command")
        self.commands = [list(argv) for argv in commands]
        self.output = output
        self.fallback = fallback
        self.merge_stderr = merge_stderr
        self.executables = tuple(dict.fromkeys(argv[0] for argv in self.commands))
        self.outputs = (output,) + ((fallback[1],) if fallback else ())

    def run(self, ctx: JobContext) -> None:
        failures: List[CommandFailed] = []

        with open(ctx.output_path(self.output), "wb") as out:
            for argv in self.commands:
                returncode = run_to_file(argv, out, ctx, self.merge_stderr)
                if returncode != 0:
                    failures.append(CommandFailed(argv, returncode))

        if not failures:
            return

        if self.fallback is not None:
            argv, output = self.fallback
            ctx.note(f"{failures[0]}; falling back to {' '.join(argv)}")
            with open(ctx.output_path(output), "wb") as out:
                returncode = run_to_file(argv, out, ctx, self.merge_stderr)
            if returncode != 0:
                raise CommandFailed(argv, returncode)
            return

        raise failures[0]


# =============================================================================
# Item sources for per-item commands
# =============================================================================

class InteractiveUsers:
    """User names whose login shell is interactive, read from the host passwd file."""

    def __call__(self, ctx: JobContext) -> List[str]:
        passwd = ctx.host_path("/etc/passwd")
        try:
            users = read_interactive_users(passwd, ctx.config.interactive_shells)
        except OSError as e:
            ctx.note(f"{passwd}: {e.strerror}")
            return []
        return [u.name for u in users]


class MatchedFiles:
    """Paths matched by a FileQuery."""

    def __init__(self, query: FileQuery):
        self.query = query

    def __call__(self, ctx: JobContext) -> List[str]:
        return [str(path) for path, _ in self.query.iter_matches(ctx)]


class PerItemCommand(Action):
    """
    Run a command template once per item (or per batch of items) into one
    artifact. "{}" in the template is replaced by the item(s).

    A failing item is noted in the error log and does not fail the job.
    """

    def __init__(
        self,
        template: Sequence[str],
        items: Callable[[JobContext], List[str]],
        output: str,
        header: Optional[str] = "==> {} <==",
        batch_size: int = 1,
        live_only: bool = True,
    ):
        if "{}" not in template:
            raise ValueError("command template needs a {} placeholder")
        self.template = list(template)
        self.items = items
        self.output = output
        self.header = header
        self.batch_size = max(1, batch_size)
        self.live_only = live_only
        self.executables = (self.template[0],)
        self.outputs = (output,)

    def _argv(self, batch: List[str]) -> List[str]:
        argv = []
        for part in self.template:
            if part == "{}":
                argv.extend(batch)
            else:
                argv.append(part)
        return argv

    def run(self, ctx: JobContext) -> None:
        items = self.items(ctx)

        with open(ctx.output_path(self.output), "wb") as out:
            for start in range(0, len(items), self.batch_size):
                ctx.check()
                batch = items[start:start + self.batch_size]
                if self.header and self.batch_size == 1:
                    out.write((self.header.format(batch[0]) + "\n").encode())
                argv = self._argv(batch)
                returncode = run_to_file(argv, out, ctx)
                if returncode != 0:
                    ctx.note(str(CommandFailed(argv, returncode)))


# =============================================================================
# File-set collection
# =============================================================================

class HomeDirectoryQuery:
    """
    Non-recursive query over the home directories of interactive users,
    resolved at run time from the host passwd file.
    """

    def __init__(self, names: Tuple[str, ...] = (".*",), types: str = "f"):
        self.names = names
        self.types = types

    def resolve(self, ctx: JobContext) -> FileQuery:
        passwd = ctx.host_path("/etc/passwd")
        try:
            users = read_interactive_users(passwd, ctx.config.interactive_shells)
        except OSError as e:
            ctx.note(f"{passwd}: {e.strerror}")
            users = []

        homes = tuple(dict.fromkeys(u.home for u in users if u.home))
        return FileQuery(
            roots=homes,
            max_depth=1,
            types=self.types,
            names=self.names,
            ignore_case=False,
        )


QuerySource = Union[FileQuery, HomeDirectoryQuery]


def _resolve(query: QuerySource, ctx: JobContext) -> FileQuery:
    if isinstance(query, FileQuery):
        return query
    return query.resolve(ctx)


def _arcname(path: Path, host_root: str) -> str:
    """Member name relative to the host root, so offline images archive like live hosts."""
    return os.path.relpath(path, host_root)


class FileSetArchive(Action):
    """
    Archive the matches of a query into a tar (optionally gzip) artifact and
    write a listing of every archived member. Matched directories are added
    with their contents. Zero matches produce a valid empty archive.
    """

    def __init__(self, query: QuerySource, output: str, listing: str, compress: bool = True):
        self.query = query
        self.output = output
        self.listing = listing
        self.compress = compress
        self.outputs = (output, listing)

    def run(self, ctx: JobContext) -> None:
        query = _resolve(self.query, ctx)
        members: List[str] = []
        added_dirs = set()
        skip = {os.path.realpath(ctx.workspace.path)}

        try:
            with tarfile.open(ctx.output_path(self.output), "w:gz" if self.compress else "w") as tar:
                for path, st in query.iter_matches(ctx):
                    if any(str(parent) in added_dirs for parent in path.parents):
                        continue
                    self._add(tar, path, ctx, members)
                    if stat.S_ISDIR(st.st_mode):
                        added_dirs.add(str(path))
                        self._add_tree(tar, path, ctx, members, skip)
        finally:
            with open(ctx.output_path(self.listing), "w") as f:
                for name in members:
                    f.write(f"{name}\n")

    def _add_tree(self, tar, top: Path, ctx: JobContext, members: List[str], skip) -> None:
        def onerror(e: OSError) -> None:
            ctx.note(f"tar: {e.filename}: {e.strerror}")

        for dirpath, dirnames, filenames in os.walk(top, onerror=onerror):
            if os.path.realpath(dirpath) in skip:
                dirnames[:] = []
                continue
            dirnames.sort()
            for name in sorted(dirnames + filenames):
                self._add(tar, Path(dirpath) / name, ctx, members)

    def _add(self, tar: tarfile.TarFile, path: Path, ctx: JobContext, members: List[str]) -> None:
        """Add one entry; regular files are copied at a fixed size so a growing
        or shrinking file cannot corrupt the stream."""
        ctx.check()
        arcname = _arcname(path, ctx.config.host_root)
        try:
            tarinfo = tar.gettarinfo(str(path), arcname=arcname)
            if tarinfo is None:
                return
            if tarinfo.isreg():
                with open(path, "rb") as src, tempfile.SpooledTemporaryFile(max_size=SPOOL_MAX_BYTES) as buf:
                    tarinfo.size = _copy_limited(src, buf, tarinfo.size)
                    buf.seek(0)
                    tar.addfile(tarinfo, buf)
            else:
                tar.addfile(tarinfo)
        except OSError as e:
            ctx.note(f"tar: {path}: {e.strerror or e}")
            return
        members.append(arcname)


def _copy_limited(src, dst, limit: int) -> int:
    copied = 0
    while copied < limit:
        chunk = src.read(min(COPY_CHUNK, limit - copied))
        if not chunk:
            break
        dst.write(chunk)
        copied += len(chunk)
    return copied


class FileSetListing(Action):
    """List query matches, `ls -l` style or one path per line, optionally hashed."""

    def __init__(self, query: QuerySource, output: str, long: bool = True, with_hash: bool = False):
        self.query = query
        self.output = output
        self.long = long
        self.with_hash = with_hash
        self.outputs = (output,)

    def run(self, ctx: JobContext) -> None:
        query = _resolve(self.query, ctx)
        with open(ctx.output_path(self.output), "w") as out:
            for path, st in query.iter_matches(ctx):
                line = format_long_listing(path, st) if self.long else str(path)
                if self.with_hash and stat.S_ISREG(st.st_mode):
                    try:
                        line = f"{hash_file(path)}  {line}"
                    except OSError as e:
                        ctx.note(f"sha256: {path}: {e.strerror}")
                        line = f"{'-' * 64}  {line}"
                out.write(f"{line}\n")


class FileHeadCapture(Action):
    """
    Capture the first `max_lines` lines (all lines when None) of every match,
    each preceded by a `==> path <==` header when `header` is set.
    """

    def __init__(
        self,
        query: QuerySource,
        output: str,
        max_lines: Optional[int] = None,
        header: bool = True,
        nul_to_space: bool = False,
    ):
        self.query = query
        self.output = output
        self.max_lines = max_lines
        self.header = header
        self.nul_to_space = nul_to_space
        self.outputs = (output,)

    def run(self, ctx: JobContext) -> None:
        query = _resolve(self.query, ctx)
        with open(ctx.output_path(self.output), "wb") as out:
            for path, _ in query.iter_matches(ctx):
                try:
                    with open(path, "rb") as src:
                        data = self._head(src)
                except OSError as e:
                    ctx.note(f"head: {path}: {e.strerror}")
                    continue

                if self.nul_to_space:
                    data = data.replace(b"\x00", b" ").rstrip(b" ")
                if data and not data.endswith(b"\n"):
                    data += b"\n"
                if self.header:
                    out.write(f"==> {path} <==\n".encode())
                out.write(data)

    def _head(self, src) -> bytes:
        if self.max_lines is None:
            return src.read()
        lines = []
        for line in src:
            lines.append(line)
            if len(lines) >= self.max_lines:
                break
        return b"".join(lines)


class TimelineCapture(Action):
    """CSV filesystem timeline over one or more queries."""

    def __init__(self, queries: Sequence[FileQuery], output: str):
        self.queries = list(queries)
        self.output = output
        self.outputs = (output,)

    def run(self, ctx: JobContext) -> None:
        with open(ctx.output_path(self.output), "w", newline="") as out:
            writer = csv.writer(out)
            writer.writerow(TIMELINE_HEADER)
            for query in self.queries:
                for path, st in query.iter_matches(ctx):
                    birth = getattr(st, "st_birthtime", None)
                    writer.writerow(
                        [
                            st.st_ino,
                            st.st_nlink,
                            str(path),
                            format_time(st.st_atime),
                            format_time(st.st_mtime),
                            format_time(st.st_ctime),
                            format_time(birth) if birth else "",
                            user_name(st.st_uid),
                            group_name(st.st_gid),
                            stat.filemode(st.st_mode),
                            st.st_size,
                        ]
                    )


class ProcessSnapshot(Action):
    """Structured process and inet connection snapshot taken with psutil."""

    live_only = True

    PROCESS_ATTRS = [
        "pid",
        "ppid",
        "name",
        "exe",
        "cmdline",
        "username",
        "create_time",
        "status",
        "cwd",
    ]

    def __init__(self, output: str = "process-snapshot.json"):
        self.output = output
        self.outputs = (output,)

    def run(self, ctx: JobContext) -> None:
        snapshot = {
            "host": ctx.config.hostname,
            "taken_utc": utc_now_iso(),
            "processes": [],
            "connections": [],
        }

        for proc in psutil.process_iter(self.PROCESS_ATTRS, ad_value=None):
            snapshot["processes"].append(proc.info)

        try:
            connections = psutil.net_connections(kind="inet")
        except (psutil.AccessDenied, OSError) as e:
            ctx.note(f"net_connections: {e}")
            connections = []

        for c in connections:
            snapshot["connections"].append(
                {
                    "laddr": f"{c.laddr.ip}:{c.laddr.port}" if c.laddr else None,
                    "raddr": f"{c.raddr.ip}:{c.raddr.port}" if c.raddr else None,
                    "status": c.status,
                    "pid": c.pid,
                }
            )

        with open(ctx.output_path(self.output), "w") as f:
            json.dump(snapshot, f, indent=2, default=str)
