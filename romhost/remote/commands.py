"""Remote shell command lines — builders, argument checks and progress parsing.

Every value placed into a command line is checked here first and then
quoted with :func:`shlex.quote`; nothing else in the package assembles
shell text.
"""

from __future__ import annotations

import re
import shlex

import httpx

from romhost.errors import UnsafeArgumentError

_PROGRESS_RE = re.compile(r"(\d{1,3})%")
_FORBIDDEN_PATH_CHARS = ("\x00", "\n", "\r")


# ── Argument checks ──


def check_path(path: str) -> str:
    """Reject empty paths and paths carrying NUL or line breaks."""
    if not path or not path.strip():
        raise UnsafeArgumentError("Remote path must not be empty")
    if any(ch in path for ch in _FORBIDDEN_PATH_CHARS):
        raise UnsafeArgumentError(f"Remote path contains control characters: {path!r}")
    return path


def check_name(name: str) -> str:
    """A single path component: no separators, no '.' or '..'."""
    check_path(name)
    if "/" in name or name in (".", ".."):
        raise UnsafeArgumentError(f"Not a plain file name: {name!r}")
    return name


def build_url(base_url: str, resource: str) -> str:
    """Join ``base_url`` and ``resource`` and validate the result as http(s)."""
    full = f"{base_url}{resource}"
    if any(ch in full for ch in _FORBIDDEN_PATH_CHARS) or " " in full.strip():
        raise UnsafeArgumentError(f"Malformed URL: {full!r}")
    try:
        url = httpx.URL(full.strip())
    except httpx.InvalidURL as e:
        raise UnsafeArgumentError(f"Malformed URL {full!r}: {e}") from e
    if url.scheme not in ("http", "https") or not url.host:
        raise UnsafeArgumentError(f"Only http(s) URLs can be fetched: {full!r}")
    return str(url)


def join_path(directory: str, name: str) -> str:
    return f"{check_path(directory).rstrip('/')}/{check_name(name)}"


# ── Command lines ──


def list_command(directory: str) -> str:
    return f"ls -1 {shlex.quote(check_path(directory))}"


def fetch_command(url: str, destination_dir: str, file_name: str) -> str:
    """Resumable download: ``-c`` continues a partially present file."""
    target = join_path(destination_dir, file_name)
    return (
        f"mkdir -p {shlex.quote(check_path(destination_dir))}"
        f" && wget -c {shlex.quote(url)} -O {shlex.quote(target)}"
    )


def delete_command(path: str) -> str:
    return f"rm -rf {shlex.quote(check_path(path))}"


def mkdir_command(directory: str) -> str:
    return f"mkdir -p {shlex.quote(check_path(directory))}"


def unzip_command(archive_path: str, destination_dir: str) -> str:
    """``-o`` overwrites existing files, so re-extracting is harmless."""
    return (
        f"unzip -o {shlex.quote(check_path(archive_path))}"
        f" -d {shlex.quote(check_path(destination_dir))}"
    )


def exists_command(path: str) -> str:
    return f"[ -e {shlex.quote(check_path(path))} ]"


def with_pid_prefix(command: str) -> str:
    """Make the remote shell print its pid as the first stdout line.

    sshd runs each exec request in a new session, so that pid is also the
    process-group id of everything the command spawns.
    """
    return f"echo $$; {command}"


def kill_group_command(pid: int) -> str:
    if pid <= 1:
        raise UnsafeArgumentError(f"Refusing to signal pid {pid}")
    return f"kill -KILL -- -{int(pid)}"


# ── Output parsing ──


def split_lines(output: str) -> list[str]:
    """Non-empty, trimmed lines of a listing."""
    return [line.strip() for line in output.splitlines() if line.strip()]


def parse_progress(text: str) -> int | None:
    """Latest ``NN%`` value in a downloader diagnostic chunk, or None.

    wget prints lines such as ``  51200K .......... 42% 1.21M 3s``; a chunk
    can hold several of them, the last one is the most recent.
    """
    matches = _PROGRESS_RE.findall(text)
    if not matches:
        return None
    return max(0, min(100, int(matches[-1])))
