"""In-runtime capability guard for untrusted Python programs.

This file runs as a standalone script inside the child interpreter:

    python -I guard.py '<policy json>' /path/to/Main.py [args...]

It installs an audit hook before the program executes and then hands control
to the program through ``runpy``. It only depends on the standard library, so
the child never imports the rest of the package, and it owns
``CapabilityViolation`` for the same reason: the class is raised inside the
child and caught on the host when the source screen rejects a submission.

Notes:
- Audit hooks cannot be removed once installed, and adding further hooks is
  itself denied.
- The program shares the interpreter with the hook. Every value and helper
  the hook consults is bound when the hook is built, the hook never calls
  back into objects the program supplied, and the object graph walkers that
  could reach the hook are vetoed.
- This is best-effort. It narrows what the program can reach from inside the
  runtime; OS-level limits are applied separately by the launcher.
"""

from __future__ import annotations

import json
import os
import runpy
import stat
import sys
import sysconfig
from typing import Any, Callable, Iterable


class CapabilityViolation(PermissionError):
    """An operation was denied by the sandbox capability policy."""


AuditHook = Callable[[str, "tuple[Any, ...]"], None]

_PROCESS_EVENTS = frozenset(
    {
        "subprocess.Popen",
        "os.system",
        "os.exec",
        "os.fork",
        "os.forkpty",
        "os.posix_spawn",
        "os.spawn",
        "os.startfile",
        "pty.spawn",
        "os.kill",
        "os.killpg",
    }
)

_NETWORK_EVENTS = frozenset(
    {
        "socket.__new__",
        "socket.bind",
        "socket.connect",
        "socket.getaddrinfo",
        "socket.gethostbyname",
        "socket.gethostbyaddr",
        "socket.sendto",
    }
)

_RUNTIME_EVENTS = frozenset(
    {
        "sys.addaudithook",
        "sys._current_frames",
        "gc.get_objects",
        "gc.get_referrers",
        "gc.get_referents",
        "ctypes.dlopen",
        "ctypes.dlsym",
        "ctypes.cdata",
    }
)

_BLOCKED_IMPORTS = frozenset({"_posixsubprocess", "_ctypes", "_winapi"})

_ONE_PATH_EVENTS = frozenset(
    {
        "os.chmod",
        "os.chown",
        "os.mkdir",
        "os.remove",
        "os.rmdir",
        "os.truncate",
        "os.utime",
        "shutil.rmtree",
    }
)

_TWO_PATH_EVENTS = frozenset({"os.rename", "os.link", "os.symlink", "shutil.copyfile"})

_LISTING_EVENTS = frozenset({"os.listdir", "os.scandir"})

_DEVICE_PATHS = frozenset({"/dev/null", "/dev/random", "/dev/urandom"})

_WRITE_FLAGS = os.O_WRONLY | os.O_RDWR | os.O_APPEND | os.O_CREAT | os.O_TRUNC

_MAX_SYMLINKS = 40


def _text_path(
    path: Any,
    *,
    _type=type,
    _str=str,
    _bytes=bytes,
    _int=int,
    _Violation=CapabilityViolation,
) -> str | None:
    """Return ``path`` as an exact ``str``, or None for a file descriptor.

    Path-like objects are refused rather than converted: ``__fspath__`` would
    run program code while the hook is on the stack.
    """
    kind = _type(path)
    if kind is _str:
        return path
    if kind is _bytes:
        return _bytes.decode(path, "utf-8", "surrogateescape")
    if kind is _int:
        return None
    if path is None:
        return "."
    raise _Violation("unsupported path type denied")


def _resolve(
    path: str,
    *,
    _cwd=os.getcwd,
    _lstat=os.lstat,
    _readlink=os.readlink,
    _is_link=stat.S_ISLNK,
    _limit=_MAX_SYMLINKS,
    _OSError=OSError,
    _Violation=CapabilityViolation,
) -> str:
    """Absolute path of ``path`` with every symlink followed.

    Same result as ``os.path.realpath`` in non-strict mode, built only from
    C-level primitives so rebinding ``os.path`` attributes has no effect.
    """
    if not path.startswith("/"):
        path = _cwd() + "/" + path
    pending = path.split("/")
    pending.reverse()
    resolved: list[str] = []
    links = 0
    while pending:
        name = pending.pop()
        if name == "" or name == ".":
            continue
        if name == "..":
            if resolved:
                resolved.pop()
            continue
        resolved.append(name)
        candidate = "/" + "/".join(resolved)
        try:
            mode = _lstat(candidate).st_mode
        except _OSError:
            continue
        if not _is_link(mode):
            continue
        links += 1
        if links > _limit:
            raise _Violation(f"too many symbolic links: {path}")
        target = _readlink(candidate)
        resolved.pop()
        if target.startswith("/"):
            resolved.clear()
        parts = target.split("/")
        parts.reverse()
        pending.extend(parts)
    return "/" + "/".join(resolved)


def _prefix(root: str) -> str:
    return root if root.endswith("/") else root + "/"


def _is_write(mode: Any, flags: Any, *, _type=type, _str=str, _int=int, _flags=_WRITE_FLAGS) -> bool:
    if mode is None:
        return _type(flags) is _int and (flags & _flags) != 0
    if _type(mode) is _str:
        for ch in "wax+":
            if ch in mode:
                return True
        return False
    return True


def build_guard(
    workspace: str,
    read_roots: Iterable[str] = (),
    list_roots: Iterable[str] = (),
) -> AuditHook:
    """Build the audit hook vetoing file, process, network and runtime escapes.

    Writes are only allowed inside ``workspace``. Reads are allowed inside the
    workspace and under ``read_roots``. Directories in ``list_roots`` may be
    listed but not read, so the import system can scan its search path.

    The roots are resolved here and bound, with every helper the hook calls,
    as default arguments of the returned function. Rebinding module globals,
    builtins or stdlib attributes afterwards does not change its decisions.
    """
    home = _prefix(_resolve(workspace))
    readable = tuple(_prefix(_resolve(root)) for root in read_roots if root)
    listable = frozenset(_resolve(root) for root in list_roots if root)

    def audit_hook(
        event: str,
        args: tuple[Any, ...],
        *,
        _home=home,
        _readable=readable,
        _listable=listable,
        _process=_PROCESS_EVENTS,
        _network=_NETWORK_EVENTS,
        _runtime=_RUNTIME_EVENTS,
        _imports=_BLOCKED_IMPORTS,
        _one=_ONE_PATH_EVENTS,
        _two=_TWO_PATH_EVENTS,
        _listing=_LISTING_EVENTS,
        _devices=_DEVICE_PATHS,
        _text=_text_path,
        _resolve=_resolve,
        _is_write=_is_write,
        _type=type,
        _str=str,
        _Violation=CapabilityViolation,
    ) -> None:
        if event in _process:
            raise _Violation(f"process control denied: {event}")
        if event in _network:
            raise _Violation(f"network access denied: {event}")
        if event in _runtime:
            raise _Violation(f"runtime manipulation denied: {event}")
        if event == "import":
            name = args[0] if args else None
            if _type(name) is _str and name in _imports:
                raise _Violation(f"import denied: {name}")
            return

        listing = False
        if event == "open":
            mode = args[1] if args[1:] else None
            flags = args[2] if args[2:] else None
            paths, write = args[:1], _is_write(mode, flags)
        elif event in _one:
            paths, write = args[:1], True
        elif event in _two:
            paths, write = args[:2], True
        elif event in _listing:
            paths, write, listing = args[:1] or (None,), False, True
        else:
            return

        for path in paths:
            text = _text(path)
            if text is None:  # already-open descriptor
                continue
            target = _resolve(text)
            if target in _devices or (target + "/").startswith(_home):
                continue
            if not write:
                if listing and target in _listable:
                    continue
                allowed = False
                for root in _readable:
                    if (target + "/").startswith(root):
                        allowed = True
                        break
                if allowed:
                    continue
            action = "write" if write else "read"
            raise _Violation(f"file {action} outside workspace denied: {target}")

    return audit_hook


def _stdlib_roots() -> list[str]:
    """Standard library locations only; site-packages and this package stay unreadable."""
    roots = {
        sysconfig.get_path("stdlib"),
        sysconfig.get_path("platstdlib"),
        os.path.dirname(os.__file__),
    }
    roots.update(entry for entry in sys.path if entry.endswith(".zip"))
    return sorted(root for root in roots if root)


def main(argv: list[str] | None = None) -> None:
    args = list(sys.argv[1:] if argv is None else argv)
    if len(args) < 2:
        sys.stderr.write("usage: guard.py POLICY PROGRAM [ARGS...]\n")
        raise SystemExit(2)

    policy = json.loads(args[0])
    program = os.path.abspath(args[1])
    sys.argv = [program, *args[2:]]
    # the hook is never bound to a name the program could reach
    sys.addaudithook(
        build_guard(
            policy["workspace"],
            [*policy.get("read_roots", []), *_stdlib_roots()],
            [entry for entry in sys.path if entry],
        )
    )
    del policy
    runpy.run_path(program, run_name="__main__")


if __name__ == "__main__":
    main()
