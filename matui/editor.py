"""External processes: ``$EDITOR`` for messages and a file picker for uploads."""
from __future__ import annotations

import asyncio
import contextlib
import logging
import os
import shlex
import tempfile
from pathlib import Path
from typing import List, Optional

from matui.errors import EditorError, PickerError

logger = logging.getLogger("matui.editor")


def editor_command(path: Path, existing: Optional[str], clear_vim: bool, editor: Optional[str] = None) -> List[str]:
    editor = editor or os.environ.get("EDITOR", "")
    if not editor:
        raise EditorError("EDITOR is not set")
    argv = shlex.split(editor)
    name = Path(argv[0]).name
    if clear_vim and (name.endswith("vim") or name == "vi"):
        if existing is None:
            # new message: start in insert mode, Enter saves and quits
            argv += ["+star", "-c", "imap <C-M> <esc>:wq<enter>"]
        argv += ["-c", "set wrap linebreak nolist"]
    argv.append(str(path))
    return argv


async def edit_text(
    existing: Optional[str] = None,
    clear_vim: bool = False,
    editor: Optional[str] = None,
) -> Optional[str]:
    """Open *existing* (or an empty buffer) in the editor and return the result.

    Returns None when the saved text is blank. Raises ``EditorError`` if the
    editor cannot start or exits nonzero. Cancelling the awaiting task kills
    the editor. The temporary file is removed on every path.
    """
    fd, name = tempfile.mkstemp(suffix=".md", prefix="matui-")
    path = Path(name)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            if existing:
                f.write(existing)
        argv = editor_command(path, existing, clear_vim, editor)
        logger.debug("launching editor: %s", argv[0])
        try:
            proc = await asyncio.create_subprocess_exec(*argv)
        except OSError as e:
            raise EditorError(f"could not start {argv[0]}: {e}") from e
        try:
            status = await proc.wait()
        except asyncio.CancelledError:
            with contextlib.suppress(ProcessLookupError):
                proc.kill()
            await proc.wait()
            raise
        if status != 0:
            raise EditorError(f"editor exited with status {status}")
        text = path.read_text(encoding="utf-8")
    finally:
        with contextlib.suppress(FileNotFoundError):
            path.unlink()
    text = text.rstrip()
    return text or None


async def pick_files(command: str, cwd: Optional[Path] = None) -> List[Path]:
    """Run the file picker and return the files it printed, one per line.

    The picker draws on the terminal and writes its selection to stdout.
    A nonzero exit or an empty selection means the user cancelled and yields
    an empty list. Cancelling the awaiting task kills the picker.
    """
    argv = shlex.split(command)
    if not argv:
        raise PickerError("no file picker configured")
    base = cwd or Path.cwd()
    logger.debug("launching file picker: %s", argv[0])
    try:
        proc = await asyncio.create_subprocess_exec(*argv, stdout=asyncio.subprocess.PIPE, cwd=base)
    except OSError as e:
        raise PickerError(f"could not start {argv[0]}: {e}") from e
    try:
        out, _ = await proc.communicate()
    except asyncio.CancelledError:
        with contextlib.suppress(ProcessLookupError):
            proc.kill()
        await proc.wait()
        raise
    if proc.returncode != 0:
        logger.info("file picker exited with status %s", proc.returncode)
        return []

    paths: List[Path] = []
    for line in out.decode("utf-8", errors="replace").splitlines():
        line = line.strip()
        if not line:
            continue
        path = (base / Path(line).expanduser()).resolve()
        if path.is_file():
            paths.append(path)
        else:
            logger.warning("picker returned %s, which is not a file", line)
    return paths
