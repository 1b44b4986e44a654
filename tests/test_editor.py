"""Tests for the external editor round trip."""
import asyncio
import stat
from pathlib import Path

import pytest

from matui.editor import edit_text, editor_command, pick_files
from matui.errors import EditorError, PickerError


def fake_editor(tmp_path: Path, body: str) -> str:
    """Write a shell script that records its file argument, then runs *body*."""
    script = tmp_path / "fake-editor"
    script.write_text(
        "#!/bin/sh\n"
        f'echo "$1" > "{tmp_path}/seen"\n'
        f"{body}\n",
        encoding="utf-8",
    )
    script.chmod(script.stat().st_mode | stat.S_IXUSR)
    return str(script)


def seen_path(tmp_path: Path) -> Path:
    return Path((tmp_path / "seen").read_text().strip())


class TestEditorCommand:
    def test_plain_editor(self):
        assert editor_command(Path("/tmp/x.md"), None, True, "nano") == ["nano", "/tmp/x.md"]

    def test_editor_with_arguments(self):
        argv = editor_command(Path("/tmp/x.md"), None, False, "code --wait")
        assert argv == ["code", "--wait", "/tmp/x.md"]

    def test_vim_new_message(self):
        argv = editor_command(Path("/tmp/x.md"), None, True, "/usr/bin/nvim")
        assert argv[1:3] == ["+star", "-c"]
        assert "imap <C-M> <esc>:wq<enter>" in argv
        assert "set wrap linebreak nolist" in argv
        assert argv[-1] == "/tmp/x.md"

    def test_vim_edit_skips_insert_mapping(self):
        argv = editor_command(Path("/tmp/x.md"), "old", True, "vim")
        assert "+star" not in argv
        assert "set wrap linebreak nolist" in argv

    def test_vim_untouched_without_clear_vim(self):
        assert editor_command(Path("/tmp/x.md"), None, False, "vim") == ["vim", "/tmp/x.md"]

    def test_missing_editor(self, monkeypatch):
        monkeypatch.delenv("EDITOR", raising=False)
        with pytest.raises(EditorError):
            editor_command(Path("/tmp/x.md"), None, False)


class TestEditText:
    @pytest.mark.asyncio
    async def test_returns_written_text(self, tmp_path):
        editor = fake_editor(tmp_path, "printf 'hello\\n\\n' > \"$1\"")
        assert await edit_text(editor=editor) == "hello"
        assert not seen_path(tmp_path).exists()
        assert seen_path(tmp_path).suffix == ".md"

    @pytest.mark.asyncio
    async def test_existing_text_is_prefilled(self, tmp_path):
        editor = fake_editor(tmp_path, "printf ' world' >> \"$1\"")
        assert await edit_text("hello", editor=editor) == "hello world"

    @pytest.mark.asyncio
    async def test_blank_text_is_none(self, tmp_path):
        editor = fake_editor(tmp_path, "printf '  \\n' > \"$1\"")
        assert await edit_text(editor=editor) is None

    @pytest.mark.asyncio
    async def test_nonzero_exit_raises(self, tmp_path):
        editor = fake_editor(tmp_path, "exit 3")
        with pytest.raises(EditorError):
            await edit_text(editor=editor)
        assert not seen_path(tmp_path).exists()

    @pytest.mark.asyncio
    async def test_unstartable_editor_raises(self, tmp_path):
        with pytest.raises(EditorError):
            await edit_text(editor=str(tmp_path / "does-not-exist"))

    @pytest.mark.asyncio
    async def test_cancel_kills_editor(self, tmp_path):
        editor = fake_editor(tmp_path, "sleep 30")
        task = asyncio.create_task(edit_text(editor=editor))
        await asyncio.sleep(0.3)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await asyncio.wait_for(task, timeout=5)
        assert not seen_path(tmp_path).exists()


def fake_picker(tmp_path: Path, body: str) -> str:
    script = tmp_path / "fake-picker"
    script.write_text(f"#!/bin/sh\n{body}\n", encoding="utf-8")
    script.chmod(script.stat().st_mode | stat.S_IXUSR)
    return str(script)


class TestPickFiles:
    @pytest.mark.asyncio
    async def test_returns_printed_files(self, tmp_path):
        (tmp_path / "cat.png").write_bytes(b"png")
        (tmp_path / "doc.pdf").write_bytes(b"pdf")
        picker = fake_picker(tmp_path, f"echo cat.png; echo; echo {tmp_path}/doc.pdf")
        paths = await pick_files(picker, cwd=tmp_path)
        assert paths == [(tmp_path / "cat.png").resolve(), (tmp_path / "doc.pdf").resolve()]

    @pytest.mark.asyncio
    async def test_missing_files_are_skipped(self, tmp_path):
        (tmp_path / "real.txt").write_text("x")
        picker = fake_picker(tmp_path, "echo ghost.txt; echo real.txt")
        assert await pick_files(picker, cwd=tmp_path) == [(tmp_path / "real.txt").resolve()]

    @pytest.mark.asyncio
    async def test_nonzero_exit_is_a_cancel(self, tmp_path):
        (tmp_path / "cat.png").write_bytes(b"png")
        picker = fake_picker(tmp_path, "echo cat.png; exit 130")
        assert await pick_files(picker, cwd=tmp_path) == []

    @pytest.mark.asyncio
    async def test_unstartable_picker_raises(self, tmp_path):
        with pytest.raises(PickerError):
            await pick_files(str(tmp_path / "does-not-exist"), cwd=tmp_path)

    @pytest.mark.asyncio
    async def test_empty_command_raises(self, tmp_path):
        with pytest.raises(PickerError):
            await pick_files("  ", cwd=tmp_path)

    @pytest.mark.asyncio
    async def test_cancel_kills_picker(self, tmp_path):
        picker = fake_picker(tmp_path, f"sleep 30; echo done > {tmp_path}/finished")
        task = asyncio.create_task(pick_files(picker, cwd=tmp_path))
        await asyncio.sleep(0.3)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await asyncio.wait_for(task, timeout=5)
        assert not (tmp_path / "finished").exists()
