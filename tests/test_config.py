"""Tests for settings loading and hot reload."""
import asyncio
import os

import pytest

from matui.config import DEFAULT_REACTIONS, ConfigWatcher, Settings, ensure_config, load_settings
from matui.errors import ConfigError
from matui.notices import ConfigRejected, ConfigReloaded


def write(path, content, bump=0):
    path.write_text(content, encoding="utf-8")
    if bump:
        st = path.stat()
        os.utime(path, ns=(st.st_atime_ns, st.st_mtime_ns + bump))


class TestLoad:
    def test_ensure_config_writes_default(self, tmp_path):
        path = tmp_path / "sub" / "config.toml"
        ensure_config(path)
        assert load_settings(path).reactions == DEFAULT_REACTIONS

    def test_ensure_config_keeps_existing(self, tmp_path):
        path = tmp_path / "config.toml"
        write(path, 'reactions = ["🎉"]\n')
        ensure_config(path)
        assert load_settings(path).reactions == ["🎉"]

    def test_all_options(self, tmp_path):
        path = tmp_path / "config.toml"
        write(path, "\n".join([
            'reactions = ["a", "b", "a"]',
            'muted = ["!x:example.org"]',
            "clean_vim = true",
            "blur_delay = 30",
            "max_events = 100",
            "page_size = 5",
            "search_depth = 50",
            "search_newest_first = false",
            "search_regex = true",
        ]))
        s = load_settings(path)
        assert s.reactions == ["a", "b"]
        assert s.muted == {"!x:example.org"}
        assert s.clear_vim is True
        assert (s.blur_delay, s.max_events, s.page_size, s.search_depth) == (30, 100, 5, 50)
        assert not s.search_newest_first
        assert s.search_regex

    def test_unknown_keys_are_ignored(self, tmp_path):
        path = tmp_path / "config.toml"
        write(path, 'theme = "dark"\n')
        assert load_settings(path) == Settings()

    @pytest.mark.parametrize("content", [
        "reactions = [",
        "reactions = []",
        "page_size = 0",
        'blur_delay = "soon"',
    ])
    def test_invalid_files_raise(self, tmp_path, content):
        path = tmp_path / "config.toml"
        write(path, content)
        with pytest.raises(ConfigError):
            load_settings(path)

    def test_missing_file_raises(self, tmp_path):
        with pytest.raises(ConfigError):
            load_settings(tmp_path / "nope.toml")


class TestWatcher:
    @pytest.mark.asyncio
    async def test_unchanged_file_is_not_reloaded(self, tmp_path):
        path = tmp_path / "config.toml"
        write(path, 'reactions = ["a"]\n')
        published = []

        async def publish(m):
            published.append(m)

        watcher = ConfigWatcher(publish, path)
        assert await watcher.check() is False
        assert published == []

    @pytest.mark.asyncio
    async def test_reload_and_reject(self, tmp_path):
        path = tmp_path / "config.toml"
        write(path, 'reactions = ["a"]\n')
        published = []

        async def publish(m):
            published.append(m)

        watcher = ConfigWatcher(publish, path)
        write(path, 'reactions = ["b"]\nmax_events = 10\n', bump=1_000_000)
        assert await watcher.check() is True
        assert isinstance(published[-1], ConfigReloaded)
        assert published[-1].settings.max_events == 10

        write(path, "reactions = [", bump=2_000_000)
        assert await watcher.check() is True
        assert isinstance(published[-1], ConfigRejected)
        assert "config.toml" in published[-1].error

    @pytest.mark.asyncio
    async def test_run_stops(self, tmp_path):
        path = tmp_path / "config.toml"
        write(path, "")
        seen = []

        async def publish(m):
            seen.append(m)

        watcher = ConfigWatcher(publish, path, interval=0.01)
        task = asyncio.create_task(watcher.run())
        await asyncio.sleep(0.03)
        watcher.stop()
        await asyncio.wait_for(task, timeout=1)
        assert seen == []
