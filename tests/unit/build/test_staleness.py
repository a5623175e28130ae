"""Unit tests for timestamp staleness checks."""

import os
import time

from unibuild.build.staleness import any_newer, is_stale, mtime, needs_rebuild


def _touch(path, age=0.0):
    path.write_text(path.name)
    stamp = time.time() - age
    os.utime(path, (stamp, stamp))
    return path


class TestIsStale:
    """Tests for the object staleness rule."""

    def test_missing_output_is_stale(self, tmp_path):
        """Test that a missing output always needs a rebuild."""
        assert is_stale(time.time() - 100, tmp_path / "missing.o")

    def test_newer_source_is_stale(self, tmp_path):
        """Test that a source newer than its object invalidates it."""
        obj = _touch(tmp_path / "foo.o", age=100)
        assert is_stale(time.time(), obj)

    def test_older_source_is_fresh(self, tmp_path):
        """Test that an object newer than its source is reused."""
        obj = _touch(tmp_path / "foo.o", age=10)
        assert not is_stale(time.time() - 100, obj)

    def test_equal_mtime_is_fresh(self, tmp_path):
        """Test that equal timestamps don't force a rebuild."""
        obj = _touch(tmp_path / "foo.o", age=10)
        assert not is_stale(obj.stat().st_mtime, obj)

    def test_newer_compiler_is_stale(self, tmp_path):
        """Test that a compiler newer than the object invalidates it."""
        obj = _touch(tmp_path / "foo.o", age=10)
        assert is_stale(time.time() - 100, obj, compiler_mtime=time.time())

    def test_older_compiler_is_fresh(self, tmp_path):
        obj = _touch(tmp_path / "foo.o", age=10)
        assert not is_stale(time.time() - 100, obj, compiler_mtime=time.time() - 200)


class TestNeedsRebuild:
    """Tests for the path-based variant."""

    def test_paths(self, tmp_path):
        source = _touch(tmp_path / "foo.rb", age=100)
        obj = _touch(tmp_path / "foo.rb.o", age=50)
        compiler = _touch(tmp_path / "compiler", age=200)

        assert not needs_rebuild(source, obj, compiler)

        _touch(compiler)
        assert needs_rebuild(source, obj, compiler)

    def test_missing_compiler_is_ignored(self, tmp_path):
        """Test that a compiler path that doesn't exist doesn't invalidate."""
        source = _touch(tmp_path / "foo.rb", age=100)
        obj = _touch(tmp_path / "foo.rb.o", age=50)
        assert not needs_rebuild(source, obj, tmp_path / "nope")


class TestAnyNewer:
    """Tests for dependency checks used by merge and link."""

    def test_missing_output(self, tmp_path):
        dep = _touch(tmp_path / "dep")
        assert any_newer(tmp_path / "exe", [dep])

    def test_all_older(self, tmp_path):
        exe = _touch(tmp_path / "exe", age=10)
        deps = [_touch(tmp_path / f"dep{i}", age=100) for i in range(3)]
        assert not any_newer(exe, deps)

    def test_one_newer(self, tmp_path):
        exe = _touch(tmp_path / "exe", age=10)
        deps = [_touch(tmp_path / "old", age=100), _touch(tmp_path / "new")]
        assert any_newer(exe, deps)

    def test_missing_inputs_are_ignored(self, tmp_path):
        """Test that optional dependencies that don't exist don't force a relink."""
        exe = _touch(tmp_path / "exe", age=10)
        assert not any_newer(exe, [tmp_path / "missing.a"])


def test_mtime_missing_file(tmp_path):
    assert mtime(tmp_path / "missing") is None
