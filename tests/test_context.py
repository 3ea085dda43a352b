"""Tests for kiln.context - paths, jobs, macro loading and sealing."""
from __future__ import annotations

import os

import pytest

from kiln.errors import ContextError
from kiln.macros import ScriptRenderer
from kiln.recipe import Recipe

from conftest import make_recipe_data


class TestPaths:

    def test_derived_directories(self, make_context, tmp_path):
        ctx = make_context()
        root = str(tmp_path / "root")
        assert ctx.root_dir == root
        assert ctx.pkg_dir == os.path.join(root, "pkgdir")
        assert ctx.source_dir == os.path.join(root, "sourcedir")

    def test_root_change_moves_derived_paths(self, make_context, tmp_path):
        ctx = make_context()
        ctx.root_dir = str(tmp_path / "other")
        assert ctx.pkg_dir == str(tmp_path / "other" / "pkgdir")

    def test_output_directory_from_config(self, make_context, tmp_path):
        assert make_context().output_directory == str(tmp_path / "out")

    def test_spec_dir_defaults_to_recipe_location(self, make_context, write_recipe):
        path = write_recipe()
        ctx = make_context(recipe=Recipe.from_file(str(path)))
        assert ctx.spec_dir == str(path.parent)


class TestJobs:

    def test_configured_value(self, make_context):
        assert make_context().jobs == 2

    @pytest.mark.parametrize("value", [0, -1])
    def test_autodetect(self, make_context, value):
        ctx = make_context()
        ctx.jobs = value
        assert ctx.jobs == (os.cpu_count() or 1)
        assert ctx.jobs >= 1


class TestSealing:

    def test_setters_fail_after_seal(self, make_context, tmp_path):
        ctx = make_context()
        ctx.seal()
        assert ctx.sealed
        with pytest.raises(ContextError):
            ctx.jobs = 4
        with pytest.raises(ContextError):
            ctx.root_dir = str(tmp_path / "x")
        with pytest.raises(ContextError):
            ctx.output_directory = str(tmp_path / "y")
        with pytest.raises(ContextError):
            ctx.load_macros()

    def test_reads_still_work_after_seal(self, make_context):
        ctx = make_context()
        ctx.seal()
        assert ctx.jobs == 2
        assert ctx.recipe.name == "hello"


class TestMacroLoading:

    def test_native_platform(self, make_context, macro_dir):
        ctx = make_context()
        ctx.load_macros()
        assert ctx.macro_dir == macro_dir
        assert set(ctx.definition_files) == {"base", "x86_64"}
        assert list(ctx.action_files) == ["extra"]

    def test_emul32_platform(self, make_context, emul32_platform):
        ctx = make_context(platform=emul32_platform)
        ctx.load_macros()
        assert set(ctx.definition_files) == {"base", "x86_64", "emul32/x86_64"}

    def test_missing_base(self, make_context, macro_dir):
        (macro_dir / "base.yml").unlink()
        with pytest.raises(ContextError, match="base.yml"):
            make_context().load_macros()

    def test_missing_native(self, make_context, macro_dir):
        (macro_dir / "x86_64.yml").unlink()
        with pytest.raises(ContextError, match="x86_64.yml"):
            make_context().load_macros()

    def test_missing_emul32_only_matters_for_emul32(self, make_context, macro_dir, emul32_platform):
        (macro_dir / "emul32" / "x86_64.yml").unlink()
        make_context().load_macros()
        with pytest.raises(ContextError, match="emul32"):
            make_context(platform=emul32_platform).load_macros()

    def test_prepare_before_load(self, make_context):
        with pytest.raises(ContextError, match="load_macros"):
            make_context().prepare_scripts(ScriptRenderer(), "x86_64")


class TestPrepareScripts:

    def test_seed_keys(self, make_context):
        ctx = make_context()
        ctx.load_macros()
        r = ctx.prepare_scripts(ScriptRenderer(), "x86_64")
        assert r.process("%(name)-%(version)-%(release) j%(jobs)") == "hello-1.0-1 j2"
        assert r.definition("pkgdir") == ctx.pkg_dir
        assert r.definition("sourcedir") == ctx.source_dir

    def test_native_layering(self, make_context):
        ctx = make_context()
        ctx.load_macros()
        r = ctx.prepare_scripts(ScriptRenderer(), "x86_64")
        assert r.process("A=%(A), B=%(B)") == "A=2, B=3"
        assert r.process("%C") == "echo C"
        assert r.process("%(libdir)") == "/usr/lib"

    def test_emul32_layer_only_for_emul32_architecture(self, make_context, emul32_platform):
        ctx = make_context(platform=emul32_platform)
        ctx.load_macros()
        native = ctx.prepare_scripts(ScriptRenderer(), "x86_64")
        emul = ctx.prepare_scripts(ScriptRenderer(), "emul32/x86_64")
        assert native.process("%(libdir) %(B)") == "/usr/lib 3"
        assert emul.process("%(libdir) %(B)") == "/usr/lib32 32"

    def test_action_files_never_override_base(self, make_context):
        ctx = make_context()
        ctx.load_macros()
        r = ctx.prepare_scripts(ScriptRenderer(), "x86_64")
        assert r.process("%greet") == "echo hello from hello"

    def test_recipe_name_seeded(self, make_context):
        ctx = make_context(recipe=Recipe(make_recipe_data(name="nano", version="7.2", release=3)))
        ctx.load_macros()
        r = ctx.prepare_scripts(ScriptRenderer(), "x86_64")
        assert r.process("%(name)/%(version)/%(release)") == "nano/7.2/3"
