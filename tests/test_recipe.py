"""Tests for kiln.recipe - stone.yml parsing."""
from __future__ import annotations

import pytest

from kiln.errors import RecipeError
from kiln.recipe import Recipe

from conftest import make_recipe_data


class TestRecipe:

    def test_from_file(self, write_recipe):
        r = Recipe.from_file(str(write_recipe(builddeps=["pkgconfig(zlib)"], checkdeps=["python"])))
        assert (r.name, r.version, r.release) == ("hello", "1.0", 1)
        assert r.license == ["MIT"]
        assert r.toolchain == "gnu"
        assert r.architectures == ["native"]
        assert r.build_dependencies == ["pkgconfig(zlib)"]
        assert r.check_dependencies == ["python"]

    @pytest.mark.parametrize("missing", ["name", "version", "release"])
    def test_required_fields(self, missing):
        data = make_recipe_data()
        del data[missing]
        with pytest.raises(RecipeError, match=missing):
            Recipe(data)

    def test_release_must_be_int(self):
        with pytest.raises(RecipeError, match="integer"):
            Recipe(make_recipe_data(release="one"))

    def test_invalid_yaml(self, tmp_path):
        path = tmp_path / "stone.yml"
        path.write_text("name: [broken\n", encoding="utf-8")
        with pytest.raises(RecipeError, match="Invalid YAML"):
            Recipe.from_file(str(path))

    def test_emul32_adds_architecture(self):
        r = Recipe(make_recipe_data(emul32=True))
        assert r.architectures == ["native", "emul32"]
        assert r.supported_architecture("emul32")

    def test_upstream_forms(self):
        r = Recipe(make_recipe_data(upstreams=[
            {"https://example.org/a-1.0.tar.gz?x=1": "abc123"},
            {"https://example.org/b.tar.gz": {"hash": "def456", "rename": "b-src.tar.gz", "unpack": False}},
            {"git|https://example.org/c.git": {"ref": "v1"}},
        ]))
        a, b, c = r.upstreams
        assert a.filename == "a-1.0.tar.gz" and a.unpack
        assert b.filename == "b-src.tar.gz" and not b.unpack
        assert c.type == "git" and c.uri == "https://example.org/c.git"
        assert [u.uri for u in r.plain_upstreams()] == [a.uri, b.uri]

    def test_upstream_without_hash(self):
        with pytest.raises(RecipeError, match="missing hash"):
            Recipe(make_recipe_data(upstreams=[{"https://example.org/a.tar.gz": None}]))

    def test_build_for_overrides(self):
        r = Recipe(make_recipe_data(build="make", install="make install", profiles=[
            {"emul32": {"build": "make m32"}},
            {"aarch64": {"install": "make install-arm"}},
        ]))
        assert r.build_for("x86_64").build == "make"
        assert r.build_for("emul32/x86_64").build == "make m32"
        assert r.build_for("emul32/x86_64").install == "make install"
        assert r.build_for("aarch64").install == "make install-arm"

    def test_subpackages(self):
        r = Recipe(make_recipe_data(packages=[
            {"%(name)-devel": {"summary": "Development files", "paths": ["/usr/include"]}},
        ]))
        [sub] = r.packages
        assert sub.name == "hello-devel"
        assert sub.paths == ["/usr/include"]
        assert r.package_summary("hello-devel") == "Development files"
        assert r.package_summary("hello") == "Hello world"
