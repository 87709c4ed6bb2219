"""Tests for configuration bundles and cookbook lookup."""

from pathlib import Path

import pytest

from chef_run.bundle import ConfigurationBundle, render_resource, ruby_literal
from chef_run.exceptions import CookbookNotFound, RecipeNotFound
from chef_run.recipe_lookup import RecipeLookup, cookbook_name


def make_cookbook(root: Path, name: str, recipes=("default",), metadata_name: str | None = None) -> Path:
    path = root / name
    (path / "recipes").mkdir(parents=True)
    (path / "metadata.rb").write_text(f"name '{metadata_name or name}'\nversion '1.0.0'\n")
    for recipe in recipes:
        (path / "recipes" / f"{recipe}.rb").write_text(f"log '{recipe}'\n")
    return path


class TestRubyRendering:
    """Tests for ruby_literal and render_resource."""

    @pytest.mark.parametrize(
        "value,expected",
        [
            (None, "nil"),
            (True, "true"),
            (False, "false"),
            (42, "42"),
            (1.5, "1.5"),
            ("it's", "'it\\'s'"),
            (["a", 1], "['a', 1]"),
            ({"k": "v"}, "{'k' => 'v'}"),
        ],
    )
    def test_ruby_literal(self, value, expected):
        assert ruby_literal(value) == expected

    def test_render_resource(self):
        """Test properties render in order with action as a symbol."""
        text = render_resource("user", "jdoe", {"uid": 1001, "manage_home": True, "action": "create"})
        assert text == "user 'jdoe' do\n  uid 1001\n  manage_home true\n  action :create\nend\n"


class TestConfigurationBundle:
    """Tests for ConfigurationBundle."""

    def test_from_resource(self):
        bundle = ConfigurationBundle.from_resource("package", "nginx", {"action": "upgrade"})
        try:
            assert bundle.run_list == "recipe[cw_package::default]"
            assert bundle.policy_name == "cw-package-default"
            recipe = bundle.cookbook_path / "recipes" / "default.rb"
            assert recipe.read_text() == "package 'nginx' do\n  action :upgrade\nend\n"
            assert "name 'cw_package'" in (bundle.cookbook_path / "metadata.rb").read_text()
        finally:
            bundle.delete()

    def test_recipe_in_cookbook_brings_cookbook(self, tmp_path):
        """Test a cookbook recipe copies the whole cookbook."""
        cookbook = make_cookbook(tmp_path, "webserver", recipes=("default", "install"))
        (cookbook / "templates").mkdir()
        (cookbook / "templates" / "site.erb").write_text("<%= @x %>")

        bundle = ConfigurationBundle.from_existing_recipe(cookbook / "recipes" / "install.rb")
        try:
            assert bundle.run_list == "recipe[webserver::install]"
            assert (bundle.cookbook_path / "templates" / "site.erb").exists()
        finally:
            bundle.delete()

    def test_metadata_name_wins(self, tmp_path):
        cookbook = make_cookbook(tmp_path, "checkout-dir", metadata_name="real_name")
        bundle = ConfigurationBundle.from_existing_recipe(cookbook / "recipes" / "default.rb")
        try:
            assert bundle.cookbook == "real_name"
        finally:
            bundle.delete()

    def test_standalone_recipe_wrapped(self, tmp_path):
        recipe = tmp_path / "setup.rb"
        recipe.write_text("package 'git'\n")
        bundle = ConfigurationBundle.from_existing_recipe(recipe)
        try:
            assert bundle.run_list == "recipe[cw_recipe::default]"
            assert (bundle.cookbook_path / "recipes" / "default.rb").read_text() == "package 'git'\n"
        finally:
            bundle.delete()

    def test_delete_is_idempotent(self):
        bundle = ConfigurationBundle.from_resource("file", "/tmp/x")
        bundle.delete()
        bundle.delete()
        assert bundle.deleted
        assert not bundle.path.exists()


class TestRecipeLookup:
    """Tests for RecipeLookup."""

    @pytest.mark.parametrize(
        "spec,expected",
        [
            ("nginx", ("nginx", None)),
            ("nginx::install", ("nginx", "install")),
            ("nginx::", ("nginx", None)),
        ],
    )
    def test_split(self, spec, expected):
        assert RecipeLookup.split(spec) == expected

    def test_load_by_path(self, tmp_path):
        path = make_cookbook(tmp_path, "nginx")
        assert RecipeLookup().load_cookbook(str(path)).name == "nginx"

    def test_load_from_repo_paths(self, tmp_path):
        """Test both repo layouts are searched in order."""
        make_cookbook(tmp_path / "first", "nginx")
        make_cookbook(tmp_path / "second" / "cookbooks", "redis")
        lookup = RecipeLookup([str(tmp_path / "first"), str(tmp_path / "second")])
        assert lookup.load_cookbook("nginx").path == (tmp_path / "first" / "nginx").resolve()
        assert lookup.load_cookbook("redis").name == "redis"

    def test_cookbook_not_found(self, tmp_path):
        with pytest.raises(CookbookNotFound):
            RecipeLookup([str(tmp_path)]).load_cookbook("missing")

    def test_default_recipe(self, tmp_path):
        lookup = RecipeLookup([str(tmp_path)])
        make_cookbook(tmp_path, "nginx")
        cookbook = lookup.load_cookbook("nginx")
        assert lookup.find_recipe(cookbook).name == "default.rb"

    def test_recipe_not_found_lists_available(self, tmp_path):
        make_cookbook(tmp_path, "nginx", recipes=("default", "install"))
        lookup = RecipeLookup([str(tmp_path)])
        with pytest.raises(RecipeNotFound) as exc_info:
            lookup.find_recipe(lookup.load_cookbook("nginx"), "remove")
        assert "install" in str(exc_info.value.context.to_dict())

    def test_cookbook_name_without_metadata(self, tmp_path):
        (tmp_path / "plain").mkdir()
        assert cookbook_name(tmp_path / "plain") == "plain"
