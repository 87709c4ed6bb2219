"""Local configuration bundles pushed to targets.

A bundle is a temporary chef repository holding a single cookbook under
``cookbooks/<name>``. It is built once before any job starts, read by
every converger, and deleted once after all jobs finish.

Example:
    >>> bundle = ConfigurationBundle.from_resource("package", "nginx", {"action": "upgrade"})
    >>> bundle.run_list
    'recipe[cw_package::default]'
    >>> bundle.delete()
"""

import logging
import shutil
import tempfile
from pathlib import Path
from typing import Any

from .recipe_lookup import cookbook_name, is_cookbook

logger = logging.getLogger(__name__)

GENERATED_VERSION = "0.1.0"
RECIPE_COOKBOOK = "cw_recipe"


def ruby_literal(value: Any) -> str:
    """Render a Python value as a Ruby literal."""
    if value is None:
        return "nil"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return repr(value)
    if isinstance(value, (list, tuple)):
        return "[" + ", ".join(ruby_literal(v) for v in value) + "]"
    if isinstance(value, dict):
        pairs = ", ".join(f"{ruby_literal(k)} => {ruby_literal(v)}" for k, v in value.items())
        return "{" + pairs + "}"
    escaped = str(value).replace("\\", "\\\\").replace("'", "\\'")
    return f"'{escaped}'"


def render_resource(resource_type: str, resource_name: str, properties: dict[str, Any]) -> str:
    """Render one resource block for a recipe file."""
    lines = [f"{resource_type} {ruby_literal(resource_name)} do"]
    for key, value in properties.items():
        if key == "action":
            lines.append(f"  action :{value}")
        else:
            lines.append(f"  {key} {ruby_literal(value)}")
    lines.append("end")
    return "\n".join(lines) + "\n"


def _metadata(name: str) -> str:
    return f"name '{name}'\nversion '{GENERATED_VERSION}'\n"


class ConfigurationBundle:
    """A temporary chef repository with one cookbook and its run list.

    Attributes:
        path: Root of the temporary repository
        cookbook: Name of the cookbook in the bundle
        recipe: Recipe to run
    """

    def __init__(self, path: Path, cookbook: str, recipe: str):
        self.path = Path(path)
        self.cookbook = cookbook
        self.recipe = recipe
        self.deleted = False

    def __repr__(self) -> str:
        return f"ConfigurationBundle({self.run_list}, path={self.path})"

    @property
    def policy_name(self) -> str:
        return f"{self.cookbook}-{self.recipe}".replace("_", "-")

    @property
    def run_list(self) -> str:
        return f"recipe[{self.cookbook}::{self.recipe}]"

    @property
    def cookbook_path(self) -> Path:
        return self.path / "cookbooks" / self.cookbook

    @classmethod
    def _workspace(cls) -> Path:
        return Path(tempfile.mkdtemp(prefix="chef-run-"))

    @classmethod
    def from_existing_recipe(cls, recipe_path: Path) -> "ConfigurationBundle":
        """Bundle a recipe file.

        A recipe inside a cookbook (``<cookbook>/recipes/<name>.rb``) brings
        its whole cookbook along so that templates, files and attributes
        are available. A standalone recipe is wrapped in a generated
        cookbook as its default recipe.
        """
        recipe_path = Path(recipe_path).expanduser().resolve()
        root = cls._workspace()
        candidate = recipe_path.parent.parent
        if recipe_path.parent.name == "recipes" and is_cookbook(candidate):
            name = cookbook_name(candidate)
            shutil.copytree(candidate, root / "cookbooks" / name, ignore=shutil.ignore_patterns(".git"))
            bundle = cls(root, name, recipe_path.stem)
        else:
            bundle = cls(root, RECIPE_COOKBOOK, "default")
            bundle._write_cookbook(recipe_path.read_text())
        logger.debug("Bundled %s as %s", recipe_path, bundle.run_list)
        return bundle

    @classmethod
    def from_resource(
        cls, resource_type: str, resource_name: str, properties: dict[str, Any] | None = None
    ) -> "ConfigurationBundle":
        """Bundle a single resource as the default recipe of a generated cookbook."""
        bundle = cls(cls._workspace(), f"cw_{resource_type}", "default")
        bundle._write_cookbook(render_resource(resource_type, resource_name, properties or {}))
        logger.debug("Bundled %s[%s] as %s", resource_type, resource_name, bundle.run_list)
        return bundle

    def _write_cookbook(self, recipe_text: str) -> None:
        recipes = self.cookbook_path / "recipes"
        recipes.mkdir(parents=True)
        (self.cookbook_path / "metadata.rb").write_text(_metadata(self.cookbook))
        (recipes / f"{self.recipe}.rb").write_text(recipe_text)

    def delete(self) -> None:
        """Remove the bundle from disk."""
        if self.deleted:
            return
        shutil.rmtree(self.path, ignore_errors=True)
        self.deleted = True
        logger.debug("Deleted bundle %s", self.path)
