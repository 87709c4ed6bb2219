"""Locate cookbooks and recipes named on the command line."""

import logging
import re
from dataclasses import dataclass
from pathlib import Path

from .exceptions import CookbookNotFound, RecipeNotFound

logger = logging.getLogger(__name__)

METADATA_NAME_RE = re.compile(r"""^\s*name\s+['"]([^'"]+)['"]""", re.MULTILINE)
DEFAULT_RECIPE = "default"


@dataclass(frozen=True)
class Cookbook:
    name: str
    path: Path

    @property
    def recipes_dir(self) -> Path:
        return self.path / "recipes"

    def recipe_names(self) -> list[str]:
        if not self.recipes_dir.is_dir():
            return []
        return sorted(p.stem for p in self.recipes_dir.glob("*.rb"))


def cookbook_name(path: Path) -> str:
    """Name declared in a cookbook's metadata.rb, else its directory name."""
    metadata = path / "metadata.rb"
    if metadata.is_file():
        match = METADATA_NAME_RE.search(metadata.read_text(errors="replace"))
        if match:
            return match.group(1)
    return path.name


def is_cookbook(path: Path) -> bool:
    return path.is_dir() and (path / "metadata.rb").is_file()


class RecipeLookup:
    """Find cookbooks in the configured repository paths.

    Args:
        cookbook_repo_paths: Directories holding cookbooks, either directly
            or under a ``cookbooks`` subdirectory
    """

    def __init__(self, cookbook_repo_paths: list[str] | tuple[str, ...] = ()):
        self.cookbook_repo_paths = [Path(p).expanduser() for p in cookbook_repo_paths]

    @staticmethod
    def split(spec: str) -> tuple[str, str | None]:
        """Split ``cookbook::recipe`` into its parts; the recipe may be absent."""
        cookbook, sep, recipe = spec.partition("::")
        return cookbook, (recipe or None) if sep else None

    def load_cookbook(self, path_or_name: str) -> Cookbook:
        """Load a cookbook from a directory or by name from the repo paths.

        Raises:
            CookbookNotFound: If no matching cookbook exists
        """
        path = Path(path_or_name).expanduser()
        if is_cookbook(path):
            return Cookbook(cookbook_name(path), path.resolve())

        for repo in self.cookbook_repo_paths:
            for candidate in (repo / path_or_name, repo / "cookbooks" / path_or_name):
                if is_cookbook(candidate):
                    logger.debug("Found cookbook %s at %s", path_or_name, candidate)
                    return Cookbook(cookbook_name(candidate), candidate.resolve())
        raise CookbookNotFound(path_or_name, [str(p) for p in self.cookbook_repo_paths])

    def find_recipe(self, cookbook: Cookbook, name: str | None = None) -> Path:
        """Path of a recipe in ``cookbook``; ``default`` when no name is given.

        Raises:
            RecipeNotFound: If the cookbook has no such recipe
        """
        name = name or DEFAULT_RECIPE
        recipe = cookbook.recipes_dir / f"{name}.rb"
        if not recipe.is_file():
            raise RecipeNotFound(str(cookbook.path), name, cookbook.recipe_names())
        return recipe
