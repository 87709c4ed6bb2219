"""chef-run: converge a recipe or a single resource on remote targets."""

__version__ = "0.1.0"
