"""Command-line interface for chef-run."""

import asyncio
import logging
import re
from pathlib import Path
from typing import Any, Optional

import click

from chef_run import __version__, messages
from chef_run.artifacts import ArtifactLookup
from chef_run.bundle import ConfigurationBundle
from chef_run.config import DEFAULT_CONFIG_PATH, RunConfig, create_default_config_file, load_config
from chef_run.error_printer import format_error, write_backtrace
from chef_run.exceptions import ChefRunError, ConfigError, OptionValidationError
from chef_run.executor import AggregateResult, JobRunner
from chef_run.file_fetcher import FileFetcher
from chef_run.job import Job
from chef_run.logging import configure_logging, get_logger, level_from_name
from chef_run.progress import ReporterFactory
from chef_run.recipe_lookup import RecipeLookup
from chef_run.target_resolver import resolve

logger = get_logger("chef_run.cli")

RC_OK = 0
RC_COMMAND_FAILED = 1
RC_ERROR_HANDLING_FAILED = 64

PROPERTY_MATCHER = re.compile(r"^([a-zA-Z0-9_]+)=(.+)$")
CB_MATCHER = r"[\w\-]+"
COOKBOOK_RE = re.compile(rf"^{CB_MATCHER}(::{CB_MATCHER})?$")
INTEGER_RE = re.compile(r"^\d+$")
FLOAT_RE = re.compile(r"^(\d+\.\d*|\d*\.\d+)$")


def validate_params(params: list[str] | tuple[str, ...]) -> None:
    """Check positional arguments before anything touches a target.

    Raises:
        OptionValidationError: CHEFVAL002 for too few arguments, CHEFVAL004
            for a recipe that is neither a file nor a cookbook reference,
            CHEFVAL003 for a malformed resource property
    """
    if len(params) < 2:
        raise OptionValidationError(
            "CHEFVAL002", "A target and a recipe or resource must be specified"
        )
    if len(params) == 2:
        recipe = params[1]
        if not Path(recipe).exists() and not COOKBOOK_RE.match(recipe):
            raise OptionValidationError(
                "CHEFVAL004",
                f"'{recipe}' is not a recipe file or a cookbook reference "
                "(cookbook or cookbook::recipe)",
            )
        return
    for prop in params[3:]:
        if not PROPERTY_MATCHER.match(prop):
            raise OptionValidationError(
                "CHEFVAL003", f"Property '{prop}' must be given as name=value"
            )


def validate_identity_file(path: str | None) -> None:
    if path and not Path(path).expanduser().exists():
        raise OptionValidationError("CHEFVAL001", f"Identity file '{path}' does not exist")


def transform_property_value(value: str) -> Any:
    """Convert a property value given on the command line.

    Values with a leading zero stay strings (file modes such as ``0644``),
    digits become int, decimals become float, ``true``/``false`` in any
    case become booleans, and everything else is left as a string.

    Example:
        >>> [transform_property_value(v) for v in ("0644", "10", "1.5", "TRUE", "nginx")]
        ['0644', 10, 1.5, True, 'nginx']
    """
    if value.startswith("0"):
        return value
    if INTEGER_RE.match(value):
        return int(value)
    if FLOAT_RE.match(value):
        return float(value)
    if value.lower() == "true":
        return True
    if value.lower() == "false":
        return False
    return value


def format_properties(props: list[str] | tuple[str, ...]) -> dict[str, Any]:
    properties = {}
    for prop in props:
        key, value = PROPERTY_MATCHER.match(prop).groups()
        properties[key] = transform_property_value(value)
    return properties


def generate_bundle(args: list[str], config: RunConfig) -> tuple[ConfigurationBundle, str]:
    """Build the configuration bundle from the arguments after the target.

    Returns:
        The bundle and the status line shown before converging
    """
    if len(args) == 1:
        spec = args[0]
        if Path(spec).is_file():
            recipe_path = Path(spec)
        else:
            lookup = RecipeLookup(config.chef.cookbook_repo_paths)
            cookbook_name, recipe_name = lookup.split(spec)
            cookbook = lookup.load_cookbook(cookbook_name)
            recipe_path = lookup.find_recipe(cookbook, recipe_name)
        logger.debug("Using recipe", path=str(recipe_path))
        return ConfigurationBundle.from_existing_recipe(recipe_path), messages.converging_recipe(spec)

    resource_type, resource_name, *props = args
    bundle = ConfigurationBundle.from_resource(resource_type, resource_name, format_properties(props))
    return bundle, messages.converging_resource(resource_type, resource_name)


def setup_config(config_path: Optional[str]) -> RunConfig:
    if config_path is None:
        path = DEFAULT_CONFIG_PATH
        if not path.exists():
            click.echo(f"Creating config file in {path}")
            create_default_config_file(path)
    else:
        path = Path(config_path)
        if not path.expanduser().exists():
            raise ConfigError(f"Configuration file '{config_path}' does not exist")
    return load_config(path)


async def perform_run(arguments: tuple[str, ...], config: RunConfig, json_output: bool) -> AggregateResult:
    targets = resolve(arguments[0], config)
    logger.info("Targets resolved", count=len(targets))

    with logger.scope("Bundle generation"):
        bundle, converge_status = generate_bundle(list(arguments[1:]), config)
    factory = ReporterFactory(json_format=json_output)
    multi = len(targets) > 1
    artifacts = ArtifactLookup(config)
    fetcher = FileFetcher(config.cache_path)
    jobs = [
        Job(
            target,
            config,
            bundle,
            factory.for_target(target.name),
            multi=multi,
            artifacts=artifacts,
            fetcher=fetcher,
            converge_status=converge_status,
        )
        for target in targets
    ]

    runner = JobRunner(bundle)
    with logger.performance("Run", targets=len(jobs)):
        result = await runner.run(jobs)
    logger.info("Run complete", successful=result.successful, failed=result.failed)
    result.raise_on_failure()
    return result


@click.command(context_settings={"help_option_names": ["-h", "--help"]})
@click.argument("arguments", nargs=-1)
@click.option("--config", "-c", "config_path", default=None, help=f"Configuration file (default: {DEFAULT_CONFIG_PATH})")
@click.option("--identity-file", "-i", default=None, help="SSH identity file for authentication")
@click.option("--user", default=None, help="User to connect as")
@click.option("--password", default=None, help="Password for the connection")
@click.option("--protocol", default=None, help="Default protocol for targets without one (ssh, local)")
@click.option("--root/--no-root", default=None, help="Run privileged commands with sudo (default: true)")
@click.option("--install/--no-install", default=None, help="Install chef-client when absent or outdated (default: true)")
@click.option("--cookbook-repo-paths", default=None, help="Comma separated cookbook repository paths")
@click.option("--json", "json_output", is_flag=True, help="Report progress as NDJSON")
@click.option("--debug", is_flag=True, help="Show debug logging")
@click.version_option(version=__version__, prog_name="chef-run")
@click.pass_context
def main(
    ctx: click.Context,
    arguments: tuple[str, ...],
    config_path: Optional[str],
    identity_file: Optional[str],
    user: Optional[str],
    password: Optional[str],
    protocol: Optional[str],
    root: Optional[bool],
    install: Optional[bool],
    cookbook_repo_paths: Optional[str],
    json_output: bool,
    debug: bool,
) -> None:
    """Apply a recipe or a single resource to one or more targets.

    \b
    Usage:
        chef-run [OPTIONS] TARGET[,TARGET...] RECIPE
        chef-run [OPTIONS] TARGET[,TARGET...] TYPE NAME [PROPERTY=VALUE ...]

    \b
    Example:
        chef-run web01 ./site.rb
        chef-run deploy@web[1:3] nginx::default --no-install
        chef-run 10.0.0.0/29 user alice shell=/bin/zsh
    """
    if not arguments:
        click.echo(ctx.get_help())
        ctx.exit(RC_OK)

    config: RunConfig | None = None
    rc = RC_OK
    try:
        config = setup_config(config_path)
        configure_logging(
            level=logging.DEBUG if debug else level_from_name(config.log.level),
            debug=debug,
            log_file=config.log.location,
        )
        logger.add_context(targets=arguments[0])
        logger.debug("Initialized logger", version=__version__)

        validate_params(arguments)
        validate_identity_file(identity_file)

        config = config.with_overrides(
            default_user=user,
            password=password,
            default_protocol=protocol.lower() if protocol else None,
            sudo=root,
            install=install,
            identity_files=(str(Path(identity_file).expanduser()),) if identity_file else None,
            cookbook_repo_paths=tuple(cookbook_repo_paths.split(",")) if cookbook_repo_paths else None,
        )

        result = asyncio.run(perform_run(arguments, config, json_output))
        for target in result.reboot_required:
            click.echo(f"[{target}] A reboot is required to complete the converge.")
    except ChefRunError as e:
        rc = RC_COMMAND_FAILED
        click.echo(format_error(e), err=True, nl=False)
        _record_backtrace(e, config)
    except Exception as e:
        rc = RC_ERROR_HANDLING_FAILED
        click.echo(format_error(e), err=True, nl=False)
        _record_backtrace(e, config)
    ctx.exit(rc)


def _record_backtrace(exc: BaseException, config: RunConfig | None) -> None:
    if config is None:
        return
    try:
        path = write_backtrace(exc, config.stack_trace_path)
    except OSError as e:
        logger.warning("Could not write backtrace", error=str(e))
        return
    click.echo(f"Backtrace written to {path}", err=True)


def entry_point() -> None:
    """Package entry point for the chef-run command-line interface."""
    main(prog_name="chef-run")


if __name__ == "__main__":
    entry_point()
