import logging
import os
from dataclasses import dataclass
from typing import Any, Dict, Optional

import click
from rich.logging import RichHandler

from .constants import DEFAULT_CONFIG_FILE
from .core import Releaser
from .errors import ReleaseError
from .services.command_runner import CommandRunner
from .services.config_loader import ConfigLoader
from .services.ecr import EcrRegistry
from .services.log_sink import BufferedLogSink
from .services.okteto import OktetoRegistry
from .services.registry import supports_repository_management

REGISTRIES = {
    "ecr": EcrRegistry,
    "okteto": OktetoRegistry,
}


@dataclass
class CliState:
    config_path: Optional[str]
    verbose: Optional[bool]
    log_file: Optional[str]
    config_values: Optional[Dict[str, Any]] = None

    def load_config(self) -> Dict[str, Any]:
        if self.config_values is None:
            if self.config_path is None:
                raise click.ClickException(
                    f"No configuration found. Create {DEFAULT_CONFIG_FILE} or pass --config."
                )
            try:
                self.config_values = ConfigLoader().load(self.config_path)
            except ReleaseError as exc:
                raise click.ClickException(str(exc)) from exc
        return self.config_values


def _resolve_option(cli_value, config, key, default=None):
    if cli_value is not None:
        return cli_value
    if key in config:
        return config[key]
    return default


def _configure_logging(verbose: bool, log_file: Optional[str]) -> Optional[BufferedLogSink]:
    logger = logging.getLogger("imagereleaser")
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()
    logger.propagate = False
    logger.setLevel(logging.DEBUG if verbose else logging.INFO)

    console_handler = RichHandler(rich_tracebacks=True, show_level=False, show_path=False)
    console_handler.setFormatter(logging.Formatter("%(message)s", datefmt="[%X]"))

    sink = None
    if verbose:
        logger.addHandler(console_handler)
    else:
        sink = BufferedLogSink(target=console_handler)
        logger.addHandler(sink)

    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setLevel(logging.DEBUG if verbose else logging.INFO)
        file_handler.setFormatter(logging.Formatter("%(asctime)s [%(levelname)s] %(message)s"))
        logger.addHandler(file_handler)

    return sink


def _build_releaser(state: CliState, registry_name: str, **kwargs) -> Releaser:
    logger = logging.getLogger("imagereleaser")
    config_values = state.load_config()
    try:
        release_config = ConfigLoader().build_release_config(config_values)
    except ReleaseError as exc:
        raise click.ClickException(str(exc)) from exc

    verbose = bool(_resolve_option(state.verbose, config_values, "verbose", default=False))
    log_sink = _configure_logging(verbose, _resolve_option(state.log_file, config_values, "log_file"))

    command_runner = CommandRunner(logger=logger)
    registry = REGISTRIES[registry_name].from_config(
        release_config.registry_settings(registry_name),
        command_runner,
        logger,
    )
    return Releaser(
        config=release_config,
        registry=registry,
        log_sink=log_sink,
        command_runner=command_runner,
        **kwargs,
    )


def build_registry_command(registry_name: str, registry_class) -> click.Group:
    """Creates the command group of one registry, exposing only what it supports."""

    @click.group(name=registry_name, help=f"Release images to the {registry_name} registry.")
    def registry_group():
        pass

    @registry_group.command("release")
    @click.option(
        "--max-concurrency",
        type=click.IntRange(min=1),
        default=None,
        help="Maximum number of images built and pushed concurrently (default: 5).",
    )
    @click.option(
        "--namespace",
        default="",
        help="Namespace of the image manifest to update. Empty skips the manifest.",
    )
    @click.option(
        "--exclude-file",
        type=click.Path(),
        default=None,
        help="YAML file listing services to leave out of this release.",
    )
    @click.pass_obj
    def release(state: CliState, max_concurrency, namespace, exclude_file):
        """Build, tag and push an image for every configured service."""
        try:
            excluded, found = ConfigLoader().load_excluded_services(exclude_file)
        except ReleaseError as exc:
            raise click.ClickException(str(exc)) from exc
        if exclude_file and not found:
            click.echo(f"Excluded services file not found, releasing everything: {exclude_file}")

        releaser = _build_releaser(
            state,
            registry_name,
            namespace=namespace,
            max_concurrency=max_concurrency,
            excluded_services=excluded,
        )
        raise SystemExit(releaser.release())

    if supports_repository_management(registry_class):

        @registry_group.command("create-missing-repos")
        @click.option("--namespace", required=True, help="Namespace the repositories live under.")
        @click.pass_obj
        def create_missing_repos(state: CliState, namespace):
            """Create required and missing repositories in the registry."""
            if not namespace.strip():
                raise click.ClickException("--namespace must not be empty.")
            releaser = _build_releaser(state, registry_name, namespace=namespace)
            raise SystemExit(releaser.create_missing_repositories())

    return registry_group


@click.group()
@click.option(
    "--config",
    required=False,
    type=click.Path(),
    help=f"Path to a YAML configuration file. Defaults to {DEFAULT_CONFIG_FILE} if present.",
)
@click.option("--verbose", is_flag=True, default=None, help="Stream logs instead of showing them only on failure")
@click.option("--log-file", type=click.Path(), help="Path to log file")
@click.pass_context
def main(ctx, config, verbose, log_file):
    """Build and release container images for every configured service."""
    resolved_config = config
    if resolved_config is None:
        default_config_path = os.path.join(os.getcwd(), DEFAULT_CONFIG_FILE)
        if os.path.exists(default_config_path):
            resolved_config = default_config_path

    ctx.obj = CliState(config_path=resolved_config, verbose=verbose, log_file=log_file)


for _name, _registry_class in REGISTRIES.items():
    main.add_command(build_registry_command(_name, _registry_class))


if __name__ == "__main__":
    main()
