import logging
import subprocess
import tempfile
from typing import Iterable, List, Optional, Tuple

from rich.console import Console

from .constants import TARGET_PLATFORM
from .errors import ConfigurationError, ReleaseError, TaskError
from .errors_catalog import actionable_error
from .models import ReleaseConfig, RenamingRecord, ServiceUnit
from .services.build_task import BuildPublishTask
from .services.builders import ExternalBuilder, KoBuilder
from .services.command_runner import CommandRunner
from .services.docker_runtime import DockerRuntimeService
from .services.log_sink import BufferedLogSink
from .services.manifest import Manifest, ManifestStore
from .services.publisher import CranePublisher
from .services.registry import Registry, RepositoryManager
from .services.scheduler import ScheduleReport, WorkScheduler

console = Console()
logger = logging.getLogger("imagereleaser")


class Releaser:
    """Builds every configured service, pushes it, and records where it went."""

    def __init__(
        self,
        config: ReleaseConfig,
        registry: Registry,
        namespace: Optional[str] = None,
        max_concurrency: Optional[int] = None,
        excluded_services: Iterable[str] = (),
        log_sink: Optional[BufferedLogSink] = None,
        command_runner: Optional[CommandRunner] = None,
        manifest_store: Optional[ManifestStore] = None,
    ):
        self.config = config
        self.registry = registry
        self.namespace = (namespace or "").strip()
        self.max_concurrency = max_concurrency if max_concurrency is not None else config.max_concurrency
        self.excluded_services = set(excluded_services)
        self.log_sink = log_sink

        self.command_runner = command_runner or CommandRunner(logger=logger)
        self.docker_runtime_service = DockerRuntimeService(logger=logger, run_cmd=self._run_cmd)
        self.native_builder = KoBuilder(command_runner=self.command_runner, logger=logger)
        self.external_builder = ExternalBuilder(
            command_runner=self.command_runner,
            logger=logger,
            remote_builder=config.remote_builder,
        )
        self.publisher = CranePublisher(command_runner=self.command_runner, logger=logger)
        self.manifest_store = manifest_store or ManifestStore(logger=logger)
        self.scheduler = WorkScheduler(logger=logger, max_concurrency=self.max_concurrency)

    def _run_cmd(
        self,
        cmd: List[str],
        check: bool = True,
        capture_output: bool = False,
        input_text: Optional[str] = None,
    ) -> subprocess.CompletedProcess:
        return self.command_runner.run(
            cmd,
            check=check,
            capture_output=capture_output,
            input_text=input_text,
        )

    def selected_units(self) -> List[ServiceUnit]:
        units = [unit for unit in self.config.units if unit.name not in self.excluded_services]
        skipped = len(self.config.units) - len(units)
        if skipped:
            logger.info("Skipping %s excluded service(s)", skipped)
        return units

    def build_task(self) -> BuildPublishTask:
        return BuildPublishTask(
            registry=self.registry,
            native_builder=self.native_builder,
            external_builder=self.external_builder,
            publisher=self.publisher,
            logger=logger,
            reference_domain=self.config.reference_domain,
            namespace=self.namespace,
            build_cache_repository=self.config.build_cache_repository,
            platform=TARGET_PLATFORM,
        )

    def bootstrap_external_builds(self):
        self.docker_runtime_service.validate_environment(self.config.remote_builder)
        self.docker_runtime_service.bootstrap_registry_login(self.registry)

    def publish_all(self, units: List[ServiceUnit]) -> ScheduleReport:
        # native OCI layouts only live until they are pushed
        with tempfile.TemporaryDirectory(prefix="imagereleaser-") as work_dir:
            self.native_builder.work_dir = work_dir
            return self.scheduler.run(
                units,
                self.build_task(),
                external_bootstrap=self.bootstrap_external_builds,
            )

    def load_manifest(self) -> Optional[Tuple[str, Manifest]]:
        if not self.namespace:
            logger.info("No namespace given; skipping image manifest update.")
            return None
        path = self.manifest_store.path_for(self.namespace)
        return path, self.manifest_store.load(path)

    def record_release(self, manifest: Optional[Tuple[str, Manifest]], records: List[RenamingRecord]):
        if manifest is None:
            return
        path, current = manifest
        self.manifest_store.persist(self.manifest_store.reconcile(current, records), path)
        logger.info("Image manifest updated: %s", path)

    def release(self) -> int:
        try:
            logger.info("Starting release of %s service(s)...", len(self.config.units))
            self.registry.init()
            manifest = self.load_manifest()

            units = self.selected_units()
            if not units:
                logger.info("No services selected for release.")
                self._finish_quietly()
                return 0

            report = self.publish_all(units)
            if report.first_error is not None:
                raise report.first_error

            self.record_release(manifest, report.records)
            logger.info("Released %s service(s).", len(report.records))
            self._finish_quietly()
            return 0

        except KeyboardInterrupt:
            console.print("[bold red]Operation cancelled by user.[/bold red]")
            logger.info("Operation cancelled by user")
            self._flush_logs()
            return 1
        except TaskError as exc:
            logger.error(str(exc))
            self._flush_logs()
            console.print(f"[bold red]Error:[/bold red] {exc}")
            console.print(actionable_error("release_failed", unit=exc.unit_name))
            return 1
        except ReleaseError as exc:
            logger.error(str(exc))
            self._flush_logs()
            console.print(f"[bold red]Error:[/bold red] {exc}")
            return 1
        except Exception as exc:
            logger.exception("Unexpected error")
            self._flush_logs()
            console.print(f"[bold red]Unexpected error:[/bold red] {exc}")
            return 1

    def create_missing_repositories(self) -> int:
        try:
            if not self.namespace:
                raise ConfigurationError(actionable_error("namespace_required", command="create-missing-repos"))
            if not isinstance(self.registry, RepositoryManager):
                raise ConfigurationError(
                    f"Registry `{self.registry.name}` does not support repository management."
                )

            self.registry.init()
            task = self.build_task()
            created = 0
            for unit in self.selected_units():
                repository = task.repository_name(unit)
                if self.registry.repository_exists(repository):
                    logger.debug("Repository already exists: %s", repository)
                    continue
                self.registry.create_repository(repository)
                created += 1
                logger.info("Repository created in registry: %s", repository)

            logger.info("%s repository(ies) created.", created)
            self._finish_quietly()
            return 0

        except ReleaseError as exc:
            logger.error(str(exc))
            self._flush_logs()
            console.print(f"[bold red]Error:[/bold red] {exc}")
            return 1
        except Exception as exc:
            logger.exception("Unexpected error")
            self._flush_logs()
            console.print(f"[bold red]Unexpected error:[/bold red] {exc}")
            return 1

    def _flush_logs(self):
        if self.log_sink is not None:
            self.log_sink.replay()

    def _finish_quietly(self):
        if self.log_sink is not None:
            self.log_sink.discard()
