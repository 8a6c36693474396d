"""
Pipeline Orchestrator

Sequences the three stages:

1. planning      intent -> manifest (or the manifest override file)
2. dependencies  intent + manifest -> shared dependency descriptor
                 (or the dependency override file)
3. generation    one task per manifest entry, fanned out over a bounded
                 pool; each task streams its content to disk

Stage 1 and 2 failures abort the run. Stage 3 failures are collected;
files that were written stay on disk and the run raises
GenerationFailedError listing every failing path.
"""

import asyncio
from pathlib import Path
from typing import Any, Callable, List, Optional, Tuple

from rich.console import Console

from smoldev.claude_client import ClaudeClient
from smoldev.config import PipelineConfig
from smoldev.display import print_yaml
from smoldev.exceptions import (
    ConfigError,
    GenerationFailedError,
    SmolDevError,
    StageError,
    TaskError,
    TaskNotStartedError,
)
from smoldev.logging_config import generate_run_id, logger, set_file_path, set_run_id
from smoldev.models import (
    DependencyDescriptor,
    GenerationContext,
    GenerationTask,
    PipelineResult,
    finalize_manifest,
)
from smoldev.overrides import DependencyStore, ManifestStore
from smoldev.progress import NullProgressReporter, ProgressReporter
from smoldev.providers import (
    ClaudeContentGenerator,
    ClaudeDependencyProvider,
    ClaudePlanProvider,
    ContentGenerator,
    DependencyProvider,
    PlanProvider,
    stderr_echo,
)
from smoldev.task_pool import BoundedTaskPool
from smoldev.writer import StreamingFileWriter, ensure_directory, is_generated


def validate_inputs(intent: Optional[str], config: PipelineConfig) -> None:
    """Raise ConfigError before any work is attempted"""
    if intent is None or not intent.strip():
        raise ConfigError("no prompt specified", field="prompt")
    config.validate()


class PipelineOrchestrator:
    """Runs plan -> dependencies -> bounded concurrent file generation"""

    def __init__(
        self,
        config: PipelineConfig,
        plan_provider: PlanProvider,
        dependency_provider: DependencyProvider,
        content_generator: ContentGenerator,
        progress: Optional[ProgressReporter] = None,
        writer: Optional[StreamingFileWriter] = None,
        console: Optional[Console] = None,
    ):
        self.config = config
        self.plan_provider = plan_provider
        self.dependency_provider = dependency_provider
        self.content_generator = content_generator
        self.progress = progress or NullProgressReporter()
        self.writer = writer or StreamingFileWriter(atomic=config.atomic_writes)
        self.console = console
        self.manifest_store = ManifestStore(config.files_override)
        self.dependency_store = DependencyStore(config.deps_override)

    # ==================== STAGES 1 & 2 ====================

    async def resolve_manifest(self, intent: str) -> Tuple[str, ...]:
        """Manifest from the override file when present, else from the plan provider"""
        if self.manifest_store.available():
            logger.info(f"Using files to generate from {self.manifest_store.path}")
            paths = await self.manifest_store.load()
        else:
            with self.progress.stage("generating file list", "finished generating file list"):
                paths = await self.plan_provider.plan(intent)
            if self.manifest_store.enabled:
                await self.manifest_store.save(paths)

        manifest = finalize_manifest(paths)
        if len(manifest) != len(paths):
            logger.warning(f"Dropped {len(paths) - len(manifest)} blank or duplicate manifest entries")
        return manifest

    async def resolve_dependencies(self, intent: str, manifest: Tuple[str, ...]) -> DependencyDescriptor:
        """Descriptor from the override file when present, else from the dependency provider"""
        if self.dependency_store.available():
            logger.info(f"Using shared dependencies from {self.dependency_store.path}")
            return await self.dependency_store.load()

        with self.progress.stage("generating dependencies list", "finished generating dependencies list"):
            dependencies = await self.dependency_provider.extract(intent, manifest)
        if self.dependency_store.enabled:
            await self.dependency_store.save(dependencies)
        return dependencies

    async def _run_stage(self, stage: str, call: Callable[[], Any]) -> Any:
        logger.log_stage_event(stage, "started")
        try:
            value = await call()
        except ConfigError:
            raise
        except (SmolDevError, OSError) as e:
            logger.log_error_with_context(e, context=stage)
            raise StageError(stage, e) from e
        logger.log_stage_event(stage, "finished")
        return value

    # ==================== STAGE 3 ====================

    def build_tasks(self, context: GenerationContext) -> List[GenerationTask]:
        """One task per manifest entry, destination resolved under the target directory"""
        total = len(context.manifest)
        return [
            GenerationTask(
                index=index,
                total=total,
                path=path,
                destination=self.config.resolve_path(path),
                context=context,
            )
            for index, path in enumerate(context.manifest)
        ]

    def _check_destination(self, task: GenerationTask) -> None:
        root = Path(self.config.target_dir).resolve()
        destination = task.destination.resolve()
        if destination == root or root not in destination.parents:
            raise ConfigError(f"{task.path} resolves outside the target directory {root}", field="manifest")

    def _emit(self, method: Callable[..., Any], *args: Any) -> Any:
        """Forward an event to the progress reporter; reporter errors never reach the pipeline"""
        try:
            return method(*args)
        except Exception as e:
            logger.warning(f"Progress reporter error in {getattr(method, '__name__', method)}: {e}")
            return None

    async def generate_file(self, task: GenerationTask) -> Path:
        """Stream one file's content to its destination"""
        set_file_path(task.path)
        logger.info(task.label)
        handle = self._emit(self.progress.start, task)
        ok = False
        try:
            nbytes = await self.writer.write_stream(
                task.destination,
                self.content_generator.stream(task),
                on_chunk=lambda size: self._emit(self.progress.advance, handle, size),
            )
            ok = True
            logger.info(f"Generated {task.path} ({nbytes} bytes)")
            return task.destination
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Failed to generate {task.path}: {type(e).__name__}: {e}")
            raise TaskError(task.path, e) from e
        finally:
            self._emit(self.progress.complete, handle, ok)

    async def generate_files(self, tasks: List[GenerationTask], result: PipelineResult) -> None:
        """Fan tasks out over the bounded pool, skipping files that already exist"""
        await ensure_directory(Path(self.config.target_dir))

        async with BoundedTaskPool(self.config.concurrency, self.config.submit_delay) as pool:
            for task in tasks:
                try:
                    self._check_destination(task)
                except ConfigError as e:
                    logger.error(str(e))
                    result.failures[task.path] = TaskError(task.path, e)
                    continue
                if is_generated(task.destination):
                    logger.info(f"file {task.destination} already exists, skipping")
                    result.skipped.append(task.destination)
                    self._emit(self.progress.skipped, task)
                    continue
                await pool.submit(task.path, self.generate_file, task)

            pool_result = await pool.join()

        for task in tasks:
            if task.path in pool_result.results:
                result.written.append(pool_result.results[task.path])
            elif task.path in pool_result.errors:
                error = pool_result.errors[task.path]
                if not isinstance(error, (TaskError, TaskNotStartedError)):
                    error = TaskError(task.path, error)
                result.failures[task.path] = error

    # ==================== RUN ====================

    async def run(self, intent: str) -> PipelineResult:
        """
        Run all three stages.

        Returns:
            PipelineResult with the written and skipped destinations

        Raises:
            ConfigError: invalid intent or configuration, nothing attempted
            StageError: planning or dependency extraction failed
            FileWriteError: the target directory could not be created
            GenerationFailedError: at least one file failed; result attached
        """
        validate_inputs(intent, self.config)
        set_run_id(generate_run_id())

        try:
            manifest = await self._run_stage("files to generate", lambda: self.resolve_manifest(intent))
            if self.config.verbose and self.console is not None:
                print_yaml(self.console, "files to generate:", list(manifest))

            dependencies = await self._run_stage(
                "shared dependencies", lambda: self.resolve_dependencies(intent, manifest)
            )
            if self.config.verbose and self.console is not None:
                print_yaml(self.console, "shared dependencies:", dependencies.to_records())

            result = PipelineResult(manifest=manifest, dependencies=dependencies)
            if not manifest:
                logger.warning("Manifest is empty, nothing to generate")
                return result

            context = GenerationContext.build(intent, manifest, dependencies)
            tasks = self.build_tasks(context)

            logger.log_stage_event("code generation", "started", files=len(tasks))
            await self.generate_files(tasks, result)
            logger.log_stage_event(
                "code generation", "finished",
                written=len(result.written),
                skipped=len(result.skipped),
                failed=len(result.failures),
            )
        finally:
            self._emit(self.progress.close)

        if result.failures:
            raise GenerationFailedError(result)
        return result


async def run_pipeline(
    intent: str,
    config: PipelineConfig,
    plan_provider: Optional[PlanProvider] = None,
    dependency_provider: Optional[DependencyProvider] = None,
    content_generator: Optional[ContentGenerator] = None,
    progress: Optional[ProgressReporter] = None,
    console: Optional[Console] = None,
) -> PipelineResult:
    """
    Run the pipeline, building Claude-backed providers for any not supplied.
    """
    validate_inputs(intent, config)

    client = None
    if plan_provider is None or dependency_provider is None or content_generator is None:
        client = ClaudeClient(config)
        echo = stderr_echo if config.verbose else None
        plan_provider = plan_provider or ClaudePlanProvider(client, on_chunk=echo)
        dependency_provider = dependency_provider or ClaudeDependencyProvider(client, on_chunk=echo)
        content_generator = content_generator or ClaudeContentGenerator(client)

    orchestrator = PipelineOrchestrator(
        config,
        plan_provider,
        dependency_provider,
        content_generator,
        progress=progress,
        console=console,
    )
    try:
        return await orchestrator.run(intent)
    finally:
        if client is not None:
            await client.close()
