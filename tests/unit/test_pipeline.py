"""
Unit tests for the pipeline orchestrator
"""
import asyncio

import pytest
import yaml

from smoldev.config import PipelineConfig
from smoldev.exceptions import (
    ConfigError,
    ExternalCallError,
    GenerationFailedError,
    MalformedResponseError,
    StageError,
    TaskError,
    TaskNotStartedError,
)
from smoldev.models import DependencyDescriptor
from smoldev.pipeline import PipelineOrchestrator, run_pipeline
from smoldev.writer import partial_path

from mocks.fake_providers import (
    MANIFEST,
    FakeContentGenerator,
    FakeDependencyProvider,
    FakePlanProvider,
    RecordingProgressReporter,
)


class TestRun:
    """Test the full three-stage run"""

    @pytest.mark.asyncio
    async def test_generates_every_file(self, orchestrator, target_dir, content_generator):
        result = await orchestrator.run("a todo app")

        assert result.success
        assert result.manifest == tuple(MANIFEST)
        for path in MANIFEST:
            assert (target_dir / path).read_text() == content_generator.content_for(path)
        assert sorted(result.written) == sorted(target_dir / p for p in MANIFEST)

    @pytest.mark.asyncio
    async def test_nested_path_resolves_under_target(self, config, target_dir, dependency_provider):
        orchestrator = PipelineOrchestrator(
            config,
            FakePlanProvider(["src/util/helpers.go"]),
            dependency_provider,
            FakeContentGenerator(),
        )

        result = await orchestrator.run("a go library")

        destination = target_dir / "src" / "util" / "helpers.go"
        assert destination.is_file()
        assert (target_dir / "src" / "util").is_dir()
        assert result.written[0].name == "helpers.go"
        assert result.written[0].is_absolute()

    @pytest.mark.asyncio
    async def test_dependency_provider_sees_manifest(self, orchestrator, dependency_provider, plan_provider):
        await orchestrator.run("a todo app")

        assert plan_provider.last_intent == "a todo app"
        assert dependency_provider.last_manifest == tuple(MANIFEST)

    @pytest.mark.asyncio
    async def test_every_task_gets_same_context(self, config, dependency_provider):
        seen = []

        class ContextRecorder(FakeContentGenerator):
            async def stream(self, task):
                seen.append(task.context)
                yield f"// {task.path}\n"

        orchestrator = PipelineOrchestrator(
            config, FakePlanProvider(MANIFEST), dependency_provider, ContextRecorder()
        )
        await orchestrator.run("a todo app")

        assert len(seen) == 3
        assert all(context is seen[0] for context in seen)
        assert seen[0].intent == "a todo app"
        assert "App" in seen[0].dependencies_yaml

    @pytest.mark.asyncio
    async def test_duplicate_manifest_entries_generate_once(self, config, dependency_provider):
        content_generator = FakeContentGenerator()
        orchestrator = PipelineOrchestrator(
            config,
            FakePlanProvider(["a.py", "b.py", "a.py", "  "]),
            dependency_provider,
            content_generator,
        )

        result = await orchestrator.run("dupes")

        assert result.manifest == ("a.py", "b.py")
        assert sorted(content_generator.calls) == ["a.py", "b.py"]

    @pytest.mark.asyncio
    async def test_paths_naming_same_file_generate_once(self, config, dependency_provider, target_dir):
        """Test that ./src/a.py and src//a.py are the same file as src/a.py"""
        content_generator = FakeContentGenerator(delay=0.01)
        orchestrator = PipelineOrchestrator(
            config,
            FakePlanProvider(["src/a.py", "./src/a.py", "src//a.py"]),
            dependency_provider,
            content_generator,
        )

        result = await orchestrator.run("one file")

        assert result.success
        assert result.manifest == ("src/a.py",)
        assert content_generator.calls == ["src/a.py"]
        assert (target_dir / "src" / "a.py").read_text() == content_generator.content_for("src/a.py")
        assert not (target_dir / "src" / "a.py.partial").exists()

    @pytest.mark.asyncio
    async def test_empty_manifest_generates_nothing(self, config, dependency_provider, target_dir):
        content_generator = FakeContentGenerator()
        orchestrator = PipelineOrchestrator(
            config, FakePlanProvider([]), dependency_provider, content_generator
        )

        result = await orchestrator.run("nothing")

        assert result.success
        assert result.written == []
        assert content_generator.calls == []

    @pytest.mark.asyncio
    async def test_progress_events(self, orchestrator, progress):
        await orchestrator.run("a todo app")

        assert sorted(e[1] for e in progress.of_kind("start")) == sorted(MANIFEST)
        assert all(e[2] for e in progress.of_kind("complete"))
        assert len(progress.of_kind("complete")) == 3
        assert sum(e[2] for e in progress.of_kind("advance")) > 0
        assert progress.events[-1] == ("close",)

    @pytest.mark.asyncio
    async def test_broken_progress_reporter_does_not_fail_run(self, config, target_dir):
        class BrokenReporter(RecordingProgressReporter):
            def advance(self, handle, nbytes):
                raise RuntimeError("terminal went away")

        orchestrator = PipelineOrchestrator(
            config,
            FakePlanProvider(MANIFEST),
            FakeDependencyProvider(),
            FakeContentGenerator(),
            progress=BrokenReporter(),
        )

        result = await orchestrator.run("a todo app")

        assert result.success
        assert (target_dir / "index.html").is_file()


class TestResume:
    """Existing non-empty files are never regenerated"""

    @pytest.mark.asyncio
    async def test_second_run_regenerates_nothing(self, config, target_dir):
        first = FakeContentGenerator()
        await PipelineOrchestrator(config, FakePlanProvider(MANIFEST), FakeDependencyProvider(), first).run("app")
        before = {p: (target_dir / p).read_text() for p in MANIFEST}

        second = FakeContentGenerator(contents={p: "different" for p in MANIFEST})
        progress = RecordingProgressReporter()
        result = await PipelineOrchestrator(
            config, FakePlanProvider(MANIFEST), FakeDependencyProvider(), second, progress=progress
        ).run("app")

        assert second.calls == []
        assert result.written == []
        assert len(result.skipped) == 3
        assert {p: (target_dir / p).read_text() for p in MANIFEST} == before
        assert sorted(e[1] for e in progress.of_kind("skipped")) == sorted(MANIFEST)

    @pytest.mark.asyncio
    async def test_existing_file_is_skipped(self, orchestrator, target_dir, content_generator):
        target_dir.mkdir(parents=True)
        (target_dir / "index.html").write_text("<html>hand written</html>")

        result = await orchestrator.run("a todo app")

        assert "index.html" not in content_generator.calls
        assert (target_dir / "index.html").read_text() == "<html>hand written</html>"
        assert [p.name for p in result.skipped] == ["index.html"]

    @pytest.mark.asyncio
    async def test_zero_byte_file_is_regenerated(self, orchestrator, target_dir, content_generator):
        target_dir.mkdir(parents=True)
        (target_dir / "index.html").write_text("")

        await orchestrator.run("a todo app")

        assert "index.html" in content_generator.calls
        assert (target_dir / "index.html").read_text() == content_generator.content_for("index.html")


class TestConcurrency:

    @pytest.mark.asyncio
    async def test_in_flight_never_exceeds_limit(self, target_dir):
        paths = [f"file{i}.txt" for i in range(12)]
        config = PipelineConfig(target_dir=str(target_dir), concurrency=3, submit_delay=0)
        content_generator = FakeContentGenerator(delay=0.01)

        result = await PipelineOrchestrator(
            config, FakePlanProvider(paths), FakeDependencyProvider(), content_generator
        ).run("many files")

        assert result.success
        assert len(result.written) == 12
        assert 1 <= content_generator.max_in_flight <= 3

    @pytest.mark.asyncio
    async def test_concurrency_of_one(self, target_dir):
        config = PipelineConfig(target_dir=str(target_dir), concurrency=1, submit_delay=0)
        content_generator = FakeContentGenerator(delay=0.01)

        await PipelineOrchestrator(
            config, FakePlanProvider(MANIFEST), FakeDependencyProvider(), content_generator
        ).run("sequential")

        assert content_generator.max_in_flight == 1
        assert content_generator.calls == MANIFEST


class TestGenerationFailures:
    """Task failures are collected, successful files stay on disk"""

    @pytest.mark.asyncio
    async def test_one_failure_others_written(self, target_dir):
        config = PipelineConfig(target_dir=str(target_dir), concurrency=3, submit_delay=0)
        content_generator = FakeContentGenerator(
            errors={"src/app.js": ExternalCallError("rate limited", operation="code generation")},
            delay=0.01,
        )
        orchestrator = PipelineOrchestrator(
            config, FakePlanProvider(MANIFEST), FakeDependencyProvider(), content_generator
        )

        with pytest.raises(GenerationFailedError) as exc_info:
            await orchestrator.run("a todo app")

        error = exc_info.value
        assert list(error.result.failures) == ["src/app.js"]
        failure = error.result.failures["src/app.js"]
        assert isinstance(failure, TaskError)
        assert isinstance(failure.cause, ExternalCallError)
        assert (target_dir / "index.html").is_file()
        assert (target_dir / "src" / "util" / "helpers.js").is_file()
        assert not (target_dir / "src" / "app.js").exists()
        assert "src/app.js" in str(error)
        assert len(error.errors) == 1

    @pytest.mark.asyncio
    async def test_mid_stream_failure_leaves_partial_file(self, target_dir):
        config = PipelineConfig(target_dir=str(target_dir), concurrency=3, submit_delay=0)
        content_generator = FakeContentGenerator(
            errors={"index.html": ConnectionError("reset")}, fail_after_chunks=1
        )
        progress = RecordingProgressReporter()
        orchestrator = PipelineOrchestrator(
            config, FakePlanProvider(MANIFEST), FakeDependencyProvider(), content_generator, progress=progress
        )

        with pytest.raises(GenerationFailedError):
            await orchestrator.run("a todo app")

        destination = target_dir / "index.html"
        assert not destination.exists()
        assert partial_path(destination).read_text() == "cont"
        assert ("complete", "index.html", False) in progress.events

    @pytest.mark.asyncio
    async def test_rerun_after_failure_regenerates_only_missing(self, target_dir):
        config = PipelineConfig(target_dir=str(target_dir), concurrency=3, submit_delay=0)
        failing = FakeContentGenerator(errors={"src/app.js": ConnectionError("reset")}, fail_after_chunks=1)
        with pytest.raises(GenerationFailedError):
            await PipelineOrchestrator(
                config, FakePlanProvider(MANIFEST), FakeDependencyProvider(), failing
            ).run("a todo app")

        retry = FakeContentGenerator()
        result = await PipelineOrchestrator(
            config, FakePlanProvider(MANIFEST), FakeDependencyProvider(), retry
        ).run("a todo app")

        assert retry.calls == ["src/app.js"]
        assert (target_dir / "src" / "app.js").read_text() == retry.content_for("src/app.js")
        assert not partial_path(target_dir / "src" / "app.js").exists()
        assert len(result.skipped) == 2

    @pytest.mark.asyncio
    async def test_non_atomic_failure_leaves_truncated_destination(self, target_dir):
        config = PipelineConfig(
            target_dir=str(target_dir), concurrency=3, submit_delay=0, atomic_writes=False
        )
        content_generator = FakeContentGenerator(
            errors={"index.html": ConnectionError("reset")}, fail_after_chunks=1
        )

        with pytest.raises(GenerationFailedError):
            await PipelineOrchestrator(
                config, FakePlanProvider(MANIFEST), FakeDependencyProvider(), content_generator
            ).run("a todo app")

        assert (target_dir / "index.html").read_text() == "cont"

    @pytest.mark.asyncio
    async def test_no_new_file_starts_after_failure(self, target_dir):
        config = PipelineConfig(target_dir=str(target_dir), concurrency=1, submit_delay=0)
        content_generator = FakeContentGenerator(errors={"index.html": ConnectionError("reset")})

        with pytest.raises(GenerationFailedError) as exc_info:
            await PipelineOrchestrator(
                config, FakePlanProvider(MANIFEST), FakeDependencyProvider(), content_generator
            ).run("a todo app")

        failures = exc_info.value.result.failures
        assert content_generator.calls == ["index.html"]
        assert isinstance(failures["index.html"], TaskError)
        assert isinstance(failures["src/app.js"], TaskNotStartedError)
        assert isinstance(failures["src/util/helpers.js"], TaskNotStartedError)

    @pytest.mark.asyncio
    async def test_path_outside_target_fails_that_task(self, config, target_dir, tmp_path):
        content_generator = FakeContentGenerator()
        orchestrator = PipelineOrchestrator(
            config,
            FakePlanProvider(["ok.txt", "../escape.txt"]),
            FakeDependencyProvider(),
            content_generator,
        )

        with pytest.raises(GenerationFailedError) as exc_info:
            await orchestrator.run("escape")

        failure = exc_info.value.result.failures["../escape.txt"]
        assert isinstance(failure.cause, ConfigError)
        assert not (tmp_path / "escape.txt").exists()
        assert (target_dir / "ok.txt").is_file()
        assert "../escape.txt" not in content_generator.calls

    @pytest.mark.asyncio
    async def test_cancellation_propagates(self, target_dir):
        config = PipelineConfig(target_dir=str(target_dir), concurrency=2, submit_delay=0)
        content_generator = FakeContentGenerator(delay=5)
        orchestrator = PipelineOrchestrator(
            config, FakePlanProvider(MANIFEST), FakeDependencyProvider(), content_generator
        )

        run = asyncio.ensure_future(orchestrator.run("slow"))
        await asyncio.sleep(0.05)
        run.cancel()

        with pytest.raises(asyncio.CancelledError):
            await run
        assert content_generator.in_flight == 0


class TestStageFailures:
    """Planning and dependency failures abort the run before generation"""

    @pytest.mark.asyncio
    async def test_plan_failure(self, config, content_generator):
        orchestrator = PipelineOrchestrator(
            config,
            FakePlanProvider(error=ExternalCallError("connection refused", operation="file paths")),
            FakeDependencyProvider(),
            content_generator,
        )

        with pytest.raises(StageError) as exc_info:
            await orchestrator.run("a todo app")

        assert exc_info.value.stage == "files to generate"
        assert isinstance(exc_info.value.cause, ExternalCallError)
        assert str(exc_info.value).startswith("failed to get files to generate")
        assert content_generator.calls == []

    @pytest.mark.asyncio
    async def test_dependency_failure(self, config, content_generator, target_dir):
        orchestrator = PipelineOrchestrator(
            config,
            FakePlanProvider(MANIFEST),
            FakeDependencyProvider(error=MalformedResponseError("no JSON object found", raw_text="sorry")),
            content_generator,
        )

        with pytest.raises(StageError) as exc_info:
            await orchestrator.run("a todo app")

        assert exc_info.value.stage == "shared dependencies"
        assert exc_info.value.cause.raw_text == "sorry"
        assert content_generator.calls == []
        assert not target_dir.exists()


class TestValidation:
    """Invalid input raises ConfigError before any provider is called"""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("intent", ["", "   \n"])
    async def test_empty_intent(self, orchestrator, plan_provider, intent):
        with pytest.raises(ConfigError):
            await orchestrator.run(intent)
        assert plan_provider.call_count == 0

    @pytest.mark.asyncio
    async def test_missing_target_dir(self, plan_provider):
        config = PipelineConfig(target_dir="")
        orchestrator = PipelineOrchestrator(
            config, plan_provider, FakeDependencyProvider(), FakeContentGenerator()
        )
        with pytest.raises(ConfigError):
            await orchestrator.run("a todo app")
        assert plan_provider.call_count == 0

    @pytest.mark.asyncio
    @pytest.mark.parametrize("concurrency", [0, -1])
    async def test_bad_concurrency(self, target_dir, plan_provider, concurrency):
        config = PipelineConfig(target_dir=str(target_dir), concurrency=concurrency)
        orchestrator = PipelineOrchestrator(
            config, plan_provider, FakeDependencyProvider(), FakeContentGenerator()
        )
        with pytest.raises(ConfigError):
            await orchestrator.run("a todo app")
        assert plan_provider.call_count == 0


class TestOverrides:
    """Override files replace the planning and dependency stages"""

    @pytest.mark.asyncio
    async def test_manifest_override_skips_planning(self, target_dir, tmp_path):
        override = tmp_path / "files.yaml"
        override.write_text("- a.py\n- b.py\n")
        config = PipelineConfig(target_dir=str(target_dir), files_override=str(override), submit_delay=0)
        plan_provider = FakePlanProvider(MANIFEST)
        dependency_provider = FakeDependencyProvider()

        result = await PipelineOrchestrator(
            config, plan_provider, dependency_provider, FakeContentGenerator()
        ).run("a todo app")

        assert plan_provider.call_count == 0
        assert result.manifest == ("a.py", "b.py")
        assert dependency_provider.last_manifest == ("a.py", "b.py")

    @pytest.mark.asyncio
    async def test_dependency_override_skips_extraction(self, target_dir, tmp_path):
        override = tmp_path / "deps.yaml"
        override.write_text(
            "- name: TodoItem\n"
            "  description: record stored by the API\n"
            "  symbols:\n"
            "    id: integer primary key\n"
        )
        config = PipelineConfig(target_dir=str(target_dir), deps_override=str(override), submit_delay=0)
        dependency_provider = FakeDependencyProvider()

        result = await PipelineOrchestrator(
            config, FakePlanProvider(MANIFEST), dependency_provider, FakeContentGenerator()
        ).run("a todo app")

        assert dependency_provider.call_count == 0
        assert result.dependencies.shared_dependencies[0].name == "TodoItem"
        assert result.dependencies.shared_dependencies[0].symbols == {"id": "integer primary key"}

    @pytest.mark.asyncio
    async def test_computed_values_written_back(self, target_dir, tmp_path):
        files_override = tmp_path / "cache" / "files.yaml"
        deps_override = tmp_path / "cache" / "deps.yaml"
        config = PipelineConfig(
            target_dir=str(target_dir),
            files_override=str(files_override),
            deps_override=str(deps_override),
            submit_delay=0,
        )

        await PipelineOrchestrator(
            config, FakePlanProvider(MANIFEST), FakeDependencyProvider(), FakeContentGenerator()
        ).run("a todo app")

        assert yaml.safe_load(files_override.read_text()) == MANIFEST
        records = yaml.safe_load(deps_override.read_text())
        assert records[0]["name"] == "App"
        assert records[0]["symbols"] == {"render": "draws the app"}

    @pytest.mark.asyncio
    async def test_empty_override_file_is_recomputed(self, target_dir, tmp_path):
        override = tmp_path / "files.yaml"
        override.write_text("")
        config = PipelineConfig(target_dir=str(target_dir), files_override=str(override), submit_delay=0)
        plan_provider = FakePlanProvider(["only.txt"])

        await PipelineOrchestrator(
            config, plan_provider, FakeDependencyProvider(), FakeContentGenerator()
        ).run("a todo app")

        assert plan_provider.call_count == 1
        assert yaml.safe_load(override.read_text()) == ["only.txt"]

    @pytest.mark.asyncio
    async def test_malformed_override_is_config_error(self, target_dir, tmp_path):
        override = tmp_path / "files.yaml"
        override.write_text("filepaths: [a.py]\n")
        config = PipelineConfig(target_dir=str(target_dir), files_override=str(override))

        with pytest.raises(ConfigError):
            await PipelineOrchestrator(
                config, FakePlanProvider(), FakeDependencyProvider(), FakeContentGenerator()
            ).run("a todo app")


class TestRunPipeline:
    """Test the module-level entry point"""

    @pytest.mark.asyncio
    async def test_uses_supplied_providers(self, config, target_dir):
        result = await run_pipeline(
            "a todo app",
            config,
            plan_provider=FakePlanProvider(["main.py"]),
            dependency_provider=FakeDependencyProvider(DependencyDescriptor()),
            content_generator=FakeContentGenerator(),
        )

        assert result.success
        assert (target_dir / "main.py").is_file()

    @pytest.mark.asyncio
    async def test_validates_before_building_client(self, config):
        with pytest.raises(ConfigError):
            await run_pipeline("", config)

    @pytest.mark.asyncio
    async def test_missing_api_key_is_config_error(self, target_dir):
        config = PipelineConfig(target_dir=str(target_dir), api_key=None)
        with pytest.raises(ConfigError):
            await run_pipeline("a todo app", config)
