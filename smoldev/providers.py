"""
Stage providers

Each stage is a narrow capability: planning returns file paths,
dependency extraction returns a DependencyDescriptor, and content
generation streams text for one file. The orchestrator only sees these
interfaces, so tests swap in fakes.
"""

import sys
from abc import ABC, abstractmethod
from typing import AsyncIterator, Callable, List, Optional, Sequence

from smoldev.claude_client import ClaudeClient
from smoldev.exceptions import MalformedResponseError
from smoldev.models import DependencyDescriptor, GenerationTask
from smoldev.prompts import (
    format_code_generation_prompts,
    format_file_paths_prompt,
    format_shared_dependencies_prompt,
)
from smoldev.response_parser import parse_filepaths, parse_shared_dependencies


class PlanProvider(ABC):
    """Derives the list of files to generate"""

    @abstractmethod
    async def plan(self, intent: str) -> List[str]:
        pass


class DependencyProvider(ABC):
    """Derives the names shared between the planned files"""

    @abstractmethod
    async def extract(self, intent: str, manifest: Sequence[str]) -> DependencyDescriptor:
        pass


class ContentGenerator(ABC):
    """Produces the content of a single file as a chunk stream"""

    @abstractmethod
    def stream(self, task: GenerationTask) -> AsyncIterator[str]:
        pass


def stderr_echo(chunk: str) -> None:
    sys.stderr.write(chunk)
    sys.stderr.flush()


class ClaudePlanProvider(PlanProvider):

    def __init__(self, client: ClaudeClient, on_chunk: Optional[Callable[[str], None]] = None):
        self.client = client
        self.on_chunk = on_chunk

    async def plan(self, intent: str) -> List[str]:
        raw = await self.client.complete(
            system_prompt=intent,
            prompt=format_file_paths_prompt(),
            operation="file paths",
            on_chunk=self.on_chunk,
        )
        return parse_filepaths(raw)


class ClaudeDependencyProvider(DependencyProvider):

    def __init__(self, client: ClaudeClient, on_chunk: Optional[Callable[[str], None]] = None):
        self.client = client
        self.on_chunk = on_chunk

    async def extract(self, intent: str, manifest: Sequence[str]) -> DependencyDescriptor:
        system_prompt = format_shared_dependencies_prompt(intent, manifest)
        raw = await self.client.complete(
            system_prompt=system_prompt,
            prompt="List the shared dependencies now as JSON.",
            operation="shared dependencies",
            on_chunk=self.on_chunk,
        )
        parsed = parse_shared_dependencies(raw)
        try:
            return DependencyDescriptor.from_records(parsed["shared_dependencies"], parsed["reasoning"])
        except ValueError as e:
            raise MalformedResponseError(str(e), raw_text=raw) from e


class ClaudeContentGenerator(ContentGenerator):

    def __init__(self, client: ClaudeClient):
        self.client = client

    async def stream(self, task: GenerationTask) -> AsyncIterator[str]:
        prompts = format_code_generation_prompts(
            prompt=task.context.intent,
            filepaths=task.context.manifest,
            shared_dependencies=task.context.dependencies_yaml,
            filename=task.path,
        )
        chunks = self.client.stream(prompts["system"], prompts["user"], operation=f"code generation {task.path}")
        try:
            async for chunk in chunks:
                yield chunk
        finally:
            # Closing this stream closes the client request with it
            await chunks.aclose()
