"""
Pipeline data model: manifest, shared dependencies, tasks and run results
"""

import posixpath
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

import yaml


def finalize_manifest(paths: Sequence[str]) -> Tuple[str, ...]:
    """
    Strip entries and drop blanks and duplicates, keeping first-seen order.

    Entries naming the same file ("src/a.py", "./src/a.py", "src//a.py")
    are duplicates; the first spelling is kept.
    """
    seen = set()
    manifest = []
    for path in paths:
        path = str(path).strip()
        if not path:
            continue
        key = posixpath.normpath(path)
        if key in seen:
            continue
        seen.add(key)
        manifest.append(path)
    return tuple(manifest)


@dataclass(frozen=True)
class SharedDependency:
    """A name shared between generated files (exported symbol, DOM id, schema...)"""
    name: str
    description: str = ""
    symbols: Mapping[str, str] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "SharedDependency":
        symbols = data.get("symbols") or {}
        if not isinstance(symbols, Mapping):
            raise ValueError(f"symbols of {data.get('name')!r} must be a mapping")
        return cls(
            name=str(data.get("name", "")),
            description=str(data.get("description") or ""),
            symbols={str(k): str(v) for k, v in symbols.items()},
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "symbols": dict(self.symbols),
        }


@dataclass(frozen=True)
class DependencyDescriptor:
    """Shared dependency records, built once and read by every task"""
    shared_dependencies: Tuple[SharedDependency, ...] = ()
    reasoning: Tuple[str, ...] = ()

    @classmethod
    def from_records(cls, records: Sequence[Mapping[str, Any]],
                     reasoning: Sequence[str] = ()) -> "DependencyDescriptor":
        return cls(
            shared_dependencies=tuple(SharedDependency.from_dict(r) for r in records),
            reasoning=tuple(str(r) for r in reasoning),
        )

    def to_records(self) -> List[Dict[str, Any]]:
        return [dep.to_dict() for dep in self.shared_dependencies]

    def to_yaml(self) -> str:
        return yaml.safe_dump(
            {"shared_dependencies": self.to_records()},
            sort_keys=False,
            allow_unicode=True,
        )


@dataclass(frozen=True)
class GenerationContext:
    """Read-only bundle handed to the content generator for every file"""
    intent: str
    manifest: Tuple[str, ...]
    dependencies: DependencyDescriptor
    dependencies_yaml: str

    @classmethod
    def build(cls, intent: str, manifest: Sequence[str],
              dependencies: DependencyDescriptor) -> "GenerationContext":
        return cls(
            intent=intent,
            manifest=tuple(manifest),
            dependencies=dependencies,
            dependencies_yaml=dependencies.to_yaml(),
        )


@dataclass(frozen=True)
class GenerationTask:
    """One file to generate"""
    index: int
    total: int
    path: str
    destination: Path
    context: GenerationContext

    @property
    def label(self) -> str:
        return f"generating file {self.index + 1} of {self.total}: {self.path}"


@dataclass
class PipelineResult:
    """Outcome of a pipeline run"""
    manifest: Tuple[str, ...] = ()
    dependencies: Optional[DependencyDescriptor] = None
    written: List[Path] = field(default_factory=list)
    skipped: List[Path] = field(default_factory=list)
    failures: Dict[str, BaseException] = field(default_factory=dict)

    @property
    def success(self) -> bool:
        return not self.failures
