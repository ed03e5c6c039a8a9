"""Source route extraction: walk a tree and run strategies over each file."""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from pathlib import Path

from api_conform.concurrency import DEFAULT_MAX_WORKERS, checkpoint, run_bounded
from api_conform.extractors.base import (
    DEFAULT_SECURITY_MARKERS,
    RouteExtractor,
    SecurityMarkers,
    SourceParseError,
)
from api_conform.extractors.express import ExpressRouteExtractor
from api_conform.extractors.python_web import PythonRouteExtractor
from api_conform.extractors.spring import SpringRouteExtractor
from api_conform.logging import get_logger
from api_conform.models import ActualModel, Endpoint, Finding, SourceLocation
from api_conform.paths import matches_any_glob

logger = get_logger(__name__)

SKIP_DIRS = {
    ".git",
    ".hg",
    ".svn",
    "node_modules",
    "build",
    "target",
    "dist",
    "venv",
    ".venv",
    "__pycache__",
    ".tox",
    ".mypy_cache",
    ".pytest_cache",
}

BUILTIN_EXTRACTORS: dict[str, Callable[[], RouteExtractor]] = {
    "python": PythonRouteExtractor,
    "spring": SpringRouteExtractor,
    "express": ExpressRouteExtractor,
}


@dataclass(frozen=True, slots=True)
class _FileResult:
    endpoints: tuple[Endpoint, ...]
    findings: tuple[Finding, ...]


def build_extractors(names: Sequence[str] | None = None) -> list[RouteExtractor]:
    """Instantiate built-in strategies by name (all of them when ``names`` is empty)."""
    selected = list(names) if names else list(BUILTIN_EXTRACTORS)
    unknown = sorted(set(selected) - set(BUILTIN_EXTRACTORS))
    if unknown:
        raise ValueError(
            f"Unknown extraction strategies: {', '.join(unknown)}. "
            f"Known strategies: {', '.join(sorted(BUILTIN_EXTRACTORS))}."
        )
    return [BUILTIN_EXTRACTORS[name]() for name in dict.fromkeys(selected)]


def iter_source_files(
    root: Path,
    suffixes: set[str],
    file_ignore: Sequence[str] = (),
) -> list[Path]:
    """Return candidate files under ``root`` in sorted order."""
    found: list[Path] = []
    for path in sorted(root.rglob("*")):
        relative = path.relative_to(root)
        if any(part in SKIP_DIRS for part in relative.parts[:-1]):
            continue
        if not path.is_file() or path.suffix not in suffixes:
            continue
        if file_ignore and matches_any_glob(relative.as_posix(), file_ignore):
            continue
        found.append(path)
    return found


def extract_file(
    path: Path,
    root: Path,
    strategies: Sequence[RouteExtractor],
    markers: SecurityMarkers,
) -> _FileResult:
    """Run every strategy that claims ``path``; parse failures become warnings."""
    relative = path.relative_to(root).as_posix()
    try:
        text = path.read_bytes().decode("utf-8-sig")
    except (OSError, UnicodeDecodeError) as exc:
        logger.debug("Skipping unreadable file %s: %s", relative, exc)
        return _FileResult(endpoints=(), findings=(_extraction_warning(relative, "could not be decoded as UTF-8"),))

    endpoints: list[Endpoint] = []
    findings: list[Finding] = []
    for strategy in strategies:
        if path.suffix not in strategy.suffixes:
            continue
        try:
            endpoints.extend(strategy.extract(text, relative, markers))
        except SourceParseError as exc:
            logger.debug("Strategy %s could not parse %s: %s", strategy.name, relative, exc)
            findings.append(_extraction_warning(relative, str(exc)))
    return _FileResult(endpoints=tuple(endpoints), findings=tuple(findings))


async def extract_actual_model(
    root: Path | str,
    *,
    strategies: Sequence[RouteExtractor] | None = None,
    path_ignore: Sequence[str] = (),
    security_markers: Sequence[str] = (),
    max_workers: int = DEFAULT_MAX_WORKERS,
    cancel_event: asyncio.Event | None = None,
) -> ActualModel:
    """Scan ``root`` and return every endpoint the strategies recognize.

    ``path_ignore`` holds source-file globs relative to ``root``. Each file is
    one unit in the bounded worker pool; results are merged in file order.
    """
    root_path = Path(root)
    if not root_path.is_dir():
        raise ValueError(f"Source root is not a directory: {root_path}")

    active = list(strategies) if strategies is not None else build_extractors()
    markers = SecurityMarkers.with_extra(list(security_markers))
    suffixes = {suffix for strategy in active for suffix in strategy.suffixes}
    files = iter_source_files(root_path, suffixes, path_ignore)
    logger.debug("Scanning %d files under %s", len(files), root_path)
    checkpoint(cancel_event)

    results = await run_bounded(
        files,
        lambda path: extract_file(path, root_path, active, markers),
        max_workers=max_workers,
        cancel_event=cancel_event,
    )

    endpoints: list[Endpoint] = []
    findings: list[Finding] = []
    for result in results:
        endpoints.extend(result.endpoints)
        findings.extend(result.findings)
    endpoints.sort(key=lambda endpoint: endpoint.sort_key())
    return ActualModel(
        root=root_path.as_posix(),
        endpoints=tuple(endpoints),
        findings=tuple(findings),
        files_scanned=len(files),
    )


def _extraction_warning(relative: str, reason: str) -> Finding:
    return Finding(
        rule_id="extraction_warning",
        severity="warning",
        message=f"Skipped {relative}: {reason}",
        location=SourceLocation(relative),
        suggested_fix="Fix the syntax error or exclude the file with a path_ignore glob.",
    )


__all__ = [
    "BUILTIN_EXTRACTORS",
    "DEFAULT_SECURITY_MARKERS",
    "SKIP_DIRS",
    "RouteExtractor",
    "SecurityMarkers",
    "SourceParseError",
    "build_extractors",
    "extract_actual_model",
    "extract_file",
    "iter_source_files",
]
