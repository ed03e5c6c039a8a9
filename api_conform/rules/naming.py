"""Path naming conventions."""

from __future__ import annotations

import re

from api_conform.models import Finding, SourceLocation
from api_conform.paths import is_placeholder, segments
from api_conform.rules.base import RuleContext

_KEBAB_RE = re.compile(r"^[a-z0-9]+(?:-[a-z0-9]+)*$")
_VERSION_RE = re.compile(r"^v\d+(?:\.\d+)?$")
_NEUTRAL_SEGMENTS = {"api", "rest"}
# Uncountable or irregular plurals that read fine as collections.
_PLURAL_EXCEPTIONS = {"data", "people", "children", "media", "news", "series", "metadata", "feedback"}


class NamingRule:
    """Reports singular collections, non-kebab-case segments, and mixed version prefixes."""

    rule_id = "naming"

    def evaluate(self, context: RuleContext) -> list[Finding]:
        paths: dict[str, SourceLocation | None] = {}
        for endpoint in (*context.spec.endpoints, *context.actual.endpoints):
            paths.setdefault(endpoint.path_template, endpoint.location)

        versioned = {path for path in paths if any(_VERSION_RE.match(part) for part in segments(path))}
        # The minority convention is the inconsistent one; ties flag unversioned paths.
        flag_versioned = 0 < len(versioned) and len(versioned) * 2 < len(paths)

        findings: list[Finding] = []
        for path in sorted(paths):
            location = paths[path]
            parts = segments(path)
            for index, part in enumerate(parts):
                if is_placeholder(part) or _VERSION_RE.match(part) or part in _NEUTRAL_SEGMENTS:
                    continue
                if not _KEBAB_RE.match(part):
                    findings.append(
                        self._finding(
                            location,
                            f"Path {path} segment '{part}' is not kebab-case.",
                            "Use lowercase words separated by hyphens in path segments.",
                        )
                    )
                followed_by_id = index + 1 < len(parts) and is_placeholder(parts[index + 1])
                if followed_by_id and not _is_plural(part):
                    findings.append(
                        self._finding(
                            location,
                            f"Path {path} collection segment '{part}' is not plural.",
                            "Name collections with plural nouns, e.g. /users/{id}.",
                        )
                    )
            if versioned and len(versioned) < len(paths):
                if (path in versioned) == flag_versioned:
                    state = "has" if flag_versioned else "lacks"
                    findings.append(
                        self._finding(
                            location,
                            f"Path {path} {state} a version prefix unlike most other paths.",
                            "Use one version-prefix convention for every path.",
                        )
                    )
        return findings

    def _finding(self, location: SourceLocation | None, message: str, fix: str) -> Finding:
        return Finding(
            rule_id=self.rule_id,
            severity="info",
            message=message,
            location=location,
            suggested_fix=fix,
        )


def _is_plural(segment: str) -> bool:
    word = segment.lower().rsplit("-", 1)[-1]
    return word in _PLURAL_EXCEPTIONS or (word.endswith("s") and not word.endswith("ss"))
