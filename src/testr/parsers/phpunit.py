"""Parse PHPUnit test classes into a suite tree.

A test class is a class extending ``TestCase`` (optionally namespaced,
abstract or final). Its test methods are ``test*`` methods, or any method
preceded by an ``@test`` docblock annotation or a ``#[Test]`` attribute.
"""

from __future__ import annotations

import os
import re
from dataclasses import dataclass, field

from ..identifiers import SEPARATOR, child_id, file_token_for
from ..models import TestCase, TestLocation, TestSuite

CLASS_PATTERN = re.compile(
    r"(?:abstract\s+|final\s+)?class\s+(\w+)\s+extends\s+"
    r"(?:TestCase|Tests\\TestCase|\\?PHPUnit\\Framework\\TestCase)\b"
)
TEST_METHOD_PATTERN = re.compile(r"(?:public\s+)?function\s+(test\w*)\s*\(")
ANY_METHOD_PATTERN = re.compile(r"(?:public\s+)?function\s+(\w+)\s*\(")
ANNOTATION_PATTERN = re.compile(r"@test\b|#\[\s*Test\s*\]")


@dataclass
class _Method:
    name: str
    line: int
    column: int


@dataclass
class _Class:
    name: str
    line: int
    column: int
    methods: list[_Method] = field(default_factory=list)


def parse_test_file(file_path: str, content: str) -> TestSuite | None:
    """Parse one PHPUnit test file.

    Returns:
        A file-level TestSuite with one child suite per test class, or None
        if the file declares no test class.
    """
    classes = _parse_classes(content.split("\n"))
    if not classes:
        return None

    file_id = file_token_for(file_path)
    return TestSuite(
        id=file_id,
        name=os.path.basename(file_path),
        location=TestLocation(file=file_path, line=1, column=1),
        children=[_to_suite(cls, file_path, file_id) for cls in classes],
        parent_id=None,
    )


def _parse_classes(lines: list[str]) -> list[_Class]:
    classes: list[_Class] = []
    current: _Class | None = None
    depth = 0
    annotated = False

    for index, line in enumerate(lines):
        line_number = index + 1

        match = CLASS_PATTERN.search(line)
        if match:
            current = _Class(match.group(1), line_number, match.start() + 1)
            classes.append(current)
            depth = 0
            annotated = False

        if current is None:
            continue

        if ANNOTATION_PATTERN.search(line):
            annotated = True
        else:
            method = TEST_METHOD_PATTERN.search(line)
            if method is None and annotated:
                method = ANY_METHOD_PATTERN.search(line)
            if method:
                current.methods.append(_Method(method.group(1), line_number, method.start() + 1))
                annotated = False
            elif ANY_METHOD_PATTERN.search(line):
                # A plain helper method consumes a dangling annotation.
                annotated = False

        depth += line.count("{") - line.count("}")
        if depth <= 0 and "}" in line:
            current = None

    return classes


def _to_suite(cls: _Class, file_path: str, file_id: str) -> TestSuite:
    class_id = child_id(file_id, cls.name)
    return TestSuite(
        id=class_id,
        name=cls.name,
        location=TestLocation(file=file_path, line=cls.line, column=cls.column),
        children=[
            TestCase(
                id=child_id(class_id, method.name),
                name=method.name,
                full_name=f"{cls.name}{SEPARATOR}{method.name}",
                location=TestLocation(file=file_path, line=method.line, column=method.column),
                parent_id=class_id,
            )
            for method in cls.methods
        ],
        parent_id=file_id,
    )
