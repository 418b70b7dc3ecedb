"""Shared fixtures for testr tests."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from testr.config import reset_config

MATH_TEST_JS = """\
const { add, subtract } = require("./math");

describe("Math", () => {
  it("adds", () => {
    expect(add(1, 2)).toBe(3);
  });

  it("subtracts", () => {
    expect(subtract(3, 1)).toBe(2);
  });
});
"""

STRINGS_TEST_JS = """\
describe("Strings", () => {
  test("upper", () => { expect("a".toUpperCase()).toBe("A"); });
});
"""

CALCULATOR_TEST_PHP = """\
<?php

namespace Tests\\Unit;

use PHPUnit\\Framework\\TestCase;

final class CalculatorTest extends TestCase
{
    public function testAdd(): void
    {
        $this->assertSame(3, 1 + 2);
    }

    /** @test */
    public function it_subtracts(): void
    {
        $this->assertSame(1, 2 - 1);
    }

    private function helper(): int
    {
        return 1;
    }
}
"""


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture(autouse=True)
def _fresh_config():
    """Keep the config singleton from leaking between tests."""
    reset_config()
    yield
    reset_config()


@pytest.fixture
def jest_project(tmp_path: Path) -> Path:
    """A Jest project with one test file containing Math > adds/subtracts."""
    root = tmp_path.resolve() / "web"
    (root / "src").mkdir(parents=True)
    (root / "package.json").write_text(json.dumps({"devDependencies": {"jest": "^29.7.0"}}))
    (root / "src" / "math.test.js").write_text(MATH_TEST_JS)
    return root


@pytest.fixture
def phpunit_project(tmp_path: Path) -> Path:
    """A PHPUnit project with one test class."""
    root = tmp_path.resolve() / "api"
    (root / "tests" / "Unit").mkdir(parents=True)
    (root / "phpunit.xml").write_text("<phpunit/>")
    (root / "tests" / "Unit" / "CalculatorTest.php").write_text(CALCULATOR_TEST_PHP)
    return root


def jest_json(file_path: str | Path, *assertions: tuple[list[str], str, str, float]) -> str:
    """Build a Jest ``--json`` report for one file.

    Each assertion is ``(ancestor_titles, title, status, duration)``.
    """
    results = [
        {
            "ancestorTitles": ancestors,
            "title": title,
            "fullName": " ".join([*ancestors, title]),
            "status": status,
            "duration": duration,
            "failureMessages": ["expected 3 received 4"] if status == "failed" else [],
        }
        for ancestors, title, status, duration in assertions
    ]
    return json.dumps(
        {
            "success": all(a[2] != "failed" for a in assertions),
            "numTotalTests": len(results),
            "numPassedTests": sum(1 for a in assertions if a[2] == "passed"),
            "numFailedTests": sum(1 for a in assertions if a[2] == "failed"),
            "numPendingTests": sum(1 for a in assertions if a[2] == "pending"),
            "testResults": [
                {"name": str(file_path), "status": "passed", "assertionResults": results}
            ],
        }
    )
