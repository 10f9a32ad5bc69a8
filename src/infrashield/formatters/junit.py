"""JUnit XML formatter for CI/CD integration.

Each reference control of the toolkit's standards becomes a testcase: present
controls pass, missing controls fail or are skipped depending on severity.
"""

from __future__ import annotations

from datetime import datetime
from pathlib import Path
from typing import Iterable, Optional
from xml.dom import minidom
from xml.etree import ElementTree as ET

from ..compliance.loader import load_catalogs
from ..models.control import GapAnalysis, StandardCatalog


def export_junit_analysis(
    analysis: GapAnalysis,
    output_path: Path,
    fail_on: Iterable[str] = ("critical", "high"),
    catalogs: Optional[dict[str, StandardCatalog]] = None,
    suite_name: str = "Infra Shield Tools",
) -> dict:
    """Export a gap analysis as JUnit XML.

    Args:
        analysis: Result of analyze().
        output_path: Path to write the XML file.
        fail_on: Severities whose missing controls are failures.
            Other missing controls are reported as skipped.
        catalogs: Catalogs the analysis ran against. Defaults to the bundled set.
        suite_name: Name for the testsuites element.

    Returns:
        Dict with: path, total_tests, failures, skipped, passed.
    """
    if catalogs is None:
        catalogs = load_catalogs()
    fail_set = {s.lower() for s in fail_on}
    missing = {s.id: s for s in analysis.suggestions}

    testsuites = ET.Element("testsuites")
    testsuites.set("name", f"{suite_name} - {analysis.platform}")
    testsuites.set("timestamp", datetime.now().strftime("%Y-%m-%dT%H:%M:%S"))

    total_tests = 0
    total_failures = 0
    total_skipped = 0
    seen: set[str] = set()

    for ref in analysis.standards_used:
        catalog = catalogs.get(ref.id)
        if catalog is None:
            continue

        testsuite = ET.SubElement(testsuites, "testsuite")
        testsuite.set("name", f"{ref.name} {ref.version}")

        suite_tests = 0
        suite_failures = 0
        suite_skipped = 0

        for control in catalog.controls:
            if control.id in seen:
                continue
            seen.add(control.id)
            suite_tests += 1

            testcase = ET.SubElement(testsuite, "testcase")
            testcase.set("name", f"{control.id}: {control.name}")
            testcase.set("classname", f"{ref.id}.{control.category or 'general'}")

            suggestion = missing.get(control.id)
            if suggestion is None:
                continue

            severity = suggestion.severity.value
            if severity in fail_set:
                suite_failures += 1
                failure = ET.SubElement(testcase, "failure")
                failure.set("message", f"[{severity.upper()}] Missing control {control.id}")
                failure.set("type", severity)

                text_parts = [f"Severity: {severity}", f"Reference: {suggestion.reference}"]
                if suggestion.description:
                    text_parts.append(f"\nDescription:\n{suggestion.description}")
                if suggestion.implementation_hint:
                    text_parts.append(f"\nImplementation:\n{suggestion.implementation_hint}")
                failure.text = "\n".join(text_parts)
            else:
                suite_skipped += 1
                skipped = ET.SubElement(testcase, "skipped")
                skipped.set("message", f"[{severity.upper()}] Missing control {control.id}")

        testsuite.set("tests", str(suite_tests))
        testsuite.set("failures", str(suite_failures))
        testsuite.set("errors", "0")
        testsuite.set("skipped", str(suite_skipped))

        total_tests += suite_tests
        total_failures += suite_failures
        total_skipped += suite_skipped

    testsuites.set("tests", str(total_tests))
    testsuites.set("failures", str(total_failures))
    testsuites.set("errors", "0")
    testsuites.set("skipped", str(total_skipped))

    output_path.parent.mkdir(parents=True, exist_ok=True)

    # Pretty-print XML
    rough = ET.tostring(testsuites, encoding="unicode")
    dom = minidom.parseString(rough)
    xml_str = dom.toprettyxml(indent="  ", encoding="UTF-8")
    output_path.write_bytes(xml_str)

    return {
        "path": str(output_path),
        "total_tests": total_tests,
        "failures": total_failures,
        "skipped": total_skipped,
        "passed": total_tests - total_failures - total_skipped,
    }
