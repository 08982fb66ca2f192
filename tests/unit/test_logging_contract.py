# PATH: tests/unit/test_logging_contract.py
"""
Tests for the logging contract.

No kwargs to logger; only extra={"context": {...}} allowed. Context must
survive into JSON and console output.
"""

import ast
import json
import logging
import unittest
from pathlib import Path
from typing import Any, Dict, List

from core.logging import (
    ConsoleFormatter,
    JSONFormatter,
    clear_global_context,
    get_logger,
    log_error,
    log_transaction,
    set_global_context,
)

PROJECT_ROOT = Path(__file__).parent.parent.parent
SOURCE_PACKAGES = ("core", "chains", "config", "simulation", "harness")


class CapturingHandler(logging.Handler):
    def __init__(self, records_list):
        super().__init__()
        self.records = records_list

    def emit(self, record):
        self.records.append(record)


class TestLoggingContractEnforcement(unittest.TestCase):
    """AST-based tests for logging contract."""

    ALLOWED_KWARGS = {"exc_info", "extra", "stack_info", "stacklevel"}

    def _find_logger_violations(self, source_code: str) -> List[Dict[str, Any]]:
        """Find logger calls with invalid kwargs using AST."""
        violations = []
        tree = ast.parse(source_code)

        for node in ast.walk(tree):
            if not isinstance(node, ast.Call) or not isinstance(node.func, ast.Attribute):
                continue

            method_name = node.func.attr
            if method_name not in ("debug", "info", "warning", "error", "critical", "exception"):
                continue

            obj = node.func.value
            if isinstance(obj, ast.Name):
                is_logger = "log" in obj.id.lower()
            elif isinstance(obj, ast.Attribute):
                is_logger = "log" in obj.attr.lower()
            else:
                is_logger = False
            if not is_logger:
                continue

            for kw in node.keywords:
                if kw.arg and kw.arg not in self.ALLOWED_KWARGS:
                    violations.append({
                        "line": node.lineno,
                        "method": method_name,
                        "invalid_kwarg": kw.arg,
                    })

        return violations

    def _source_files(self) -> List[Path]:
        files = [PROJECT_ROOT / "run_overlay.py"]
        for package in SOURCE_PACKAGES:
            files.extend(sorted((PROJECT_ROOT / package).rglob("*.py")))
        return files

    def test_detector_flags_kwargs(self):
        violations = self._find_logger_violations('logger.info("x", tx_hash="0x1")\n')
        self.assertEqual(violations[0]["invalid_kwarg"], "tx_hash")

    def test_sources_have_no_invalid_kwargs(self):
        """No module passes context as logger kwargs."""
        msg = ""
        for filepath in self._source_files():
            violations = self._find_logger_violations(filepath.read_text(encoding="utf-8"))
            for v in violations:
                msg += f"  {filepath.relative_to(PROJECT_ROOT)}:{v['line']}: logger.{v['method']}(..., {v['invalid_kwarg']}=...)\n"
        if msg:
            self.fail("Found logging violations:\n" + msg)


class TestLoggingContextCapture(unittest.TestCase):
    """Tests that context is properly captured in log records."""

    def setUp(self):
        self.captured_records = []
        self.base_logger = logging.getLogger(f"test_capture_{id(self)}")
        self.base_logger.setLevel(logging.DEBUG)
        self.base_logger.handlers = []
        self.base_logger.propagate = False
        self.base_logger.addHandler(CapturingHandler(self.captured_records))

    def tearDown(self):
        clear_global_context()

    def test_adapter_merges_default_context(self):
        """Default context from get_logger is merged with per-call context."""
        logger = get_logger(self.base_logger.name, component="state")
        logger.info("Simulated", extra={"context": {"blocks": 2}})

        record = self.captured_records[0]
        self.assertEqual(record.context, {"component": "state", "blocks": 2})

    def test_log_transaction_context(self):
        logger = get_logger(self.base_logger.name)
        log_transaction(logger, tx_hash="0x" + "ab" * 32, status="success", block_delta=1, gas_used=21000)

        record = self.captured_records[0]
        self.assertEqual(record.levelno, logging.INFO)
        self.assertEqual(record.context["block_delta"], 1)
        self.assertEqual(record.context["gas_used"], 21000)
        self.assertIn("0xabababab", record.getMessage())

    def test_log_error_context(self):
        logger = get_logger(self.base_logger.name)
        log_error(logger, "SIMULATION_INTEGRITY", "block count mismatch", expected=2, received=1)

        record = self.captured_records[0]
        self.assertEqual(record.levelno, logging.ERROR)
        self.assertEqual(record.context["error_kind"], "SIMULATION_INTEGRITY")
        self.assertEqual(record.context["received"], 1)

    def test_json_formatter_includes_global_context(self):
        set_global_context(service="overlay-test")
        logger = get_logger(self.base_logger.name)
        logger.warning("Clamped", extra={"context": {"block": 7}})

        entry = json.loads(JSONFormatter().format(self.captured_records[0]))
        self.assertEqual(entry["level"], "WARNING")
        self.assertEqual(entry["message"], "Clamped")
        self.assertEqual(entry["context"], {"service": "overlay-test", "block": 7})

    def test_exc_info_with_context(self):
        """exc_info works alongside context."""
        logger = get_logger(self.base_logger.name)
        try:
            raise ValueError("Test error")
        except ValueError:
            logger.error("Caught error", exc_info=True, extra={"context": {"operation": "test"}})

        record = self.captured_records[0]
        entry = json.loads(JSONFormatter().format(record))
        self.assertIn("ValueError", entry["context"]["exception"])
        self.assertEqual(entry["context"]["operation"], "test")

    def test_console_formatter_truncates_context(self):
        logger = get_logger(self.base_logger.name)
        logger.info("Many", extra={"context": {f"k{i}": i for i in range(6)}})

        line = ConsoleFormatter().format(self.captured_records[0])
        self.assertIn("k0=0", line)
        self.assertIn("(+2 more)", line)


if __name__ == "__main__":
    unittest.main()
