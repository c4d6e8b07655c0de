import json
import datetime
import logging
import os
from typing import List

from pydantic import TypeAdapter, ValidationError

from ..exceptions import ConfigError
from ..type.types_def import TestCase, TestResult

logger = logging.getLogger(__name__)

TESTCASES_FILENAME = "testcases.json"
RESULTS_FILENAME = "validation_results.json"

_testcases_adapter = TypeAdapter(List[TestCase])
_results_adapter = TypeAdapter(List[TestResult])


def make_run_dir(server_name: str, logs_dir: str = ".logs") -> str:
    """Create ``<logs_dir>/<server>_<timestamp>`` and return its path."""
    current_timestamp = datetime.datetime.now(datetime.timezone.utc).replace(tzinfo=None).isoformat()
    safe_timestamp = current_timestamp.replace(":", "-").replace(".", "-")
    safe_name = "".join(c if c.isalnum() or c in "-_" else "_" for c in server_name)
    folderpath = os.path.join(logs_dir, f"{safe_name}_{safe_timestamp}")
    os.makedirs(folderpath, exist_ok=True)
    return folderpath


def _write(filepath: str, payload: list) -> str:
    with open(filepath, "w", encoding="utf-8") as file:
        json.dump(payload, file, ensure_ascii=False, indent=4)
    return filepath


def save_testcases(run_dir: str, testcases: List[TestCase]) -> str:
    """Save test cases (array of JSON) into the run directory."""
    filepath = _write(
        os.path.join(run_dir, TESTCASES_FILENAME),
        _testcases_adapter.dump_python(testcases, mode="json", by_alias=True),
    )
    logger.info(f"{len(testcases)} test cases saved into {filepath}")
    return filepath


def save_results(run_dir: str, results: List[TestResult]) -> str:
    filepath = _write(
        os.path.join(run_dir, RESULTS_FILENAME),
        _results_adapter.dump_python(results, mode="json", by_alias=True),
    )
    logger.info(f"{len(results)} results saved into {filepath}")
    return filepath


def _read(filepath: str, adapter: TypeAdapter) -> list:
    try:
        with open(filepath, "r", encoding="utf-8") as f:
            return adapter.validate_python(json.load(f))
    except FileNotFoundError as e:
        raise ConfigError(f"File not found: {filepath}") from e
    except json.JSONDecodeError as e:
        raise ConfigError(f"Invalid JSON in {filepath}: {e}") from e
    except ValidationError as e:
        raise ConfigError(f"Unexpected content in {filepath}: {e}") from e


def load_testcases(filepath: str) -> List[TestCase]:
    return _read(filepath, _testcases_adapter)


def load_results(filepath: str) -> List[TestResult]:
    return _read(filepath, _results_adapter)
