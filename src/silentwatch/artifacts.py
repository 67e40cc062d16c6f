"""
Scan artifact writing.

Generates, per run directory:
- traces.json: every interaction trace
- findings.json: classified silent failures
- summary.json: truth block, coverage, silences, warnings, retries

All output is canonically ordered and serialized with sorted keys, so two
runs over identical inputs produce byte-identical files apart from run_id,
timestamps and screenshot names.
"""

import hashlib
import json
import logging
import os
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from . import __version__
from .detect.confidence import DEFAULT_POLICY
from .observe.scan import ScanResult

logger = logging.getLogger(__name__)

TRACES_FILE = "traces.json"
FINDINGS_FILE = "findings.json"
SUMMARY_FILE = "summary.json"


def compute_file_hash(file_path: str) -> Optional[str]:
    """
    Compute SHA256 hash of a file.

    Args:
        file_path: Path to file

    Returns:
        "sha256:<hash>" or None if file doesn't exist
    """
    if not os.path.exists(file_path):
        return None

    sha256_hash = hashlib.sha256()
    with open(file_path, "rb") as f:
        for chunk in iter(lambda: f.read(4096), b""):
            sha256_hash.update(chunk)
    return f"sha256:{sha256_hash.hexdigest()}"


def generate_run_id() -> str:
    stamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%SZ")
    return f"scan_{stamp}_{uuid.uuid4().hex[:8]}"


def _write_json(path: str, data: Any) -> str:
    with open(path, "w") as f:
        json.dump(data, f, indent=2, sort_keys=True)
        f.write("\n")
    return path


def build_summary(result: ScanResult, run_id: str, start_url: str,
                  expectations_path: Optional[str] = None) -> Dict[str, Any]:
    return {
        "run_id": run_id,
        "version": __version__,
        "generated_at_utc": datetime.now(timezone.utc).isoformat(),
        "start_url": start_url,
        "expectations_file": expectations_path,
        "expectations_hash": compute_file_hash(expectations_path) if expectations_path else None,
        "confidence_policy_version": DEFAULT_POLICY.version,
        "truth": result.truth,
        "coverage": result.coverage,
        "stats": result.stats.to_dict(),
        "outcomes": [o.to_dict() for o in result.outcomes],
        "gaps": [g.to_dict() for g in result.gaps],
        "silences": result.silence,
        "warnings": result.warnings,
        "retries": result.retries,
        "findings_count": len(result.findings),
        "traces_count": len(result.traces),
    }


def write_scan_artifacts(result: ScanResult, out_dir: str, start_url: str,
                         expectations_path: Optional[str] = None,
                         run_id: Optional[str] = None) -> Dict[str, str]:
    """
    Write traces, findings and summary JSON into ``out_dir``.

    Returns:
        Mapping of artifact name to written path
    """
    os.makedirs(out_dir, exist_ok=True)
    run_id = run_id or generate_run_id()

    paths = {
        "traces": _write_json(os.path.join(out_dir, TRACES_FILE),
                              {"run_id": run_id, "traces": [t.to_dict() for t in result.traces]}),
        "findings": _write_json(os.path.join(out_dir, FINDINGS_FILE),
                                {"run_id": run_id, "findings": [f.to_dict() for f in result.findings]}),
        "summary": _write_json(os.path.join(out_dir, SUMMARY_FILE),
                               build_summary(result, run_id, start_url, expectations_path)),
    }
    logger.info(f"Wrote scan artifacts for {run_id} to {out_dir}")
    return paths
