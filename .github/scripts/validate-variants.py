#!/usr/bin/env python3
"""Validate ksrunner/variants.yaml: schema correctness and compose URL reachability."""

from __future__ import annotations

import os
import re
import string
import sys
from pathlib import Path

import requests
import yaml

VARIANTS_PATH = Path(__file__).resolve().parents[2] / "ksrunner" / "variants.yaml"
KEY_RE = re.compile(r"^[a-z0-9]+-[0-9][0-9.]*$")
TEMPLATE_FIELDS = {"download_node", "compose", "arch"}
REQUIRED_FIELDS = ("os_variant", "boot_args", "compose_url", "image_filename")
REQUEST_TIMEOUT = 30
USER_AGENT = "kickstart-vm-runner/variant-validator"


def load_variants(path: Path) -> dict:
    with open(path) as f:
        return yaml.safe_load(f)


def _template_fields(template: str) -> set:
    return {name for _, name, _, _ in string.Formatter().parse(template) if name}


# ── Phase 1: Schema validation (fail-fast) ──────────────────────────


def validate_schema(data: dict) -> list[str]:
    errors: list[str] = []

    if not isinstance(data, dict) or "variants" not in data:
        errors.append("Top-level 'variants' key is missing")
        return errors

    variants = data["variants"]
    if not isinstance(variants, dict):
        errors.append("'variants' must be a mapping")
        return errors

    for key, entry in variants.items():
        if not KEY_RE.match(str(key)):
            errors.append(f"[{key}] key must look like '<id>-<version>'")
        if not isinstance(entry, dict):
            errors.append(f"[{key}] entry is not a mapping")
            continue

        for name in REQUIRED_FIELDS:
            if name not in entry:
                errors.append(f"[{key}] missing required field '{name}'")
            elif not isinstance(entry[name], str) or not entry[name].strip():
                errors.append(f"[{key}] '{name}' must be a non-empty string")

        for name in ("compose_url", "image_filename"):
            template = entry.get(name)
            if not isinstance(template, str):
                continue
            try:
                unknown = _template_fields(template) - TEMPLATE_FIELDS
            except ValueError as exc:
                errors.append(f"[{key}] '{name}' is not a valid template: {exc}")
                continue
            if unknown:
                errors.append(f"[{key}] '{name}' uses unknown field(s): {', '.join(sorted(unknown))}")

        packages = entry.get("packages", [])
        if not isinstance(packages, list) or not all(isinstance(p, str) for p in packages):
            errors.append(f"[{key}] 'packages' must be a list of strings")

    return errors


# ── Phase 2: URL reachability (collect-all, needs COMPOSE/DOWNLOAD_NODE) ──


def check_url(key: str, url: str) -> str | None:
    """Return an error string if the URL is unreachable, else None."""
    session = requests.Session()
    session.headers["User-Agent"] = USER_AGENT

    try:
        resp = session.head(url, timeout=REQUEST_TIMEOUT, allow_redirects=True)
        if resp.status_code < 400:
            return None
        # Some servers reject HEAD; fall back to GET with streaming
        if resp.status_code in (403, 405):
            resp = session.get(
                url, timeout=REQUEST_TIMEOUT, allow_redirects=True, stream=True
            )
            resp.close()
            if resp.status_code < 400:
                return None
        return f"[{key}] HTTP {resp.status_code} for {url}"
    except requests.RequestException as exc:
        return f"[{key}] {exc.__class__.__name__}: {exc} for {url}"


def validate_urls(data: dict, fields: dict) -> list[str]:
    errors: list[str] = []

    for key, entry in data["variants"].items():
        url = entry["compose_url"].format(**fields) + "/" + entry["image_filename"].format(**fields)
        err = check_url(key, url)
        if err:
            errors.append(err)

    return errors


# ── Main ─────────────────────────────────────────────────────────────


def main() -> int:
    print(f"Loading {VARIANTS_PATH}")
    data = load_variants(VARIANTS_PATH)

    print("\n=== Phase 1: Schema validation ===")
    schema_errors = validate_schema(data)
    if schema_errors:
        for e in schema_errors:
            print(f"  ERROR: {e}")
        print(f"\nSchema validation failed with {len(schema_errors)} error(s)")
        return 1
    variant_count = len(data["variants"])
    print(f"  OK: {variant_count} variants, all schemas valid")

    compose = os.environ.get("COMPOSE")
    download_node = os.environ.get("DOWNLOAD_NODE")
    if not compose or not download_node:
        print("\nCOMPOSE/DOWNLOAD_NODE not set; skipping URL reachability")
        return 0

    print("\n=== Phase 2: URL reachability ===")
    fields = {
        "compose": compose,
        "download_node": download_node.rstrip("/"),
        "arch": os.environ.get("ARCH", "x86_64"),
    }
    url_errors = validate_urls(data, fields)
    if url_errors:
        for e in url_errors:
            print(f"  ERROR: {e}")
        print(f"\nURL validation failed: {len(url_errors)}/{variant_count} unreachable")
        return 1
    print(f"  OK: all {variant_count} image URLs reachable")

    print("\nAll checks passed.")
    return 0


if __name__ == "__main__":
    sys.exit(main())
