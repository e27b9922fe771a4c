#!/usr/bin/env python3
"""Security & PII gate for source files.

Fails if:
- print( found in runtime code (src/**)
- A logger call mentions raw payloads, bodies, message text or phone
  numbers without going through log_context / mask_number

Usage:
    python scripts/gate_security_pii.py
"""

import re
import sys
from pathlib import Path

# Keywords that must not appear in logger calls without redaction
SENSITIVE_KEYWORDS = (
    "payload",
    "request.body",
    "raw_body",
    "response.text",
    "message_text",
    ".content",
    "phone",
    "remote_jid",
)

PRINT_PATTERN = re.compile(r"\bprint\s*\(")

# logger.info/debug/warning/error/critical/exception(...)
LOGGER_CALL_PATTERN = re.compile(
    r"logger\.(debug|info|warning|error|critical|exception)\s*\("
)

REDACTION_PATTERNS = (
    "log_context",
    "mask_number",
    "mask_api_key",
)


def check_file(filepath: Path) -> list[str]:
    """Check a single file for violations. Returns list of error messages."""
    errors = []
    try:
        content = filepath.read_text(encoding="utf-8")
    except UnicodeDecodeError:
        return []

    for lineno, line in enumerate(content.splitlines(), start=1):
        if line.lstrip().startswith("#"):
            continue

        code_part = line.split("#")[0]
        if PRINT_PATTERN.search(code_part):
            errors.append(f"{filepath}:{lineno}: print() not allowed in runtime code")

        if LOGGER_CALL_PATTERN.search(code_part):
            line_lower = code_part.lower()
            has_redaction = any(rp in code_part for rp in REDACTION_PATTERNS)
            for keyword in SENSITIVE_KEYWORDS:
                if keyword in line_lower and not has_redaction:
                    errors.append(
                        f"{filepath}:{lineno}: logger call with '{keyword}' "
                        "must use redaction (log_context/mask_number)"
                    )

    return errors


def check_tree(src_dir: Path) -> list[str]:
    errors: list[str] = []
    for pyfile in sorted(src_dir.rglob("*.py")):
        errors.extend(check_file(pyfile))
    return errors


def main() -> int:
    src_dir = Path("src")
    if not src_dir.exists():
        src_dir = Path(__file__).parent.parent / "src" / "wabridge"
    else:
        src_dir = src_dir / "wabridge"

    if not src_dir.exists():
        sys.stderr.write("Error: src/wabridge directory not found\n")
        return 1

    all_errors = check_tree(src_dir)
    if all_errors:
        sys.stderr.write("PII gate FAILED - Security/PII violations found:\n")
        for err in all_errors:
            sys.stderr.write(f"  {err}\n")
        return 1

    sys.stdout.write("PII gate PASSED - No security/PII violations found\n")
    return 0


if __name__ == "__main__":
    sys.exit(main())
