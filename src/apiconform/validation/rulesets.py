"""Load ruleset bindings once at startup."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

import yaml

from apiconform.constants import DocumentRole
from apiconform.resilience.errors import SetupError
from apiconform.schemas import RulesetBinding

logger = logging.getLogger(__name__)


def load_ruleset_bindings(
    ruleset_dir: Path, ruleset_files: dict[str, str]
) -> list[RulesetBinding]:
    """Bind each role to ``<ruleset_dir>/<file>``.

    A missing file means the role is not validated. A file that exists
    but cannot be read or is not a YAML mapping raises ``SetupError``,
    as does ending up with no bindings at all.
    """
    bindings: list[RulesetBinding] = []
    for role_name, filename in sorted(ruleset_files.items()):
        role = DocumentRole(role_name)
        path = ruleset_dir / filename
        if not path.exists():
            logger.info(
                "event=ruleset_absent role=%s path=%s", role, path
            )
            continue
        _check_ruleset(path)
        bindings.append(
            RulesetBinding(
                name=path.name,
                ruleset_path=path.resolve(),
                document_role=role,
            )
        )

    if not bindings:
        msg = (
            f"no ruleset files found in {ruleset_dir} "
            f"(looked for {', '.join(sorted(ruleset_files.values()))})"
        )
        raise SetupError(msg)

    logger.info(
        "event=rulesets_loaded roles=%s",
        ",".join(b.document_role for b in bindings),
    )
    return bindings


def _check_ruleset(path: Path) -> None:
    try:
        raw: Any = yaml.safe_load(path.read_text(encoding="utf-8"))
    except (OSError, UnicodeDecodeError) as exc:
        msg = f"cannot read ruleset {path}: {exc}"
        raise SetupError(msg) from exc
    except yaml.YAMLError as exc:
        msg = f"ruleset {path} is not valid YAML: {exc}"
        raise SetupError(msg) from exc
    if not isinstance(raw, dict):
        msg = f"ruleset {path} must be a YAML mapping"
        raise SetupError(msg)
