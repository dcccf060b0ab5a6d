"""Security policy defaults and TOML-based policy loading.

The default policy sandboxes every build into a copy of the conventional
source, build and package directories and rejects commands that mention
common destructive file utilities.
"""

from __future__ import annotations

import os
import tomllib
from typing import Any

from buildstudio.core.models import SecurityPolicy

DEFAULT_POLICY: dict[str, Any] = {
    "enable_sandbox": True,
    # Copied into the sandbox when present; everything else stays behind
    "allowed_paths": ["./src", "./builds", "./packages"],
    # Literal substrings, matched anywhere in the command line
    "blocked_commands": ["rm", "rmdir", "mv", "cp", "chmod", "chown"],
    "network_isolation": True,
    "max_build_time_seconds": 3600,
}


def load_policy(path: str = "config/policy.toml") -> SecurityPolicy:
    """Load a security policy, merging user settings over DEFAULT_POLICY.

    Keys are read from a top-level [security] table when present, otherwise
    from the top level of the document. A max_build_time_seconds of 0 in the
    file disables the build timeout.

    Args:
        path: Path to the policy TOML file. If the file does not exist the
              defaults are returned.

    Returns:
        SecurityPolicy: Validated, immutable policy.

    Raises:
        PolicyValidationError: If the merged policy contains invalid values
        tomllib.TOMLDecodeError: If the TOML file is malformed
        OSError: If the file exists but cannot be read
    """
    if not os.path.exists(path):
        return SecurityPolicy(**DEFAULT_POLICY)

    with open(path, "rb") as f:
        data = tomllib.load(f)

    overrides = data.get("security", data)
    policy = DEFAULT_POLICY | overrides

    if policy.get("max_build_time_seconds") == 0:
        policy["max_build_time_seconds"] = None

    return SecurityPolicy(**policy)
