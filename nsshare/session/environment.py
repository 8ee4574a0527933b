"""Environment handed to session shells."""

import logging
import os
from typing import Dict, List, Mapping, Optional, Sequence

from nsshare.constants import (
    LINKER64_PATH,
    LINKER_PATH,
    PASSTHROUGH_ENV_VARS,
    PROOT_LOADER32_LIBRARY,
    PROOT_LOADER_LIBRARY,
)
from nsshare.session.model import SessionConfig

logger = logging.getLogger(__name__)


def build_environment(
    config: SessionConfig,
    session_id: str,
    host_env: Optional[Mapping[str, str]] = None,
) -> List[str]:
    """Build the ``KEY=VALUE`` environment list for a session shell.

    Args:
        config: Settings of the session.
        session_id: Session identifier, used for its private proot temp dir.
        host_env: Environment of the host process. Defaults to os.environ.

    Returns:
        The environment list, in the order the terminal expects it.
    """
    host_env = os.environ if host_env is None else host_env
    state_dir = config.state_dir
    bin_dir = os.path.join(state_dir, "bin")
    lib_dir = os.path.join(state_dir, "lib")
    tmp_dir = os.path.join(config.prefix_dir, "tmp")
    session_tmp_dir = os.path.join(tmp_dir, session_id)
    try:
        os.makedirs(session_tmp_dir, exist_ok=True)
    except OSError as e:
        logger.warning(f"Could not create temp dir {session_tmp_dir}: {e}")

    linker = LINKER64_PATH if os.path.exists(LINKER64_PATH) else LINKER_PATH
    env = [
        f"PATH={host_env.get('PATH', '')}:/sbin:{bin_dir}",
        "HOME=/sdcard",
        "COLORTERM=truecolor",
        "TERM=xterm-256color",
        "LANG=C.UTF-8",
        f"BIN={bin_dir}",
        f"PREFIX={config.prefix_dir}",
        f"LD_LIBRARY_PATH={lib_dir}",
        f"LINKER={linker}",
        f"NATIVE_LIB_DIR={config.native_lib_dir}",
        f"PROOT_TMP_DIR={session_tmp_dir}",
        f"TMPDIR={tmp_dir}",
    ]

    loader32 = os.path.join(config.native_lib_dir, PROOT_LOADER32_LIBRARY)
    if os.path.exists(loader32):
        env.append(f"PROOT_LOADER32={loader32}")
    loader = os.path.join(config.native_lib_dir, PROOT_LOADER_LIBRARY)
    if os.path.exists(loader):
        env.append(f"PROOT_LOADER={loader}")

    if config.seccomp:
        env.append("SECCOMP=1")

    for name in PASSTHROUGH_ENV_VARS:
        value = host_env.get(name)
        if value is not None:
            env.append(f"{name}={value}")
    return env


def as_mapping(env: Sequence[str]) -> Dict[str, str]:
    """Convert a ``KEY=VALUE`` list into a dict; later entries win."""
    mapping = {}
    for entry in env:
        key, sep, value = entry.partition("=")
        if sep:
            mapping[key] = value
    return mapping
