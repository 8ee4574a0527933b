"""Constants for nsshare."""

import os

# Base directories
DEFAULT_PREFIX_DIR = "/data/data/com.rk.terminal/files"
DEFAULT_NATIVE_LIB_DIR = "/data/app/com.rk.terminal/lib/arm64"

# Configurable paths (can be overridden by environment variables)
NSSHARE_PREFIX_DIR = os.getenv("NSSHARE_PREFIX", DEFAULT_PREFIX_DIR)
NSSHARE_STATE_DIR = os.getenv(
    "NSSHARE_STATE_DIR", os.path.join(NSSHARE_PREFIX_DIR, "local")
)
NSSHARE_ROOT_DIR = os.getenv(
    "NSSHARE_ROOT_DIR", os.path.join(NSSHARE_STATE_DIR, "alpine")
)
NSSHARE_NATIVE_LIB_DIR = os.getenv("NSSHARE_NATIVE_LIB_DIR", DEFAULT_NATIVE_LIB_DIR)

# External tools
PRIVILEGE_TOOL = os.getenv("NSSHARE_PRIVILEGE_TOOL", "su")
UNSHARE_BINARY = "unshare"
NSENTER_BINARY = "nsenter"
CHROOT_BINARY = "chroot"
HOST_SHELL = "/system/bin/sh"
LINKER64_PATH = "/system/bin/linker64"
LINKER_PATH = "/system/bin/linker"
PROOT_LIBRARY = "libproot.so"
PROOT_LOADER_LIBRARY = "libproot-loader.so"
PROOT_LOADER32_LIBRARY = "libproot-loader32.so"

# Paths inside the container
CONTAINER_SHELL = "/bin/sh"
CONTAINER_INIT = "/sbin/init"
CONTAINER_HOME = "/root"
INTERACTIVE_SHELL_COMMAND = f"cd {CONTAINER_HOME} && exec {CONTAINER_SHELL}"
DETACHED_SHELL_COMMAND = (
    f"cd {CONTAINER_HOME} && "
    f"(setsid {CONTAINER_SHELL} </dev/null >/dev/null 2>&1 &) && sleep 0.1"
)

# Host directories bind-mounted into a chroot: (host path, path relative to root)
CHROOT_BIND_MOUNTS = [
    ("/sdcard", "sdcard"),
    ("/storage", "storage"),
    ("/data/data", "data/data"),
    ("/system", "system"),
    ("/vendor", "vendor"),
]

# Host directories bound by proot: (host path, guest path)
PROOT_BIND_MOUNTS = [
    ("/sdcard", "/sdcard"),
    ("/storage", "/storage"),
    ("/data/data", "/data/data"),
    ("/system", "/system"),
    ("/vendor", "/vendor"),
    ("/apex", "/apex"),
    ("/linkerconfig", "/linkerconfig"),
]

# Stdio and device shims bound by proot, after the state-dir proc shims
PROOT_DEVICE_BINDS = [
    ("/proc/self/fd", "/proc/self/fd"),
    ("/proc/self/fd/0", "/dev/stdin"),
    ("/proc/self/fd/1", "/dev/stdout"),
    ("/proc/self/fd/2", "/dev/stderr"),
    ("/dev/urandom", "/dev/random"),
]

# Fake /proc files kept in the state directory and bound over /proc
PROC_STAT_SHIMS = [("stat", "/proc/stat"), ("vmstat", "/proc/vmstat")]

# Namespace marker files
MARKER_FILE_NAME = ".alpine-ns-pid"

# Timeouts (seconds)
PROBE_TIMEOUT = float(os.getenv("NSSHARE_PROBE_TIMEOUT", "5"))
MARKER_WAIT_TIMEOUT = float(os.getenv("NSSHARE_MARKER_WAIT", "2"))
MARKER_POLL_INTERVAL = 0.05
# How long a session waits for another session to finish creating a namespace
CREATION_TIMEOUT = float(os.getenv("NSSHARE_CREATION_TIMEOUT", "10"))
TERMINATE_TIMEOUT = float(os.getenv("NSSHARE_TERMINATE_TIMEOUT", "5"))

# Worker pool for namespace notifications
DEFAULT_NOTIFICATION_WORKERS = 4

# Host environment variables passed through to every session
PASSTHROUGH_ENV_VARS = [
    "ANDROID_ART_ROOT",
    "ANDROID_DATA",
    "ANDROID_I18N_ROOT",
    "ANDROID_ROOT",
    "ANDROID_RUNTIME_ROOT",
    "ANDROID_TZDATA_ROOT",
    "BOOTCLASSPATH",
    "DEX2OATBOOTCLASSPATH",
    "EXTERNAL_STORAGE",
]

TRUTHY_VALUES = {"1", "true", "yes", "on"}
