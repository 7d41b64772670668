"""
Cat-Scale Job Catalogue

Builds the ordered, platform-specific list of collection jobs. Tool
availability is probed once here: jobs whose executables are missing stay in
the catalogue but are marked skipped, so the run manifest still records them.
Container and VM platforms are enumerated at build time into one job per
container, network and domain.
"""

import logging
import platform
import shutil
import stat
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterator, List, Optional, Sequence, Tuple

from catscale.collectors.actions import (
    CommandCapture,
    FileHeadCapture,
    FileSetArchive,
    FileSetListing,
    HomeDirectoryQuery,
    InteractiveUsers,
    MatchedFiles,
    PerItemCommand,
    ProcessSnapshot,
    TimelineCapture,
)
from catscale.collectors.filesets import FileQuery
from catscale.collectors.job import Job
from catscale.core.config import CollectionConfig
from catscale.core.schema import Category
from catscale.core.utils import run_command, safe_filename

logger = logging.getLogger(__name__)

SOLARIS = "solaris"
LINUX = "linux"

# Enumeration commands may be slow on busy container hosts.
ENUMERATION_TIMEOUT_S = 60

SKIP_MISSING = "command not available: {}"
SKIP_DISABLED = "disabled by configuration"
SKIP_OFFLINE = "live-host collection not possible for host root {}"


def detect_platform() -> str:
    """Normalised platform id of the running host."""
    system = platform.system().lower()
    if system in ("sunos", "solaris"):
        return SOLARIS
    return system or "unknown"


class CapabilityProbe:
    """Cached executable lookups and build-time enumeration commands."""

    def __init__(self, path: Optional[str] = None):
        self.path = path
        self._cache: Dict[str, bool] = {}

    def available(self, executable: str) -> bool:
        if executable not in self._cache:
            self._cache[executable] = shutil.which(executable, path=self.path) is not None
        return self._cache[executable]

    def missing(self, executables: Sequence[str]) -> List[str]:
        return [name for name in executables if not self.available(name)]

    def list_lines(self, argv: Sequence[str]) -> List[str]:
        """Non-empty output lines of an enumeration command, [] if unavailable or failing."""
        if not self.available(argv[0]):
            return []
        output = run_command(list(argv), timeout=ENUMERATION_TIMEOUT_S)
        if output is None:
            logger.warning(f"Enumeration failed: {' '.join(argv)}")
            return []
        return [line.strip() for line in output.splitlines() if line.strip()]


@dataclass
class Catalogue:
    """Ordered jobs for one run, plus the reasons some of them will be skipped."""

    platform_id: str
    jobs: List[Job] = field(default_factory=list)
    skipped: Dict[str, str] = field(default_factory=dict)

    def __iter__(self) -> Iterator[Job]:
        return iter(self.jobs)

    def __len__(self) -> int:
        return len(self.jobs)

    def names(self) -> List[str]:
        return [job.name for job in self.jobs]

    def get(self, name: str) -> Optional[Job]:
        for job in self.jobs:
            if job.name == name:
                return job
        return None

    def skip_reason(self, name: str) -> Optional[str]:
        return self.skipped.get(name)

    def runnable(self) -> List[Job]:
        return [job for job in self.jobs if job.name not in self.skipped]

    def validate(self) -> None:
        """Job names and (category, artifact) pairs must be unique."""
        names = set()
        outputs = set()
        for job in self.jobs:
            if job.name in names:
                raise ValueError(f"Duplicate job name: {job.name}")
            names.add(job.name)
            for output in job.outputs:
                key = (job.category, output)
                if key in outputs:
                    raise ValueError(f"Output {output} in {job.category.value} written by two jobs")
                outputs.add(key)


# =============================================================================
# Job helpers
# =============================================================================

def command(
    name: str,
    category: Category,
    *commands: Sequence[str],
    output: Optional[str] = None,
    fallback: Optional[Sequence[str]] = None,
    fallback_output: Optional[str] = None,
    merge_stderr: bool = False,
    description: str = "",
    timeout_s: Optional[float] = None,
) -> Job:
    """Command-capture job writing <name>.txt unless told otherwise."""
    fb = None
    if fallback is not None:
        fb = (fallback, fallback_output or f"{name}-fallback.txt")
    return Job(
        name=name,
        category=category,
        action=CommandCapture(commands, output or f"{name}.txt", fallback=fb, merge_stderr=merge_stderr),
        description=description,
        timeout_s=timeout_s,
    )


def first_available(probe: CapabilityProbe, *candidates: Job) -> Job:
    """First candidate whose executables all exist; the first one otherwise."""
    for job in candidates:
        if not probe.missing(job.executables):
            return job
    return candidates[0]


def archive(
    name: str,
    category: Category,
    query,
    compress: bool = True,
    description: str = "",
) -> Job:
    suffix = "tar.gz" if compress else "tar"
    return Job(
        name=name,
        category=category,
        action=FileSetArchive(query, f"{name}.{suffix}", f"{name}-list.txt", compress=compress),
        description=description,
    )


# =============================================================================
# Shared job groups
# =============================================================================

def _process_snapshot() -> Job:
    return Job(
        name="process-snapshot",
        category=Category.PROCESS_AND_NETWORK,
        action=ProcessSnapshot("process-snapshot.json"),
        description="psutil process and connection snapshot",
    )


def _process_cmdlines() -> Job:
    return Job(
        name="process-cmdline",
        category=Category.PROCESS_AND_NETWORK,
        action=FileHeadCapture(
            FileQuery(roots=("/proc",), max_depth=2, relpath_glob="[0-9]*/cmdline"),
            "process-cmdline.txt",
            nul_to_space=True,
        ),
        description="Command line of every process from /proc",
    )


def _hidden_home_files() -> Job:
    return archive(
        "hidden-user-home-dir",
        Category.USER_FILES,
        HomeDirectoryQuery(names=(".*",), types="f"),
        description="Dot-files in the home directories of interactive users",
    )


def _login_records(log_dir: str) -> List[Job]:
    jobs = []
    for kind, label in (("btmp", "bad logins"), ("wtmp", "historic logons")):
        query = FileQuery(roots=(log_dir,), names=(f"{kind}*",), ignore_case=False)
        jobs.append(
            Job(
                name=f"last-{kind}",
                category=Category.LOGS,
                action=PerItemCommand(["last", "-f", "{}"], MatchedFiles(query), f"last-{kind}.txt", live_only=False),
                description=f"{label} ({kind})",
            )
        )
    return jobs


def _log_folder(path: str) -> Job:
    name = "var-" + path.rstrip("/").rsplit("/", 1)[-1]
    return archive(
        name,
        Category.LOGS,
        FileQuery(roots=(path,)),
        compress=False,
        description=f"All files under {path}",
    )


def _release_files() -> Job:
    return Job(
        name="release",
        category=Category.SYSTEM_INFO,
        action=FileHeadCapture(
            FileQuery(roots=("/etc",), max_depth=1, names=("*release*",), ignore_case=False),
            "release.txt",
            header=False,
        ),
        description="OS release files",
    )


ETC_KEY_PATTERNS = (
    "yum*",
    "apt*",
    "hosts*",
    "passwd",
    "sudoers*",
    "cron*",
    "ssh*",
    "rc*",
    "inittab",
    "init.d",
    "profile*",
    "bash*",
)


def _config_files(config: CollectionConfig) -> List[Job]:
    return [
        archive(
            "etc-key-files",
            Category.SYSTEM_INFO,
            FileQuery(roots=("/etc",), types="fd", names=ETC_KEY_PATTERNS),
            description="Key host configuration files from /etc",
        ),
        archive(
            "etc-modified-files",
            Category.SYSTEM_INFO,
            FileQuery(roots=("/etc",), types="fl", modified_within_days=config.modified_within_days),
            description=f"/etc files modified in the last {config.modified_within_days} days",
        ),
    ]


def _timeline() -> Job:
    everything = "fdl"
    return Job(
        name="full-timeline",
        category=Category.MISC,
        action=TimelineCapture(
            [
                FileQuery(roots=("/",), xdev=True, types=everything, include_root=True),
                FileQuery(roots=("/tmp",), types=everything, include_root=True),
                FileQuery(roots=("/dev/shm",), types=everything, include_root=True),
            ],
            "full-timeline.csv",
        ),
        description="Filesystem timeline of the root filesystem, /tmp and /dev/shm",
    )


def _ssh_folders() -> Job:
    return archive(
        "ssh-folders",
        Category.USER_FILES,
        FileQuery(roots=("/",), xdev=True, types="d", names=(".ssh",), ignore_case=False),
        description=".ssh directories on the root filesystem",
    )


def _cron_folder(paths: Sequence[str]) -> Job:
    return archive(
        "cron-folder",
        Category.PERSISTENCE,
        FileQuery(roots=tuple(paths), types="fl"),
        description="Cron spool and configuration",
    )


def _crontabs(template: Sequence[str]) -> Job:
    return Job(
        name="cron-tab-list",
        category=Category.PERSISTENCE,
        action=PerItemCommand(template, InteractiveUsers(), "cron-tab-list.txt", header="{}"),
        description="crontab -l for every interactive user",
    )


def _sweeps(config: CollectionConfig) -> List[Job]:
    web_patterns = tuple(f"*.{ext}" for ext in config.webshell_extensions)
    web_query = FileQuery(roots=("/",), names=web_patterns, exclude=("/proc", "/sys"))

    return [
        Job(
            name="exec-perm-files",
            category=Category.MISC,
            action=FileSetListing(
                FileQuery(roots=("/",), xdev=True, perm_all=stat.S_IROTH | stat.S_IXOTH),
                "exec-perm-files.txt",
            ),
            description="Files readable and executable by others",
        ),
        Job(
            name="dev-dir-files",
            category=Category.MISC,
            action=PerItemCommand(
                ["file", "{}"],
                MatchedFiles(FileQuery(roots=("/dev",))),
                "dev-dir-files.txt",
                header=None,
                batch_size=64,
                live_only=False,
            ),
            description="Regular files hiding in /dev",
        ),
        Job(
            name="setuid-setgid-tools",
            category=Category.MISC,
            action=FileSetListing(
                FileQuery(roots=("/",), xdev=True, perm_any=stat.S_ISUID | stat.S_ISGID),
                "Setuid-Setguid-tools.txt",
                long=False,
            ),
            description="setuid and setgid binaries",
        ),
        Job(
            name="pot-webshell-hashes",
            category=Category.MISC,
            action=FileSetListing(web_query, "pot-webshell-hashes.txt", with_hash=True),
            description="Potential webshells, hashed",
        ),
        Job(
            name="pot-webshell-head",
            category=Category.MISC,
            action=FileHeadCapture(
                web_query,
                f"pot-webshell-first-{config.head_lines}.txt",
                max_lines=config.head_lines,
            ),
            description=f"First {config.head_lines} lines of potential webshells",
        ),
    ]


def _unique_tags(names: List[str]) -> List[Tuple[str, str]]:
    """Pair each listed name with a filename-safe tag, suffixing -2, -3... on collisions."""
    used = set()
    tagged = []
    for name in dict.fromkeys(names):
        base = safe_filename(name)
        tag, n = base, 2
        while tag in used:
            tag = f"{base}-{n}"
            n += 1
        used.add(tag)
        tagged.append((name, tag))
    return tagged


def _container_engine(engine: str, category: Category, probe: CapabilityProbe, live: bool) -> List[Job]:
    """Listing jobs plus one job per container and network for docker-compatible engines."""
    jobs = [
        command(f"{engine}-container-ls-all-size", category, [engine, "container", "ls", "--all", "--size"]),
        command(f"{engine}-image-ls-all", category, [engine, "image", "ls", "--all"]),
        command(f"{engine}-info", category, [engine, "info"]),
        command(f"{engine}-container-ids", category, [engine, "container", "ps", "--all", "-q"]),
    ]

    containers = probe.list_lines([engine, "container", "ps", "--all", "-q"]) if live else []
    for cid, tag in _unique_tags(containers):
        jobs.extend(
            [
                command(f"{engine}-inspect-{tag}", category, [engine, "inspect", cid]),
                command(f"{engine}-top-{tag}", category, [engine, "container", "top", cid]),
                command(
                    f"{engine}-container-logs-{tag}",
                    category,
                    [engine, "container", "logs", cid],
                    merge_stderr=True,
                ),
                command(f"{engine}-container-port-{tag}", category, [engine, "container", "port", cid]),
                command(f"{engine}-container-diff-{tag}", category, [engine, "container", "diff", cid]),
            ]
        )

    jobs.append(command(f"{engine}-network-ls", category, [engine, "network", "ls"]))
    networks = probe.list_lines([engine, "network", "ls", "-q"]) if live else []
    for net, tag in _unique_tags(networks):
        jobs.append(
            command(f"{engine}-network-inspect-{tag}", category, [engine, "network", "inspect", net])
        )

    jobs.append(command(f"{engine}-version", category, [engine, "version"]))
    return jobs


def _virsh(probe: CapabilityProbe, live: bool) -> List[Job]:
    category = Category.VIRSH
    jobs = [command("virsh-list-all", category, ["virsh", "list", "--all"])]

    domains = probe.list_lines(["virsh", "list", "--name"]) if live else []
    for domain, tag in _unique_tags(domains):
        for sub in ("domifaddr", "dominfo", "dommemstat", "snapshot-list", "vcpuinfo"):
            jobs.append(command(f"virsh-{sub}-{tag}", category, ["virsh", sub, domain]))

    jobs.append(command("virsh-net-list-all", category, ["virsh", "net-list", "--all"]))
    networks = probe.list_lines(["virsh", "net-list", "--all", "--name"]) if live else []
    for net, tag in _unique_tags(networks):
        jobs.append(command(f"virsh-net-info-{tag}", category, ["virsh", "net-info", net]))
        jobs.append(command(f"virsh-net-dhcp-leases-{tag}", category, ["virsh", "net-dhcp-leases", net]))

    jobs.extend(
        [
            command("virsh-nodeinfo", category, ["virsh", "nodeinfo"]),
            command("virsh-pool-list-all", category, ["virsh", "pool-list", "--all"]),
            command("virt-top-n-1", category, ["virt-top", "--stream", "-n", "1"]),
        ]
    )
    return jobs


def _containers_and_vms(config: CollectionConfig, probe: CapabilityProbe) -> List[Job]:
    live = config.is_live_host
    return (
        _container_engine("docker", Category.DOCKER, probe, live)
        + _container_engine("podman", Category.PODMAN, probe, live)
        + _virsh(probe, live)
    )


# =============================================================================
# Platform catalogues
# =============================================================================

def _solaris_jobs(config: CollectionConfig, probe: CapabilityProbe) -> List[Job]:
    pn, logs, si, pers = (
        Category.PROCESS_AND_NETWORK,
        Category.LOGS,
        Category.SYSTEM_INFO,
        Category.PERSISTENCE,
    )
    return [
        # Volatile data first
        _process_snapshot(),
        command(
            "processes-ef", pn, ["ps", "-ef"],
            fallback=["ps", "-e"], fallback_output="processes-e.txt",
        ),
        _process_cmdlines(),
        command("lsof-list-open-files", pn, ["lsof", "-n", "-P"]),
        command("netstat-an", pn, ["netstat", "-an"]),
        command("ifconfig", pn, ["ifconfig", "-a"]),
        command("ipftables", pn, ["ipfstat", "-ion"]),
        command("routetable", pn, ["netstat", "-rn"]),
        _hidden_home_files(),
        # Logs
        command("who", logs, ["who", "-a"]),
        command("whoandwhat", logs, ["w"]),
        *_login_records("/var/adm"),
        _log_folder("/var/log"),
        _log_folder("/var/adm"),
        _log_folder("/var/crash"),
        # System info
        command("meminfo", si, ["vmstat", "-p"]),
        command("ProcMemUsage", si, ["prstat", "-s", "size", "1", "1"]),
        command("SharedMemAndSemaphores", si, ["ipcs", "-a"]),
        command("cpuinfo", si, ["prtdiag", "-v"], ["psrinfo", "-v"]),
        command("df", si, ["df"]),
        command("removeblemedia", si, ["rmformat"]),
        _release_files(),
        command("modules", si, ["modinfo", "-ao", "namedesc,state,loadcnt,path"]),
        *_containers_and_vms(config, probe),
        command("solaris-packages", si, ["pkginfo"]),
        command("solaris-package-verify", si, ["pkg", "verify", "-v"]),
        *_config_files(config),
        _timeline(),
        _ssh_folders(),
        # Persistence
        command("service_status", pers, ["svcs", "-a"]),
        _cron_folder(["/var/spool/cron"]),
        _crontabs(["crontab", "-l", "{}"]),
        *_sweeps(config),
    ]


def _linux_jobs(config: CollectionConfig, probe: CapabilityProbe) -> List[Job]:
    pn, logs, si, pers = (
        Category.PROCESS_AND_NETWORK,
        Category.LOGS,
        Category.SYSTEM_INFO,
        Category.PERSISTENCE,
    )
    return [
        _process_snapshot(),
        command(
            "processes-ef", pn, ["ps", "-efl"],
            fallback=["ps", "-e"], fallback_output="processes-e.txt",
        ),
        _process_cmdlines(),
        command("lsof-list-open-files", pn, ["lsof", "-n", "-P"]),
        first_available(
            probe,
            command("network-connections", pn, ["ss", "-anepo"], output="ss-anepo.txt"),
            command("network-connections", pn, ["netstat", "-anp"], output="netstat-anp.txt"),
        ),
        first_available(
            probe,
            command("interfaces", pn, ["ip", "addr"], output="ip-addr.txt"),
            command("interfaces", pn, ["ifconfig", "-a"], output="ifconfig.txt"),
        ),
        command("iptables", pn, ["iptables", "-L", "-n", "-v"]),
        command("nft-ruleset", pn, ["nft", "list", "ruleset"]),
        first_available(
            probe,
            command("routetable", pn, ["ip", "route"]),
            command("routetable", pn, ["netstat", "-rn"]),
        ),
        _hidden_home_files(),
        command("who", logs, ["who", "-a"]),
        command("whoandwhat", logs, ["w"]),
        *_login_records("/var/log"),
        command("lastlog", logs, ["lastlog"]),
        _log_folder("/var/log"),
        _log_folder("/var/crash"),
        command("meminfo", si, ["free", "-m"]),
        Job(
            name="proc-meminfo",
            category=si,
            action=FileHeadCapture(FileQuery(roots=("/proc",), max_depth=1, names=("meminfo",)), "proc-meminfo.txt", header=False),
            description="/proc/meminfo",
        ),
        command("cpuinfo", si, ["lscpu"]),
        command("df", si, ["df", "-h"]),
        command("mounts", si, ["mount"]),
        command("usb-devices", si, ["lsusb"]),
        command("uname", si, ["uname", "-a"]),
        _release_files(),
        command("modules", si, ["lsmod"]),
        *_containers_and_vms(config, probe),
        first_available(
            probe,
            command("packages", si, ["dpkg", "-l"], output="dpkg-packages.txt"),
            command("packages", si, ["rpm", "-qa"], output="rpm-packages.txt"),
        ),
        first_available(
            probe,
            command("package-verify", si, ["dpkg", "--verify"], output="dpkg-verify.txt"),
            command("package-verify", si, ["rpm", "-Va"], output="rpm-verify.txt"),
        ),
        *_config_files(config),
        _timeline(),
        _ssh_folders(),
        command("systemctl-unit-files", pers, ["systemctl", "list-unit-files", "--all", "--no-pager"]),
        command("systemctl-units", pers, ["systemctl", "list-units", "--all", "--no-pager"]),
        command("systemctl-timers", pers, ["systemctl", "list-timers", "--all", "--no-pager"]),
        archive(
            "systemd-units",
            pers,
            FileQuery(roots=("/etc/systemd", "/lib/systemd/system", "/usr/lib/systemd/system"), types="fl"),
            description="systemd unit files",
        ),
        _cron_folder(["/var/spool/cron", "/etc/cron.d", "/etc/cron.daily", "/etc/cron.hourly",
                      "/etc/cron.weekly", "/etc/cron.monthly", "/etc/crontab", "/etc/anacrontab"]),
        _crontabs(["crontab", "-l", "-u", "{}"]),
        *_sweeps(config),
    ]


def _portable_jobs(config: CollectionConfig, probe: CapabilityProbe) -> List[Job]:
    """Jobs that only need POSIX tools, used for unrecognised platforms."""
    pn, logs, si, pers = (
        Category.PROCESS_AND_NETWORK,
        Category.LOGS,
        Category.SYSTEM_INFO,
        Category.PERSISTENCE,
    )
    return [
        _process_snapshot(),
        command("processes-ef", pn, ["ps", "-ef"]),
        command("netstat-an", pn, ["netstat", "-an"]),
        command("ifconfig", pn, ["ifconfig", "-a"]),
        command("routetable", pn, ["netstat", "-rn"]),
        _hidden_home_files(),
        command("who", logs, ["who", "-a"]),
        command("whoandwhat", logs, ["w"]),
        _log_folder("/var/log"),
        command("df", si, ["df"]),
        command("uname", si, ["uname", "-a"]),
        _release_files(),
        *_containers_and_vms(config, probe),
        *_config_files(config),
        _timeline(),
        _ssh_folders(),
        _cron_folder(["/var/spool/cron", "/etc/crontab"]),
        _crontabs(["crontab", "-l", "{}"]),
        *_sweeps(config),
    ]


CATALOGUE_BUILDERS: Dict[str, Callable[[CollectionConfig, CapabilityProbe], List[Job]]] = {
    SOLARIS: _solaris_jobs,
    LINUX: _linux_jobs,
}


def build_catalogue(
    platform_id: str,
    config: CollectionConfig,
    probe: Optional[CapabilityProbe] = None,
) -> Catalogue:
    """
    Build the ordered job catalogue for a platform.

    Args:
        platform_id: "solaris", "linux" or any other detected id
        config: Run configuration
        probe: Capability probe (a fresh one by default)

    Returns:
        Catalogue with skip reasons for unavailable, disabled or live-only jobs
    """
    probe = probe or CapabilityProbe()

    builder = CATALOGUE_BUILDERS.get(platform_id)
    if builder is None:
        logger.warning(f"No dedicated catalogue for platform '{platform_id}'; using portable jobs")
        builder = _portable_jobs

    catalogue = Catalogue(platform_id=platform_id, jobs=builder(config, probe))
    catalogue.validate()

    disabled = set(config.disabled_jobs)
    live = config.is_live_host
    for job in catalogue.jobs:
        if job.name in disabled:
            catalogue.skipped[job.name] = SKIP_DISABLED
        elif job.action.live_only and not live:
            catalogue.skipped[job.name] = SKIP_OFFLINE.format(config.host_root)
        else:
            missing = probe.missing(job.executables)
            if missing:
                catalogue.skipped[job.name] = SKIP_MISSING.format(", ".join(missing))

    unknown = disabled - set(catalogue.names())
    if unknown:
        logger.warning(f"Disabled jobs not in catalogue: {', '.join(sorted(unknown))}")

    logger.info(
        f"Catalogue for {platform_id}: {len(catalogue)} jobs, {len(catalogue.skipped)} skipped"
    )
    return catalogue
