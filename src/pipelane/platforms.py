# platforms.py
from __future__ import annotations

from typing import Dict, Iterable, Iterator, List, Optional

from .errors import ConfigError
from .model import PlatformTarget


# Targets of the observed configuration: four Linux runners and one macOS runner.
DEFAULT_PLATFORMS: List[PlatformTarget] = [
    PlatformTarget("debian", "LD_LIBRARY_PATH", tag="debian8"),
    PlatformTarget("ubuntu", "LD_LIBRARY_PATH", tag="ubuntu-lts"),
    PlatformTarget("fedora", "LD_LIBRARY_PATH", tag="fedora24"),
    PlatformTarget("centos", "LD_LIBRARY_PATH", tag="centos7"),
    PlatformTarget("macos", "DYLD_LIBRARY_PATH", tag="macOS"),
]


class PlatformRegistry:
    """Named execution environments. Entries are immutable once registered."""

    def __init__(self, targets: Iterable[PlatformTarget] = ()):
        self._targets: Dict[str, PlatformTarget] = {}
        for t in targets:
            self.register(t)

    def register(self, target: PlatformTarget) -> PlatformTarget:
        if target.name in self._targets:
            raise ConfigError(f"platform '{target.name}' is already registered")
        self._targets[target.name] = target
        return target

    def ensure(self, target: PlatformTarget) -> PlatformTarget:
        """Register `target` unless an identical entry is already there."""
        if self._targets.get(target.name) == target:
            return self._targets[target.name]
        return self.register(target)

    def get(self, name: str, *, job_id: Optional[str] = None) -> PlatformTarget:
        try:
            return self._targets[name]
        except KeyError:
            raise ConfigError(
                f"unknown platform '{name}'. Known platforms: {sorted(self._targets)}",
                job_id=job_id,
            ) from None

    def by_tag(self, tag: str) -> Optional[PlatformTarget]:
        """Find a platform by runner tag, falling back to its name."""
        for t in self._targets.values():
            if t.tag == tag:
                return t
        return self._targets.get(tag)

    def names(self) -> List[str]:
        return list(self._targets)

    def __contains__(self, name: object) -> bool:
        return name in self._targets

    def __iter__(self) -> Iterator[PlatformTarget]:
        return iter(self._targets.values())

    def __len__(self) -> int:
        return len(self._targets)


def default_registry() -> PlatformRegistry:
    return PlatformRegistry(DEFAULT_PLATFORMS)
