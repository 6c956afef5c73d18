"""Command lines for the OSRM preprocessing tools.

Tools run either natively inside the instance working directory or in a
throwaway container with that directory mounted at ``/data``.
"""

from __future__ import annotations

from pathlib import Path

from fleet_engine.config import Algorithm

NETWORK_BASENAME = "network"
INPUT_FILENAME = f"{NETWORK_BASENAME}.osm.pbf"
OSRM_FILENAME = f"{NETWORK_BASENAME}.osrm"
_CONTAINER_ROOT = "/data"

_COMMON_SUFFIXES = (".ebg", ".edges", ".geometry", ".names", ".properties")
_ALGORITHM_SUFFIXES: dict[Algorithm, tuple[str, ...]] = {
    Algorithm.MLD: (".cells", ".cnbg", ".mldgr", ".partition"),
    Algorithm.CH: (".hsgr",),
}


def required_artifacts(algorithm: Algorithm) -> list[str]:
    """Files a complete build must leave in the working directory."""
    suffixes = sorted(_COMMON_SUFFIXES + _ALGORITHM_SUFFIXES[algorithm])
    return [OSRM_FILENAME] + [OSRM_FILENAME + suffix for suffix in suffixes]


class Toolchain:
    """Builds argument lists for ``osrm-extract`` and friends."""

    def __init__(self, algorithm: Algorithm, docker_image: str | None = None) -> None:
        self.algorithm = algorithm
        self.docker_image = docker_image

    def _wrap(self, workdir: Path, tool: str, *files: str, flags: tuple[str, ...] = ()) -> list[str]:
        if self.docker_image is None:
            return [tool, *flags, *files]
        mounted = [f"{_CONTAINER_ROOT}/{name}" for name in files]
        return [
            "docker",
            "run",
            "--rm",
            "-v",
            f"{workdir.resolve()}:{_CONTAINER_ROOT}",
            self.docker_image,
            tool,
            *flags,
            *mounted,
        ]

    def extract(self, workdir: Path, profile_filename: str) -> list[str]:
        if self.docker_image is None:
            return ["osrm-extract", "-p", profile_filename, INPUT_FILENAME]
        return self._wrap(workdir, "osrm-extract", INPUT_FILENAME, flags=("-p", f"{_CONTAINER_ROOT}/{profile_filename}"))

    def contraction_steps(self, workdir: Path) -> list[tuple[str, list[str]]]:
        """Return ``(stage, argv)`` pairs that follow extraction."""
        if self.algorithm == Algorithm.CH:
            return [("contract", self._wrap(workdir, "osrm-contract", OSRM_FILENAME))]
        return [
            ("partition", self._wrap(workdir, "osrm-partition", OSRM_FILENAME)),
            ("customize", self._wrap(workdir, "osrm-customize", OSRM_FILENAME)),
        ]
