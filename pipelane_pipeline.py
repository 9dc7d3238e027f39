# pipelane_pipeline.py
# Same pipeline as pipelane.yml, written with the Python helpers.
from __future__ import annotations

from pipelane.dsl import build_job, jobs, matrix, test_job
from pipelane.executor import EnvironmentSettings

PLATFORMS = ["debian", "ubuntu", "fedora", "centos", "macos"]

ENVIRONMENT = EnvironmentSettings(data_dir_var="MPP_DATA_DIRECTORY")


def _build(platform: str):
    return build_job(
        f"build:{platform}",
        platform,
        "mkdir build",
        "cd build",
        "cmake -DENABLE_TESTING:BOOL=ON ..",
        "make install",
        artifacts=["build/", "install/"],
    )


def _test(platform: str):
    return test_job(
        f"test:{platform}",
        platform,
        "cd build/",
        "ctest -V",
        depends_on=f"build:{platform}",
    )


def pipeline():
    return jobs(
        matrix(PLATFORMS).jobs(_build),
        matrix(PLATFORMS).jobs(_test),
    )
