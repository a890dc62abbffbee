"""
Load Patterns for Virtual-User Scheduling

This module provides the concurrency-over-time curves that drive a
StageExecutor:
- Constant: a fixed number of virtual users for a fixed duration
- Ramping: linear ramps between stage targets, with instant jumps for
  zero-length stages
"""

from abc import ABC, abstractmethod
from enum import Enum
from typing import List, Sequence, Tuple, Union

from loadbench.models import ConstantVUsProfile, RampingVUsProfile, Stage


class LoadPatternType(str, Enum):
    """Types of load patterns"""

    CONSTANT_VUS = "constant-vus"
    RAMPING_VUS = "ramping-vus"


class LoadPattern(ABC):
    """
    Abstract base class for load patterns.

    A load pattern maps elapsed time since start to a target number of
    virtual users. Patterns are read-only once built.
    """

    def __init__(self, duration_ms: int):
        self.duration_ms = duration_ms
    @abstractmethod
    def target_vus_at(self, elapsed_ms: float) -> int:
        """
        Get the target virtual-user count at an elapsed time.

        Returns:
            int: Target VUs (before the post-run drain to zero)
        """
        pass

    def is_complete(self, elapsed_ms: float) -> bool:
        """Check if the load pattern duration has elapsed"""
        return elapsed_ms >= self.duration_ms

    @property
    def peak_vus(self) -> int:
        return 0


class ConstantVUPattern(LoadPattern):
    """
    Constant load pattern - a fixed number of virtual users.
    """

    def __init__(self, vus: int, duration_ms: int):
        super().__init__(duration_ms)
        self.vus = vus

    def target_vus_at(self, elapsed_ms: float) -> int:
        """Returns constant target VUs"""
        return self.vus

    @property
    def peak_vus(self) -> int:
        return self.vus


class RampingVUPattern(LoadPattern):
    """
    Ramping load pattern - linear ramps through ordered stages.

    Within a stage the target moves linearly from the previous stage's target
    (or `start_vus`) to the stage's target, truncated toward the previous
    value so a VU is only added once fully reached. A zero-length stage is a
    discontinuity: the target jumps straight to its value.
    """

    def __init__(self, start_vus: int, stages: Sequence[Union[Stage, Tuple[int, int]]]):
        if not stages:
            raise ValueError("Ramping pattern requires at least one stage")
        self.start_vus = start_vus
        self.stages: List[Tuple[int, int]] = [
            (s.duration_ms, s.target) if isinstance(s, Stage) else (int(s[0]), int(s[1]))
            for s in stages
        ]
        super().__init__(sum(duration for duration, _ in self.stages))

    def target_vus_at(self, elapsed_ms: float) -> int:
        """Returns the interpolated target for the stage containing `elapsed_ms`"""
        elapsed_ms = max(0.0, elapsed_ms)
        previous = self.start_vus
        window_start = 0

        for duration, target in self.stages:
            if duration == 0:
                previous = target
                continue
            window_end = window_start + duration
            if elapsed_ms < window_end:
                progress = (elapsed_ms - window_start) / duration
                return previous + int((target - previous) * progress)
            previous = target
            window_start = window_end

        return previous

    @property
    def peak_vus(self) -> int:
        return max([self.start_vus] + [target for _, target in self.stages])


def create_load_pattern(
    profile: Union[ConstantVUsProfile, RampingVUsProfile],
) -> LoadPattern:
    """
    Factory function to create the load pattern of an executor profile.

    Args:
        profile: Validated executor profile

    Returns:
        LoadPattern instance
    """
    pattern_type = LoadPatternType(profile.executor)

    if pattern_type == LoadPatternType.CONSTANT_VUS:
        return ConstantVUPattern(profile.vus, profile.duration_ms)

    elif pattern_type == LoadPatternType.RAMPING_VUS:
        return RampingVUPattern(profile.start_vus, profile.stages)

    else:
        raise ValueError(f"Unknown load pattern type: {pattern_type}")
