"""Animation sampling and playback for W3D animations.

Standard channels hold one value per frame between first_frame and
last_frame. Compressed (time-coded) channels hold sparse keys, each with an
explicit frame number. Both are sampled at a fractional frame: scalar axes
are linearly interpolated, quaternion channels are slerped.
"""
import logging
import math
from bisect import bisect_left
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional, Sequence, Tuple, Union

import numpy as np

from w3d_math import IDENTITY_QUAT, lerp, slerp
from w3d_skeleton import SkeletonPose
from w3d_types import (
    AnimChannel,
    AnimChannelType,
    Animation,
    CompressedAnimation,
    Hierarchy,
    TimeCodedChannel,
    TimeCodedChannelType,
    W3DFile,
)

logger = logging.getLogger(__name__)

AnyAnimation = Union[Animation, CompressedAnimation]

_AXES = {AnimChannelType.X: 0, AnimChannelType.Y: 1, AnimChannelType.Z: 2}
_TIMECODED_AXES = {TimeCodedChannelType.X: 0, TimeCodedChannelType.Y: 1, TimeCodedChannelType.Z: 2}


def _clamp(value: int, low: int, high: int) -> int:
    return max(low, min(value, high))


def _blend(v0: Sequence[float], v1: Sequence[float], ratio: float) -> np.ndarray:
    if len(v0) == 4:
        return slerp(v0, v1, ratio)
    return np.array([lerp(a, b, ratio) for a, b in zip(v0, v1)])


def sample_channel(channel: AnimChannel, frame: float) -> np.ndarray:
    """Sample a standard channel at a fractional frame.

    Frames outside [first_frame, last_frame] clamp to the nearest stored
    frame.

    Returns:
        vector_len values; a unit quaternion for 4-wide channels
    """
    frame0 = math.floor(frame)
    ratio = frame - frame0
    first, last = channel.first_frame, channel.last_frame
    i0 = _clamp(frame0, first, last) - first
    i1 = _clamp(frame0 + 1, first, last) - first

    n = channel.vector_len
    v0 = channel.data[i0 * n:(i0 + 1) * n]
    v1 = channel.data[i1 * n:(i1 + 1) * n]
    return _blend(v0, v1, ratio)


def find_time_code_bracket(time_codes: Sequence[int], frame: float) -> Tuple[int, int, float]:
    """Find the pair of keys around a frame.

    The frame is rounded and looked up with a binary search. Frames before
    the first key or after the last clamp to that key.

    Returns:
        (index0, index1, ratio) with ratio in [0, 1]
    """
    if not time_codes:
        raise ValueError("Channel has no time codes")

    key = math.floor(frame + 0.5)
    i = bisect_left(time_codes, key)
    if i >= len(time_codes):
        i0 = i1 = len(time_codes) - 1
    elif i == 0:
        i0 = i1 = 0
    else:
        i0, i1 = i - 1, i

    t0, t1 = time_codes[i0], time_codes[i1]
    ratio = (frame - t0) / (t1 - t0) if t1 > t0 else 0.0
    return i0, i1, min(max(ratio, 0.0), 1.0)


def sample_timecoded_channel(channel: TimeCodedChannel, frame: float) -> np.ndarray:
    """Sample a compressed channel at a fractional frame."""
    i0, i1, ratio = find_time_code_bracket(channel.time_codes, frame)
    n = channel.vector_len
    v0 = channel.data[i0 * n:(i0 + 1) * n]
    v1 = channel.data[i1 * n:(i1 + 1) * n]
    return _blend(v0, v1, ratio)


class AnimationEvaluator:
    """Turns an animation into per-bone translation offsets and rotations."""

    @staticmethod
    def _defaults(num_bones: int) -> Tuple[List[np.ndarray], List[np.ndarray]]:
        translations = [np.zeros(3) for _ in range(num_bones)]
        rotations = [IDENTITY_QUAT.copy() for _ in range(num_bones)]
        return translations, rotations

    def evaluate(self, animation: Animation, frame: float, num_bones: int):
        """Sample every channel of a standard animation.

        Bones without channels keep zero translation and identity rotation.
        Euler rotation channels (XR, YR, ZR) are not used by the exporter and
        are ignored.

        Returns:
            (translations, rotations), one entry per bone
        """
        translations, rotations = self._defaults(num_bones)
        rotated = set()

        for channel in animation.channels:
            if channel.pivot >= num_bones or not channel.data:
                continue
            if channel.flags in _AXES and channel.vector_len == 1:
                translations[channel.pivot][_AXES[channel.flags]] = sample_channel(channel, frame)[0]
            elif channel.flags == AnimChannelType.Q and channel.vector_len == 4:
                if channel.pivot not in rotated:
                    rotations[channel.pivot] = sample_channel(channel, frame)
                    rotated.add(channel.pivot)

        return translations, rotations

    def evaluate_compressed(self, animation: CompressedAnimation, frame: float, num_bones: int):
        """Sample every channel of a compressed animation.

        Returns:
            (translations, rotations), one entry per bone
        """
        translations, rotations = self._defaults(num_bones)
        rotated = set()

        for channel in animation.channels:
            if channel.pivot >= num_bones or not channel.time_codes:
                continue
            if channel.flags in _TIMECODED_AXES and channel.vector_len == 1:
                axis = _TIMECODED_AXES[channel.flags]
                translations[channel.pivot][axis] = sample_timecoded_channel(channel, frame)[0]
            elif channel.flags == TimeCodedChannelType.Q and channel.vector_len == 4:
                if channel.pivot not in rotated:
                    rotations[channel.pivot] = sample_timecoded_channel(channel, frame)
                    rotated.add(channel.pivot)

        return translations, rotations

    def evaluate_any(self, animation: AnyAnimation, frame: float, num_bones: int):
        if isinstance(animation, CompressedAnimation):
            return self.evaluate_compressed(animation, frame, num_bones)
        return self.evaluate(animation, frame, num_bones)


class PlaybackState(Enum):
    STOPPED = "stopped"
    PLAYING = "playing"
    PAUSED = "paused"


class PlayMode(Enum):
    ONCE = "once"
    LOOP = "loop"
    PING_PONG = "ping_pong"


@dataclass
class AnimationEntry:
    """One playable animation of a file."""
    name: str
    hierarchy_name: str
    num_frames: int
    frame_rate: int
    animation: AnyAnimation

    @property
    def is_compressed(self) -> bool:
        return isinstance(self.animation, CompressedAnimation)


class AnimationPlayer:
    """Plays the animations of a W3D file and poses a skeleton.

    Not thread safe: update() and apply_to_pose() are meant to be called
    from a single frame loop.
    """

    DEFAULT_FRAME_RATE = 15

    def __init__(self):
        self._entries: List[AnimationEntry] = []
        self._current: Optional[int] = None
        self.frame = 0.0
        self.state = PlaybackState.STOPPED
        self.mode = PlayMode.LOOP
        self.evaluator = AnimationEvaluator()

    def load(self, w3d_file: W3DFile):
        """Collect standard then compressed animations and select the first."""
        self.clear()
        for anim in list(w3d_file.animations) + list(w3d_file.compressed_animations):
            self._entries.append(AnimationEntry(
                name=anim.name,
                hierarchy_name=anim.hierarchy_name,
                num_frames=anim.num_frames,
                frame_rate=anim.frame_rate if anim.frame_rate > 0 else self.DEFAULT_FRAME_RATE,
                animation=anim,
            ))
        if self._entries:
            self._current = 0

    def clear(self):
        self._entries = []
        self._current = None
        self.frame = 0.0
        self.state = PlaybackState.STOPPED

    @property
    def animation_count(self) -> int:
        return len(self._entries)

    def animation_name(self, index: int) -> str:
        if 0 <= index < len(self._entries):
            return self._entries[index].name
        return ""

    def select_animation(self, index: int) -> bool:
        if not 0 <= index < len(self._entries):
            return False
        self._current = index
        self.frame = 0.0
        return True

    @property
    def current(self) -> Optional[AnimationEntry]:
        if self._current is None:
            return None
        return self._entries[self._current]

    @property
    def name(self) -> str:
        entry = self.current
        return entry.name if entry else ""

    @property
    def frame_rate(self) -> int:
        entry = self.current
        return entry.frame_rate if entry else self.DEFAULT_FRAME_RATE

    @property
    def num_frames(self) -> int:
        entry = self.current
        return entry.num_frames if entry else 0

    @property
    def max_frame(self) -> float:
        return float(max(self.num_frames - 1, 0))

    def is_playing(self) -> bool:
        return self.state == PlaybackState.PLAYING

    def set_mode(self, mode: PlayMode):
        self.mode = mode

    def set_frame(self, frame: float):
        self.frame = min(max(frame, 0.0), self.max_frame)

    def play(self):
        if self.current is not None:
            self.state = PlaybackState.PLAYING

    def pause(self):
        if self.state == PlaybackState.PLAYING:
            self.state = PlaybackState.PAUSED

    def stop(self):
        self.state = PlaybackState.STOPPED
        self.frame = 0.0

    def update(self, delta_seconds: float):
        """Advance playback by delta_seconds of wall time."""
        if self.state != PlaybackState.PLAYING or self.current is None:
            return

        self.frame += delta_seconds * self.frame_rate
        max_frame = self.max_frame
        if self.frame <= max_frame:
            return

        if self.mode == PlayMode.ONCE:
            self.frame = max_frame
            self.state = PlaybackState.STOPPED
        else:
            # PING_PONG plays forward only and wraps like LOOP
            self.frame = math.fmod(self.frame, max_frame + 1.0)

    def apply_to_pose(self, pose: SkeletonPose, hierarchy: Hierarchy) -> bool:
        """Pose a skeleton at the current frame.

        Returns:
            False when nothing is loaded or the animation targets another hierarchy
        """
        entry = self.current
        if entry is None:
            return False
        if entry.hierarchy_name and entry.hierarchy_name.upper() != hierarchy.name.upper():
            return False

        translations, rotations = self.evaluator.evaluate_any(
            entry.animation, self.frame, len(hierarchy.pivots)
        )
        pose.compute_animated_pose(hierarchy, translations, rotations)
        return True
