"""Tests for animation decoding, sampling and playback."""
import math
import os
import sys

import numpy as np
import pytest

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from w3d_builders import (
    anim_channel_chunk,
    bit_channel_chunk,
    build_animation,
    build_compressed_animation,
    timecoded_channel_chunk,
)
from w3d_animator import (
    AnimationEvaluator,
    AnimationPlayer,
    PlaybackState,
    PlayMode,
    find_time_code_bracket,
    sample_channel,
    sample_timecoded_channel,
)
from w3d_parser import decode
from w3d_reader import SizeMismatchError, UnsupportedSentinelError
from w3d_skeleton import SkeletonPose
from w3d_types import (
    AnimChannel,
    AnimChannelType,
    Animation,
    CompressedAnimation,
    Hierarchy,
    Pivot,
    TimeCodedChannel,
    TimeCodedChannelType,
    W3DChunk,
    W3DFile,
)

IDENTITY = (0.0, 0.0, 0.0, 1.0)
ROT_Z_90 = (0.0, 0.0, math.sin(math.pi / 4), math.cos(math.pi / 4))


# Decoding

def test_decode_animation():
    data = build_animation("WALK", "SKEL", 3, 30, [
        anim_channel_chunk(0, 2, 1, AnimChannelType.X, 1, [0.0, 1.0, 2.0]),
        anim_channel_chunk(0, 1, 4, AnimChannelType.Q, 1, list(IDENTITY) + list(ROT_Z_90)),
    ])

    anim = decode(data).animations[0]

    assert anim.name == "WALK"
    assert anim.hierarchy_name == "SKEL"
    assert anim.num_frames == 3
    assert anim.frame_rate == 30
    assert len(anim.channels) == 2
    assert anim.channels[0].data == pytest.approx([0.0, 1.0, 2.0])
    assert anim.channels[0].num_frames == 3
    assert anim.channels[1].vector_len == 4
    assert anim.channels[1].pivot == 1


def test_decode_animation_unsupported_vector_len():
    data = build_animation("BAD", "SKEL", 1, 30, [
        anim_channel_chunk(0, 0, 3, AnimChannelType.X, 0, [0.0, 0.0, 0.0]),
    ])

    with pytest.raises(UnsupportedSentinelError):
        decode(data)


def test_decode_animation_channel_too_short():
    """A frame range needing more values than the chunk holds is a size mismatch."""
    data = build_animation("BAD", "SKEL", 10, 30, [
        anim_channel_chunk(0, 9, 1, AnimChannelType.X, 0, [0.0] * 5),
    ])

    with pytest.raises(SizeMismatchError):
        decode(data)


def test_decode_animation_last_before_first():
    data = build_animation("BAD", "SKEL", 10, 30, [
        anim_channel_chunk(5, 2, 1, AnimChannelType.X, 0, [0.0] * 4),
    ])

    with pytest.raises(SizeMismatchError):
        decode(data)


def test_decode_bit_channel():
    data = build_animation("VIS", "SKEL", 10, 30, [
        bit_channel_chunk(W3DChunk.BIT_CHANNEL, 0, 9, 0, 2, 1.0, [0b00000101, 0b10]),
    ])

    channel = decode(data).animations[0].bit_channels[0]

    assert channel.pivot == 2
    assert channel.value_at(0)
    assert not channel.value_at(1)
    assert channel.value_at(2)
    assert channel.value_at(9)
    # Outside the range the default value applies
    assert channel.value_at(50)


def test_decode_compressed_animation_odd_key_count():
    """Time codes are padded to an even count before the values."""
    data = build_compressed_animation("RUN", "SKEL", 21, 15, [
        timecoded_channel_chunk(1, 1, TimeCodedChannelType.Y, [0, 10, 20], [1.0, 2.0, 3.0]),
        timecoded_channel_chunk(1, 4, TimeCodedChannelType.Q, [0, 20], list(IDENTITY) * 2),
    ])

    anim = decode(data).compressed_animations[0]

    assert anim.name == "RUN"
    assert anim.frame_rate == 15
    assert anim.flavor == 0
    assert anim.channels[0].time_codes == [0, 10, 20]
    assert anim.channels[0].data == pytest.approx([1.0, 2.0, 3.0])
    assert anim.channels[1].vector_len == 4
    assert anim.channels[1].data == pytest.approx(list(IDENTITY) * 2)


def test_decode_compressed_unknown_flavor():
    with pytest.raises(UnsupportedSentinelError):
        decode(build_compressed_animation("X", "SKEL", 1, 15, flavor=9))


def test_decode_compressed_adaptive_delta_skipped():
    data = build_compressed_animation("AD", "SKEL", 3, 15, [
        timecoded_channel_chunk(0, 1, TimeCodedChannelType.X, [0], [1.0]),
    ], flavor=1)

    anim = decode(data).compressed_animations[0]

    assert anim.flavor == 1
    assert anim.channels == []


def test_decode_compressed_channel_too_short():
    channel = timecoded_channel_chunk(0, 1, TimeCodedChannelType.X, [0, 1], [1.0, 2.0])
    # Drop the last value but keep the chunk header consistent
    payload = channel[8:-4]
    truncated = channel[:4] + len(payload).to_bytes(4, "little") + payload

    with pytest.raises(SizeMismatchError):
        decode(build_compressed_animation("X", "SKEL", 2, 15, [truncated]))


# Sampling

def test_sample_channel_interpolates():
    channel = AnimChannel(first_frame=0, last_frame=2, vector_len=1, data=[0.0, 10.0, 20.0])

    assert sample_channel(channel, 0.0)[0] == pytest.approx(0.0)
    assert sample_channel(channel, 0.5)[0] == pytest.approx(5.0)
    assert sample_channel(channel, 1.25)[0] == pytest.approx(12.5)


def test_sample_channel_clamps_outside_range():
    channel = AnimChannel(first_frame=2, last_frame=4, vector_len=1, data=[1.0, 2.0, 3.0])

    assert sample_channel(channel, 0.0)[0] == pytest.approx(1.0)
    assert sample_channel(channel, -3.5)[0] == pytest.approx(1.0)
    assert sample_channel(channel, 10.0)[0] == pytest.approx(3.0)
    assert sample_channel(channel, 4.0)[0] == pytest.approx(3.0)


def test_sample_channel_slerps_quaternions():
    channel = AnimChannel(first_frame=0, last_frame=1, vector_len=4,
                          data=list(IDENTITY) + list(ROT_Z_90))

    q = sample_channel(channel, 0.5)

    half = math.pi / 8
    assert np.allclose(q, [0.0, 0.0, math.sin(half), math.cos(half)])
    assert np.linalg.norm(q) == pytest.approx(1.0)


def test_sample_channel_half_turn_midpoint_is_unit():
    """Identity to 180 degrees about y: a raw blend would not be unit length."""
    channel = AnimChannel(first_frame=0, last_frame=1, vector_len=4,
                          data=list(IDENTITY) + [0.0, 1.0, 0.0, 0.0])

    q = sample_channel(channel, 0.5)

    assert np.allclose(q, [0.0, math.sqrt(0.5), 0.0, math.sqrt(0.5)])
    assert np.linalg.norm(q) == pytest.approx(1.0)


def test_find_time_code_bracket():
    codes = [0, 10, 20]

    assert find_time_code_bracket(codes, 5.0) == (0, 1, pytest.approx(0.5))
    assert find_time_code_bracket(codes, 10.0) == (0, 1, pytest.approx(1.0))
    assert find_time_code_bracket(codes, 15.0) == (1, 2, pytest.approx(0.5))
    assert find_time_code_bracket(codes, 0.0) == (0, 0, 0.0)
    assert find_time_code_bracket(codes, 25.0) == (2, 2, 0.0)
    assert find_time_code_bracket(codes, -4.0) == (0, 0, 0.0)


def test_find_time_code_bracket_uneven_codes():
    codes = [0, 10, 30]

    assert find_time_code_bracket(codes, 5.0) == (0, 1, pytest.approx(0.5))
    assert find_time_code_bracket(codes, 0.0) == (0, 0, 0.0)
    assert find_time_code_bracket(codes, 20.0) == (1, 2, pytest.approx(0.5))
    assert find_time_code_bracket(codes, 100.0) == (2, 2, 0.0)


def test_find_time_code_bracket_ratio_clamped():
    i0, i1, ratio = find_time_code_bracket([0, 10], 10.4)

    assert (i0, i1) == (0, 1)
    assert ratio == 1.0


def test_find_time_code_bracket_empty():
    with pytest.raises(ValueError):
        find_time_code_bracket([], 1.0)


def test_sample_timecoded_channel():
    channel = TimeCodedChannel(num_time_codes=2, vector_len=1, time_codes=[0, 10], data=[0.0, 4.0])

    assert sample_timecoded_channel(channel, 5.0)[0] == pytest.approx(2.0)
    assert sample_timecoded_channel(channel, 30.0)[0] == pytest.approx(4.0)


# Evaluation

def test_evaluate_standard_channels():
    anim = Animation(num_frames=2, channels=[
        AnimChannel(0, 1, 1, AnimChannelType.X, 1, [0.0, 2.0]),
        AnimChannel(0, 1, 1, AnimChannelType.Z, 1, [4.0, 4.0]),
        AnimChannel(0, 1, 4, AnimChannelType.Q, 0, list(ROT_Z_90) * 2),
    ])

    translations, rotations = AnimationEvaluator().evaluate(anim, 0.5, 2)

    assert np.allclose(translations[0], [0.0, 0.0, 0.0])
    assert np.allclose(translations[1], [1.0, 0.0, 4.0])
    assert np.allclose(rotations[0], ROT_Z_90)
    assert np.allclose(rotations[1], IDENTITY)


def test_evaluate_first_rotation_channel_wins():
    anim = Animation(num_frames=1, channels=[
        AnimChannel(0, 0, 4, AnimChannelType.Q, 0, list(ROT_Z_90)),
        AnimChannel(0, 0, 4, AnimChannelType.Q, 0, list(IDENTITY)),
    ])

    _, rotations = AnimationEvaluator().evaluate(anim, 0.0, 1)

    assert np.allclose(rotations[0], ROT_Z_90)


def test_evaluate_ignores_euler_and_out_of_range_pivots():
    anim = Animation(num_frames=1, channels=[
        AnimChannel(0, 0, 1, AnimChannelType.XR, 0, [1.0]),
        AnimChannel(0, 0, 1, AnimChannelType.X, 5, [9.0]),
    ])

    translations, rotations = AnimationEvaluator().evaluate(anim, 0.0, 1)

    assert len(translations) == 1
    assert np.allclose(translations[0], [0.0, 0.0, 0.0])
    assert np.allclose(rotations[0], IDENTITY)


def test_evaluate_compressed():
    anim = CompressedAnimation(num_frames=11, channels=[
        TimeCodedChannel(2, 0, 1, TimeCodedChannelType.Y, [0, 10], [0.0, 10.0]),
        TimeCodedChannel(2, 0, 4, TimeCodedChannelType.Q, [0, 10], list(IDENTITY) + list(ROT_Z_90)),
    ])

    translations, rotations = AnimationEvaluator().evaluate_compressed(anim, 5.0, 1)

    assert np.allclose(translations[0], [0.0, 5.0, 0.0])
    half = math.pi / 8
    assert np.allclose(rotations[0], [0.0, 0.0, math.sin(half), math.cos(half)])


# Playback

def make_file():
    return W3DFile(
        animations=[Animation(name="WALK", hierarchy_name="SKEL", num_frames=10, frame_rate=10, channels=[
            AnimChannel(0, 9, 1, AnimChannelType.X, 0, [float(i) for i in range(10)]),
        ])],
        compressed_animations=[CompressedAnimation(name="IDLE", hierarchy_name="", num_frames=5, frame_rate=0)],
    )


def make_hierarchy(name="SKEL"):
    return Hierarchy(name=name, pivots=[Pivot(name="ROOT", translation=(0.0, 1.0, 0.0))])


def test_player_load_order_and_defaults():
    player = AnimationPlayer()
    player.load(make_file())

    assert player.animation_count == 2
    assert player.animation_name(0) == "WALK"
    assert player.animation_name(1) == "IDLE"
    assert player.animation_name(5) == ""
    assert player.name == "WALK"
    assert player.state == PlaybackState.STOPPED
    assert player.mode == PlayMode.LOOP
    assert player.max_frame == 9.0


def test_player_default_frame_rate():
    player = AnimationPlayer()
    player.load(make_file())

    assert player.select_animation(1)
    assert player.frame_rate == AnimationPlayer.DEFAULT_FRAME_RATE == 15
    assert not player.select_animation(2)


def test_player_loop_wraps():
    player = AnimationPlayer()
    player.load(make_file())
    player.play()

    player.update(0.5)
    assert player.frame == pytest.approx(5.0)

    player.update(0.6)
    assert player.frame == pytest.approx(1.0)
    assert player.is_playing()


def test_player_once_clamps_and_stops():
    player = AnimationPlayer()
    player.load(make_file())
    player.set_mode(PlayMode.ONCE)
    player.play()

    player.update(2.0)

    assert player.frame == pytest.approx(9.0)
    assert player.state == PlaybackState.STOPPED


def test_player_ping_pong_wraps_like_loop():
    player = AnimationPlayer()
    player.load(make_file())
    player.set_mode(PlayMode.PING_PONG)
    player.play()

    player.update(1.2)

    assert player.frame == pytest.approx(2.0)


def test_player_pause_and_stop():
    player = AnimationPlayer()
    player.load(make_file())
    player.play()
    player.update(0.3)

    player.pause()
    assert player.state == PlaybackState.PAUSED
    player.update(0.5)
    assert player.frame == pytest.approx(3.0)

    player.stop()
    assert player.state == PlaybackState.STOPPED
    assert player.frame == 0.0


def test_player_without_animation():
    player = AnimationPlayer()
    player.play()
    player.update(1.0)

    assert player.state == PlaybackState.STOPPED
    assert player.frame == 0.0
    assert not player.apply_to_pose(SkeletonPose(), make_hierarchy())


def test_player_set_frame_clamps():
    player = AnimationPlayer()
    player.load(make_file())

    player.set_frame(100.0)
    assert player.frame == 9.0
    player.set_frame(-1.0)
    assert player.frame == 0.0


def test_apply_to_pose():
    player = AnimationPlayer()
    player.load(make_file())
    player.set_frame(4.0)
    pose = SkeletonPose()

    assert player.apply_to_pose(pose, make_hierarchy("skel"))
    assert np.allclose(pose.bone_position(0), [4.0, 1.0, 0.0])


def test_apply_to_pose_hierarchy_mismatch():
    player = AnimationPlayer()
    player.load(make_file())

    assert not player.apply_to_pose(SkeletonPose(), make_hierarchy("OTHER"))


def test_apply_to_pose_empty_hierarchy_name_accepted():
    player = AnimationPlayer()
    player.load(make_file())
    player.select_animation(1)
    pose = SkeletonPose()

    assert player.apply_to_pose(pose, make_hierarchy("ANYTHING"))
    assert np.allclose(pose.bone_position(0), [0.0, 1.0, 0.0])
