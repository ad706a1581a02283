"""Data model for tracker modules: raw data access, samples, envelopes, instruments and patterns."""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass, field
from typing import Callable, Optional

log = logging.getLogger(__name__)

FP_SHIFT = 15
FP_ONE = 1 << FP_SHIFT
FP_MASK = FP_ONE - 1

EXP2_TABLE = (
    32768, 32946, 33125, 33305, 33486, 33667, 33850, 34034,
    34219, 34405, 34591, 34779, 34968, 35158, 35349, 35541,
    35734, 35928, 36123, 36319, 36516, 36715, 36914, 37114,
    37316, 37518, 37722, 37927, 38133, 38340, 38548, 38757,
    38968, 39180, 39392, 39606, 39821, 40037, 40255, 40473,
    40693, 40914, 41136, 41360, 41584, 41810, 42037, 42265,
    42495, 42726, 42958, 43191, 43425, 43661, 43898, 44137,
    44376, 44617, 44859, 45103, 45348, 45594, 45842, 46091,
    46341, 46593, 46846, 47100, 47356, 47613, 47871, 48131,
    48393, 48655, 48920, 49185, 49452, 49721, 49991, 50262,
    50535, 50810, 51085, 51363, 51642, 51922, 52204, 52488,
    52773, 53059, 53347, 53637, 53928, 54221, 54515, 54811,
    55109, 55408, 55709, 56012, 56316, 56622, 56929, 57238,
    57549, 57861, 58176, 58491, 58809, 59128, 59449, 59772,
    60097, 60423, 60751, 61081, 61413, 61746, 62081, 62419,
    62757, 63098, 63441, 63785, 64132, 64480, 64830, 65182,
    65536,
)

SINE_TABLE = (
    0, 24, 49, 74, 97, 120, 141, 161, 180, 197, 212, 224, 235, 244, 250, 253,
    255, 253, 250, 244, 235, 224, 212, 197, 180, 161, 141, 120, 97, 74, 49, 24,
)

NOTE_SIZE = 5


def to_int32(value: int) -> int:
    """Wrap ``value`` to a signed 32-bit integer."""
    return ((value + 0x80000000) & 0xFFFFFFFF) - 0x80000000


def to_int16(value: int) -> int:
    """Wrap ``value`` to a signed 16-bit integer."""
    return ((value + 0x8000) & 0xFFFF) - 0x8000


def cdiv(a: int, b: int) -> int:
    """Integer division truncating toward zero."""
    q = abs(a) // abs(b)
    return q if (a < 0) == (b < 0) else -q


def cmod(a: int, b: int) -> int:
    """Remainder matching :func:`cdiv` (sign follows the dividend)."""
    return a - b * cdiv(a, b)


def exp_2(x: int) -> int:
    """Fixed-point 2**x, with 15 fractional bits on input and output."""
    x0 = (x & FP_MASK) >> (FP_SHIFT - 7)
    c = EXP2_TABLE[x0]
    m = EXP2_TABLE[x0 + 1] - c
    y = ((m * (x & (FP_MASK >> 7))) >> 8) + c
    value = y << FP_SHIFT
    shift = FP_SHIFT - (x >> FP_SHIFT)
    if shift >= 0:
        return value >> shift
    return to_int32(value << -shift)


def log_2(x: int) -> int:
    """Fixed-point base-2 logarithm, the inverse of :func:`exp_2`."""
    y = 16 << FP_SHIFT
    step = y
    while step > 0:
        if exp_2(y - step) >= x:
            y -= step
        step >>= 1
    return y


class ModuleError(Exception):
    """Raised when module data cannot be loaded."""


@dataclass(frozen=True)
class ModuleData:
    """Raw module file contents with bounds-checked readers; reads past the end give 0."""

    buffer: bytes = b""

    @property
    def length(self) -> int:
        return len(self.buffer)

    def _in_range(self, offset: int, size: int) -> bool:
        return offset >= 0 and offset + size - 1 < len(self.buffer)

    def s8(self, offset: int) -> int:
        if not self._in_range(offset, 1):
            return 0
        value = self.buffer[offset]
        return (value & 0x7F) - (value & 0x80)

    def u8(self, offset: int) -> int:
        return self.buffer[offset] if self._in_range(offset, 1) else 0

    def u16be(self, offset: int) -> int:
        if not self._in_range(offset, 2):
            return 0
        return int.from_bytes(self.buffer[offset:offset + 2], "big")

    def u16le(self, offset: int) -> int:
        if not self._in_range(offset, 2):
            return 0
        return int.from_bytes(self.buffer[offset:offset + 2], "little")

    def u32le(self, offset: int) -> int:
        if not self._in_range(offset, 4):
            return 0
        return int.from_bytes(self.buffer[offset:offset + 4], "little")

    def ascii(self, offset: int, length: int) -> str:
        """Return ``length`` characters from ``offset``; control characters and missing data become spaces."""
        size = len(self.buffer)
        start = min(max(offset, 0), size)
        count = max(0, min(length, size - start))
        chars = [chr(b) if b > 32 else " " for b in self.buffer[start:start + count]]
        return "".join(chars).ljust(length)


class SampleFlag(enum.IntFlag):
    """How a sample's data is stored."""

    NONE = 0
    EIGHT_BIT = 1 << 0
    UNSIGNED = 1 << 1
    DELTA = 1 << 2
    DONTFREE = 1 << 3
    PINGPONG = 1 << 4


@dataclass
class DeltaCache:
    """Last decoded position and amplitude of a delta-encoded sample."""

    pos: int = 0
    amp: int = 0


@dataclass
class Sample:
    loop_start: int = 0
    loop_length: int = 0
    volume: int = 0
    panning: int = 0
    rel_note: int = 0
    fine_tune: int = 0
    data: bytes = field(default=b"", repr=False)
    data_offset: int = 0
    flags: SampleFlag = SampleFlag.NONE
    dcache: list[DeltaCache] = field(default_factory=list, repr=False)

    def _byte(self, idx: int) -> int:
        pos = self.data_offset + idx
        if idx < 0 or pos >= len(self.data):
            return 0
        return self.data[pos]

    def _short(self, idx: int) -> int:
        pos = self.data_offset + 2 * idx
        if idx < 0 or pos + 1 >= len(self.data):
            return 0
        return int.from_bytes(self.data[pos:pos + 2], "little", signed=True)

    def _raw(self, idx: int) -> int:
        if self.flags & SampleFlag.EIGHT_BIT:
            s = self._byte(idx) << 8
            return (s & 0x7FFF) - (s & 0x8000)
        return self._short(idx)

    def _delta(self, idx: int, channel_no: int) -> int:
        idx += 1
        cache = self.dcache[channel_no + 1]
        loop_mark = self.dcache[0]
        amp, amp_idx = cache.amp, cache.pos
        if idx == 0:
            amp = amp_idx = 0
        if idx == loop_mark.pos:
            amp, amp_idx = loop_mark.amp, loop_mark.pos
        if amp_idx > idx and amp_idx - idx > idx:
            amp = amp_idx = 0
        if amp_idx <= idx:
            amp += sum(self._raw(s) for s in range(amp_idx, idx))
        else:
            amp -= sum(self._raw(s) for s in range(idx, amp_idx))
        if idx == self.loop_start and loop_mark.pos == 0:
            loop_mark.pos, loop_mark.amp = idx, amp
        cache.pos, cache.amp = idx, amp
        return to_int16(amp)

    def get(self, idx: int, channel_no: int = 0) -> int:
        """Return the 16-bit signed value of sample point ``idx`` as seen by channel ``channel_no``."""
        if idx == self.loop_start + self.loop_length:
            idx = self.loop_start
        if self.flags & SampleFlag.DELTA:
            return self._delta(idx, channel_no)
        if self.flags & SampleFlag.EIGHT_BIT:
            ret = to_int16(self._byte(idx) * 256)
        else:
            ret = self._short(idx)
        if self.flags & SampleFlag.UNSIGNED:
            ret = (ret & 0xFFFF) - 32768
        if self.flags & SampleFlag.PINGPONG:
            log.debug("Ping-pong unsupported")
        return ret


@dataclass
class Envelope:
    enabled: bool = False
    sustain: bool = False
    looped: bool = False
    num_points: int = 0
    sustain_tick: int = 0
    loop_start_tick: int = 0
    loop_end_tick: int = 0
    points_tick: list[int] = field(default_factory=lambda: [0] * 16)
    points_ampl: list[int] = field(default_factory=lambda: [0] * 16)

    def next_tick(self, tick: int, key_on: bool) -> int:
        """Advance the envelope position by one tick, honouring loop and sustain."""
        tick += 1
        if self.looped and tick >= self.loop_end_tick:
            tick = self.loop_start_tick
        if self.sustain and key_on and tick >= self.sustain_tick:
            tick = self.sustain_tick
        return tick

    def calculate_ampl(self, tick: int) -> int:
        """Return the envelope amplitude at ``tick``, interpolating between points."""
        if self.num_points <= 0:
            return 0
        last = self.num_points - 1
        ampl = self.points_ampl[last]
        if tick < self.points_tick[last]:
            point = 0
            for idx in range(1, self.num_points):
                if self.points_tick[idx] <= tick:
                    point = idx
            dt = self.points_tick[point + 1] - self.points_tick[point]
            da = self.points_ampl[point + 1] - self.points_ampl[point]
            ampl = self.points_ampl[point]
            if dt != 0:
                slope = cdiv(to_int32(da << 24), dt)
                ampl += to_int32(slope * (tick - self.points_tick[point])) >> 24
        return ampl


@dataclass
class Instrument:
    num_samples: int = 1
    vol_fadeout: int = 0
    key_to_sample: Optional[bytes] = field(default=None, repr=False)
    vib_type: int = 0
    vib_sweep: int = 0
    vib_depth: int = 0
    vib_rate: int = 0
    vol_env: Envelope = field(default_factory=Envelope)
    pan_env: Envelope = field(default_factory=Envelope)
    samples: list[Sample] = field(default_factory=lambda: [Sample()])

    def sample_for_key(self, key: int) -> Sample:
        """Return the sample mapped to ``key``, or the first sample if there is no mapping."""
        sam = 0
        if self.key_to_sample is not None and 0 <= key < len(self.key_to_sample):
            sam = self.key_to_sample[key]
        if not 0 <= sam < len(self.samples):
            sam = 0
        return self.samples[sam]


@dataclass
class Note:
    key: int = 0
    instrument: int = 0
    volume: int = 0
    effect: int = 0
    param: int = 0


@dataclass
class Pattern:
    num_channels: int = 0
    num_rows: int = 0
    data: bytearray = field(default_factory=bytearray, repr=False)
    data_idx: int = 0

    def _offset(self, row: int, chan: int) -> int:
        return (row * self.num_channels + chan) * NOTE_SIZE

    def get_note(self, row: int, chan: int) -> Note:
        """Return the note at ``row``/``chan``, or an empty note when out of range."""
        offset = self._offset(row, chan)
        if (offset >= 0 and row < self.num_rows and chan < self.num_channels
                and offset + NOTE_SIZE <= len(self.data)):
            return Note(*self.data[offset:offset + NOTE_SIZE])
        return Note()

    def set_note(self, row: int, chan: int, key: int, instrument: int,
                 volume: int, effect: int, param: int) -> None:
        """Store a note, each field wrapped to a byte."""
        offset = self._offset(row, chan)
        self.data[offset:offset + NOTE_SIZE] = bytes(
            v & 0xFF for v in (key, instrument, volume, effect, param))


@dataclass
class Module:
    data: ModuleData = field(default_factory=ModuleData, repr=False)
    num_channels: int = 0
    num_instruments: int = 0
    num_patterns: int = 0
    sequence_len: int = 0
    restart_pos: int = 0
    default_gvol: int = 0
    default_speed: int = 0
    default_tempo: int = 0
    c2_rate: int = 0
    gain: int = 0
    linear_periods: bool = False
    fast_vol_slides: bool = False
    default_panning: list[int] = field(default_factory=list)
    sequence: list[int] = field(default_factory=list)
    patterns: list[Pattern] = field(default_factory=list, repr=False)
    instruments: list[Instrument] = field(default_factory=list, repr=False)
    pattern_cache: Pattern = field(default_factory=Pattern, repr=False)
    pattern_cache_idx: int = -1
    pattern_cache_handler: Optional[Callable[["Module", int], None]] = field(
        default=None, repr=False)

    def get_pattern(self, idx: int) -> Pattern:
        """Return pattern ``idx``, decoding it into the pattern cache when a decoder is set."""
        if self.pattern_cache_handler is not None:
            if self.pattern_cache_idx != idx:
                self.pattern_cache_handler(self, idx)
                self.pattern_cache_idx = idx
            return self.pattern_cache
        return self.patterns[idx]