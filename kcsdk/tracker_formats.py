"""Loaders for the XM, S3M and MOD tracker module formats."""

from __future__ import annotations

from typing import Union

from .tracker_data import (
    FP_MASK,
    FP_ONE,
    FP_SHIFT,
    NOTE_SIZE,
    DeltaCache,
    Envelope,
    Instrument,
    Module,
    ModuleData,
    ModuleError,
    Pattern,
    Sample,
    SampleFlag,
    log_2,
    to_int16,
    to_int32,
)

DataLike = Union[bytes, bytearray, memoryview, ModuleData]

_S3M_MAGIC = 0x4D524353
_S3M_ROWS = 64
_MOD_ROWS = 64
_XM_ENVELOPE_POINTS = 12


def _as_data(data: DataLike) -> ModuleData:
    if isinstance(data, ModuleData):
        return data
    return ModuleData(bytes(data))


def _default_instrument() -> Instrument:
    return Instrument(num_samples=1, samples=[Sample()])


# --- XM -------------------------------------------------------------------


def _decode_xm_pattern(module: Module, idx: int) -> None:
    source = module.patterns[idx]
    cache = module.pattern_cache
    cache.num_channels = source.num_channels
    cache.num_rows = source.num_rows
    data = module.data
    out = cache.data
    out[:] = bytes(len(out))
    offset = source.data_idx
    pos = 0
    for _ in range(source.num_rows * module.num_channels):
        flags = data.u8(offset)
        if flags & 0x80 == 0:
            flags = 0x1F
        else:
            offset += 1
        fields = []
        for bit in (0x01, 0x02, 0x04, 0x08, 0x10):
            if flags & bit:
                fields.append(data.u8(offset))
                offset += 1
            else:
                fields.append(0)
        if fields[3] >= 0x40:
            fields[3] = fields[4] = 0
        out[pos:pos + NOTE_SIZE] = bytes(fields)
        pos += NOTE_SIZE


def _read_envelope_points(data: ModuleData, env: Envelope, start: int, delta_env: bool) -> None:
    tick = 0
    for point in range(_XM_ENVELOPE_POINTS):
        point_offset = start + point * 4
        tick = (tick if delta_env else 0) + data.u16le(point_offset)
        env.points_tick[point] = to_int16(tick)
        env.points_ampl[point] = to_int16(data.u16le(point_offset + 2))


def _configure_envelope(data: ModuleData, env: Envelope, num_points_at: int,
                        ticks_at: int, type_at: int) -> None:
    env.num_points = data.u8(num_points_at)
    if env.num_points > _XM_ENVELOPE_POINTS:
        env.num_points = 0
    env.sustain_tick = env.points_tick[data.u8(ticks_at) & 0xF]
    env.loop_start_tick = env.points_tick[data.u8(ticks_at + 1) & 0xF]
    env.loop_end_tick = env.points_tick[data.u8(ticks_at + 2) & 0xF]
    env_type = data.u8(type_at)
    env.enabled = env.num_points > 0 and bool(env_type & 0x1)
    env.sustain = bool(env_type & 0x2)
    env.looped = bool(env_type & 0x4)


def _load_xm_instrument(data: ModuleData, module: Module, offset: int,
                        delta_env: bool) -> tuple[Instrument, int]:
    num_samples = data.u16le(offset + 27)
    instrument = Instrument(num_samples=max(num_samples, 1))
    instrument.samples = [Sample() for _ in range(instrument.num_samples)]
    if num_samples > 0:
        key_map_start = offset + 32
        instrument.key_to_sample = data.buffer[key_map_start:key_map_start + 97]
        _read_envelope_points(data, instrument.vol_env, offset + 129, delta_env)
        _read_envelope_points(data, instrument.pan_env, offset + 177, delta_env)
        _configure_envelope(data, instrument.vol_env, offset + 225, offset + 227, offset + 233)
        _configure_envelope(data, instrument.pan_env, offset + 226, offset + 230, offset + 234)
        instrument.vib_type = data.u8(offset + 235)
        instrument.vib_sweep = data.u8(offset + 236)
        instrument.vib_depth = data.u8(offset + 237)
        instrument.vib_rate = data.u8(offset + 238)
        instrument.vol_fadeout = data.u16le(offset + 239)
    offset += data.u32le(offset)
    head = offset
    offset += num_samples * 40
    for sample in instrument.samples[:num_samples]:
        data_bytes = to_int32(data.u32le(head))
        loop_start = to_int32(data.u32le(head + 4))
        loop_length = to_int32(data.u32le(head + 8))
        sample.volume = data.u8(head + 12)
        sample.fine_tune = data.s8(head + 13)
        sample_type = data.u8(head + 14)
        looped = bool(sample_type & 0x3)
        ping_pong = bool(sample_type & 0x2)
        sixteen_bit = bool(sample_type & 0x10)
        sample.panning = data.u8(head + 15) + 1
        sample.rel_note = data.s8(head + 16)
        head += 40
        data_samples = data_bytes
        if sixteen_bit:
            data_samples >>= 1
            loop_start >>= 1
            loop_length >>= 1
        if not looped or loop_start + loop_length > data_samples:
            loop_start = data_samples
            loop_length = 0
        sample.dcache = [DeltaCache() for _ in range(module.num_channels + 1)]
        sample.loop_start = loop_start
        sample.loop_length = loop_length
        flags = SampleFlag.DONTFREE | SampleFlag.DELTA
        if not sixteen_bit:
            flags |= SampleFlag.EIGHT_BIT
        if ping_pong:
            flags |= SampleFlag.PINGPONG
        sample.flags = flags
        sample.data = data.buffer
        sample.data_offset = offset
        offset += data_bytes
    return instrument, offset


def load_xm(data: DataLike) -> Module:
    """Load an Extended Module (XM) file."""
    data = _as_data(data)
    if data.u16le(58) != 0x0104:
        raise ModuleError("XM format version must be 0x0104!")
    module = Module(data=data)
    delta_env = data.ascii(38, 15) == "DigiBooster Pro"
    offset = 60 + data.u32le(60)
    module.sequence_len = data.u16le(64)
    module.restart_pos = data.u16le(66)
    module.num_channels = data.u16le(68)
    module.num_patterns = data.u16le(70)
    module.num_instruments = data.u16le(72)
    module.linear_periods = bool(data.u16le(74) & 0x1)
    module.default_gvol = 64
    module.default_speed = data.u16le(76)
    module.default_tempo = data.u16le(78)
    module.c2_rate = 8363
    module.gain = 64
    module.default_panning = [128] * module.num_channels
    module.sequence = [
        entry if entry < module.num_patterns else 0
        for entry in (data.u8(80 + idx) for idx in range(module.sequence_len))
    ]

    max_rows = 0
    for _ in range(module.num_patterns):
        if data.u8(offset + 4):
            raise ModuleError("Unknown pattern packing type!")
        num_rows = max(data.u16le(offset + 5), 1)
        max_rows = max(max_rows, num_rows)
        pat_data_len = data.u16le(offset + 7)
        offset += data.u32le(offset)
        module.patterns.append(Pattern(num_channels=module.num_channels,
                                       num_rows=num_rows, data_idx=offset))
        offset += pat_data_len
    module.pattern_cache = Pattern(data=bytearray(module.num_channels * max_rows * NOTE_SIZE))
    module.pattern_cache_idx = -1
    module.pattern_cache_handler = _decode_xm_pattern

    module.instruments = [_default_instrument()]
    for _ in range(module.num_instruments):
        instrument, offset = _load_xm_instrument(data, module, offset, delta_env)
        module.instruments.append(instrument)
    return module


# --- S3M ------------------------------------------------------------------


def _s3m_channel_map(data: ModuleData) -> list[int]:
    mapping = []
    count = 0
    for idx in range(32):
        if data.u8(64 + idx) < 16:
            mapping.append(count)
            count += 1
        else:
            mapping.append(-1)
    return mapping


def _decode_s3m_pattern(module: Module, idx: int) -> None:
    source = module.patterns[idx]
    cache = module.pattern_cache
    cache.num_channels = source.num_channels
    cache.num_rows = source.num_rows
    data = module.data
    cache.data[:] = bytes(len(cache.data))
    channel_map = _s3m_channel_map(data)
    offset = source.data_idx
    row = 0
    while row < _S3M_ROWS:
        token = data.u8(offset)
        offset += 1
        if not token:
            row += 1
            continue
        key = ins = 0
        if token & 0x20:
            key = data.u8(offset)
            ins = data.u8(offset + 1)
            offset += 2
            if key < 0xFE:
                key = (key >> 4) * 12 + (key & 0xF) + 1
            elif key == 0xFF:
                key = 0
        volume = 0
        if token & 0x40:
            volume = (data.u8(offset) & 0x7F) + 0x10
            offset += 1
            if volume > 0x50:
                volume = 0
        effect = param = 0
        if token & 0x80:
            effect = data.u8(offset)
            param = data.u8(offset + 1)
            offset += 2
            if effect < 1 or effect >= 0x40:
                effect = param = 0
            else:
                effect += 0x80
        chan = channel_map[token & 0x1F]
        if chan >= 0:
            cache.set_note(row, chan, key, ins, volume, effect, param)


def _load_s3m_sample(data: ModuleData, module: Module, inst_offset: int,
                     signed_samples: bool) -> Sample:
    sample = Sample()
    if data.u8(inst_offset) != 1 or data.u16le(inst_offset + 76) != 0x4353:
        return sample
    sample_offset = (data.u8(inst_offset + 13) << 20) + (data.u16le(inst_offset + 14) << 4)
    sample_length = to_int32(data.u32le(inst_offset + 16))
    loop_start = to_int32(data.u32le(inst_offset + 20))
    loop_length = to_int32(data.u32le(inst_offset + 24) - loop_start)
    sample.volume = data.u8(inst_offset + 28)
    if data.u8(inst_offset + 30) != 0:
        raise ModuleError("Packed samples not supported!")
    if loop_start + loop_length > sample_length:
        loop_length = sample_length - loop_start
    if loop_length < 1 or not data.u8(inst_offset + 31) & 0x1:
        loop_start = sample_length
        loop_length = 0
    sample.loop_start = loop_start
    sample.loop_length = loop_length
    sixteen_bit = bool(data.u8(inst_offset + 31) & 0x4)
    c2spd = to_int32(data.u32le(inst_offset + 32))
    tune = (log_2(c2spd) - log_2(module.c2_rate)) * 12
    sample.rel_note = tune >> FP_SHIFT
    sample.fine_tune = (tune & FP_MASK) >> (FP_SHIFT - 7)
    flags = SampleFlag.DONTFREE
    if not sixteen_bit:
        flags |= SampleFlag.EIGHT_BIT
    if not signed_samples:
        flags |= SampleFlag.UNSIGNED
    sample.flags = flags
    sample.data = data.buffer
    sample.data_offset = sample_offset
    return sample


def load_s3m(data: DataLike) -> Module:
    """Load a ScreamTracker 3 (S3M) module."""
    data = _as_data(data)
    module = Module(data=data)
    module.sequence_len = data.u16le(32)
    module.num_instruments = data.u16le(34)
    module.num_patterns = data.u16le(36)
    flags = data.u16le(38)
    version = data.u16le(40)
    module.fast_vol_slides = bool(flags & 0x40) or version == 0x1300
    signed_samples = data.u16le(42) == 1
    if data.u32le(44) != _S3M_MAGIC:
        raise ModuleError("Not an S3M file!")
    module.default_gvol = data.u8(48)
    module.default_speed = data.u8(49)
    module.default_tempo = data.u8(50)
    module.c2_rate = 8363
    module.gain = data.u8(51) & 0x7F
    stereo_mode = bool(data.u8(51) & 0x80)
    default_pan = data.u8(53) == 0xFC
    channel_map = _s3m_channel_map(data)
    module.num_channels = sum(1 for chan in channel_map if chan >= 0)
    module.sequence = [data.u8(96 + idx) for idx in range(module.sequence_len)]
    module_data_idx = 96 + module.sequence_len

    module.instruments = [_default_instrument()]
    for _ in range(module.num_instruments):
        inst_offset = data.u16le(module_data_idx) << 4
        module_data_idx += 2
        sample = _load_s3m_sample(data, module, inst_offset, signed_samples)
        module.instruments.append(Instrument(num_samples=1, samples=[sample]))

    for _ in range(module.num_patterns):
        module.patterns.append(Pattern(
            num_channels=module.num_channels, num_rows=_S3M_ROWS,
            data_idx=(data.u16le(module_data_idx) << 4) + 2))
        module_data_idx += 2
    module.pattern_cache = Pattern(
        data=bytearray(module.num_channels * _S3M_ROWS * NOTE_SIZE))
    module.pattern_cache_idx = -1
    module.pattern_cache_handler = _decode_s3m_pattern

    module.default_panning = [0] * module.num_channels
    for chan, mapped in enumerate(channel_map):
        if mapped < 0:
            continue
        panning = 7
        if stereo_mode:
            panning = 3 if data.u8(64 + chan) < 8 else 12
        if default_pan:
            pan_flags = data.u8(module_data_idx + chan)
            if pan_flags & 0x20:
                panning = pan_flags & 0xF
        module.default_panning[mapped] = panning * 17
    return module


# --- MOD ------------------------------------------------------------------


def _decode_mod_pattern(module: Module, idx: int) -> None:
    source = module.patterns[idx]
    cache = module.pattern_cache
    cache.num_channels = source.num_channels
    cache.num_rows = source.num_rows
    data = module.data
    out = cache.data
    out[:] = bytes(len(out))
    offset = source.data_idx
    for pos in range(0, module.num_channels * _MOD_ROWS * NOTE_SIZE, NOTE_SIZE):
        period = (data.u8(offset) & 0xF) << 8
        period = (period | data.u8(offset + 1)) * 4
        if 112 <= period <= 6848:
            key = -12 * log_2((period << FP_SHIFT) // 29021)
            key = (key + (key & (FP_ONE >> 1))) >> FP_SHIFT
            out[pos] = key & 0xFF
        ins = (data.u8(offset + 2) & 0xF0) >> 4
        ins |= data.u8(offset) & 0x10
        out[pos + 1] = ins
        effect = data.u8(offset + 2) & 0x0F
        param = data.u8(offset + 3)
        if param == 0 and (effect < 3 or effect == 0xA):
            effect = 0
        if param == 0 and effect in (5, 6):
            effect -= 2
        if effect == 8 and module.num_channels == 4:
            effect = param = 0
        out[pos + 3] = effect
        out[pos + 4] = param
        offset += 4


def _mod_channel_layout(data: ModuleData) -> tuple[int, int, int]:
    """Return (channels, c2 rate, gain) from the format tag at offset 1080."""
    tag = data.u16be(1082)
    if tag in (0x4B2E, 0x4B21, 0x5434):  # M.K., M!K!, FLT4
        return 4, 8287, 64
    if tag == 0x484E:  # xCHN
        return data.u8(1080) - 48, 8363, 32
    if tag == 0x4348:  # xxCH
        return (data.u8(1080) - 48) * 10 + data.u8(1081) - 48, 8363, 32
    raise ModuleError("MOD Format not recognised!")


def load_mod(data: DataLike) -> Module:
    """Load a ProTracker-style MOD module."""
    data = _as_data(data)
    module = Module(data=data)
    module.sequence_len = data.u8(950) & 0x7F
    module.restart_pos = data.u8(951) & 0x7F
    if module.restart_pos >= module.sequence_len:
        module.restart_pos = 0
    module.sequence = [data.u8(952 + idx) & 0x7F for idx in range(128)]
    module.num_patterns = max(module.sequence) + 1
    module.num_channels, module.c2_rate, module.gain = _mod_channel_layout(data)
    if module.num_channels <= 0:
        raise ModuleError("MOD Format not recognised!")
    module.default_gvol = 64
    module.default_speed = 6
    module.default_tempo = 125
    module.default_panning = [
        204 if (idx & 3) in (1, 2) else 51 for idx in range(module.num_channels)
    ]

    module_data_idx = 1084
    pattern_bytes = module.num_channels * _MOD_ROWS * 4
    for _ in range(module.num_patterns):
        module.patterns.append(Pattern(num_channels=module.num_channels,
                                       num_rows=_MOD_ROWS, data_idx=module_data_idx))
        module_data_idx += pattern_bytes
    module.pattern_cache = Pattern(
        data=bytearray(module.num_channels * _MOD_ROWS * NOTE_SIZE))
    module.pattern_cache_idx = -1
    module.pattern_cache_handler = _decode_mod_pattern

    module.num_instruments = 31
    module.instruments = [_default_instrument()]
    for ins in range(1, module.num_instruments + 1):
        base = ins * 30
        sample = Sample()
        sample_length = data.u16be(base + 12) * 2
        fine_tune = (data.u8(base + 14) & 0xF) << 4
        sample.fine_tune = (fine_tune & 0x7F) - (fine_tune & 0x80)
        sample.volume = min(data.u8(base + 15) & 0x7F, 64)
        loop_start = data.u16be(base + 16) * 2
        loop_length = data.u16be(base + 18) * 2
        if loop_start + loop_length > sample_length:
            if loop_start // 2 + loop_length <= sample_length:
                # Some old modules give the loop start in bytes.
                loop_start //= 2
            else:
                loop_length = sample_length - loop_start
        if loop_length < 4:
            loop_start = sample_length
            loop_length = 0
        sample.loop_start = loop_start
        sample.loop_length = loop_length
        sample.data = data.buffer
        sample.data_offset = module_data_idx
        sample.flags = SampleFlag.DONTFREE | SampleFlag.EIGHT_BIT
        module_data_idx += sample_length
        module.instruments.append(Instrument(num_samples=1, samples=[sample]))
    return module


def load_module(data: DataLike) -> Module:
    """Detect the format of ``data`` and load it as an XM, S3M or MOD module."""
    data = _as_data(data)
    if data.ascii(0, 16) == "Extended Module:":
        return load_xm(data)
    if data.ascii(44, 4) == "SCRM":
        return load_s3m(data)
    return load_mod(data)