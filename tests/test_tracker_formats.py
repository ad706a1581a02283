import struct

import pytest

from kcsdk.tracker_data import ModuleData, ModuleError, Note, SampleFlag
from kcsdk.tracker_formats import load_mod, load_module, load_s3m, load_xm


# --- builders -------------------------------------------------------------

def build_mod(tag=b"M.K.", channels=4, notes=(), sample=None, sequence=(0,),
              restart=0, extra_patterns=0):
    head = bytearray(1084)
    head[950] = len(sequence)
    head[951] = restart
    for idx, pat in enumerate(sequence):
        head[952 + idx] = pat
    head[1080:1084] = tag
    if sample is not None:
        length_words, finetune, volume, loop_start_words, loop_len_words = sample
        struct.pack_into(">H", head, 42, length_words)
        head[44] = finetune
        head[45] = volume
        struct.pack_into(">HH", head, 46, loop_start_words, loop_len_words)
    num_patterns = max(sequence) + 1
    patterns = bytearray(num_patterns * channels * 256)
    for row, chan, period, ins, effect, param in notes:
        pos = (row * channels + chan) * 4
        patterns[pos] = (ins & 0x10) | (period >> 8)
        patterns[pos + 1] = period & 0xFF
        patterns[pos + 2] = ((ins & 0xF) << 4) | effect
        patterns[pos + 3] = param
    return bytes(head + patterns)


def build_xm(version=0x0104, packing=0, tracker=b"FastTracker v2.00   ",
             sample_type=0, env_points=(0, 64, 10, 0), loop=(0, 0)):
    head = bytearray(336)
    head[0:17] = b"Extended Module: "
    head[37] = 0x1A
    head[38:58] = tracker
    struct.pack_into("<H", head, 58, version)
    struct.pack_into("<IHHHHHHHH", head, 60, 276, 2, 0, 2, 1, 1, 1, 6, 125)
    head[80] = 0
    head[81] = 5
    pattern_data = bytes([0x83, 49, 1, 0x98, 0x0F, 0x06,
                          50, 2, 0x40, 0x0C, 0x20, 0x88, 0x41])
    pattern = struct.pack("<IBHH", 9, packing, 2, len(pattern_data)) + pattern_data
    ins = bytearray(243)
    struct.pack_into("<I", ins, 0, 243)
    struct.pack_into("<H", ins, 27, 1)
    struct.pack_into("<I", ins, 29, 40)
    struct.pack_into("<HHHH", ins, 129, *env_points)
    ins[225] = 2
    ins[229] = 1
    ins[233] = 1
    struct.pack_into("<H", ins, 239, 256)
    shdr = bytearray(40)
    struct.pack_into("<III", shdr, 0, 3, loop[0], loop[1])
    shdr[12] = 48
    shdr[13] = 0x80
    shdr[14] = sample_type
    shdr[15] = 100
    shdr[16] = 0xFE
    sdata = bytes([10, 5, 0xFD])
    return bytes(head + pattern + ins + shdr + sdata)


def build_s3m(magic=b"SCRM", packed=0, ffi=2, version=0x1320, default_pan=False):
    buf = bytearray(0xD0)
    struct.pack_into("<HHHHHH", buf, 32, 2, 1, 1, 0, version, ffi)
    buf[44:48] = magic
    buf[48] = 64
    buf[49] = 6
    buf[50] = 125
    buf[51] = 0xB0
    buf[53] = 0xFC if default_pan else 0
    buf[64:96] = bytes([0, 8] + [0xFF] * 30)
    buf[96] = 0
    buf[97] = 0xFF
    struct.pack_into("<HH", buf, 98, 7, 13)
    buf[102] = 0x25
    ins = 112
    buf[ins] = 1
    struct.pack_into("<H", buf, ins + 14, 12)
    struct.pack_into("<III", buf, ins + 16, 4, 1, 3)
    buf[ins + 28] = 40
    buf[ins + 30] = packed
    buf[ins + 31] = 1
    struct.pack_into("<I", buf, ins + 32, 8363)
    buf[ins + 76:ins + 80] = b"SCRS"
    buf[192:196] = bytes([0x80, 0x90, 0x70, 0x80])
    pattern = bytes([0, 0,
                     0xA0, 0x41, 1, 1, 5,
                     0x41, 0x20,
                     0,
                     0x21, 0xFE, 3,
                     0x80, 0x40, 9,
                     0])
    return bytes(buf + pattern)


# --- MOD ------------------------------------------------------------------

def test_mod_header_defaults():
    module = load_mod(build_mod())
    assert module.num_channels == 4
    assert module.c2_rate == 8287
    assert module.gain == 64
    assert module.default_panning == [51, 204, 204, 51]
    assert (module.default_gvol, module.default_speed, module.default_tempo) == (64, 6, 125)
    assert len(module.instruments) == 32
    assert module.num_patterns == 1
    assert module.sequence_len == 1


def test_mod_restart_position_beyond_sequence_is_reset():
    module = load_mod(build_mod(restart=5))
    assert module.restart_pos == 0


def test_mod_pattern_count_follows_sequence():
    module = load_mod(build_mod(sequence=(0, 2)))
    assert module.num_patterns == 3
    assert len(module.patterns) == 3
    assert module.patterns[1].data_idx == 1084 + 4 * 64 * 4


def test_mod_channel_tags():
    six = load_mod(build_mod(tag=b"6CHN", channels=6))
    assert six.num_channels == 6
    assert six.gain == 32
    assert six.c2_rate == 8363
    twelve = load_mod(build_mod(tag=b"12CH", channels=12))
    assert twelve.num_channels == 12


def test_mod_unknown_tag_raises():
    with pytest.raises(ModuleError, match="MOD Format not recognised!"):
        load_mod(build_mod(tag=b"ABCD"))


def test_mod_period_octave_relation():
    notes = [(0, 0, 428, 1, 0, 0), (0, 1, 856, 1, 0, 0)]
    pattern = load_mod(build_mod(notes=notes)).get_pattern(0)
    high = pattern.get_note(0, 0).key
    low = pattern.get_note(0, 1).key
    assert 11 <= high - low <= 13


def test_mod_sample_fields():
    module = load_mod(build_mod(sample=(4, 0x8, 70, 0, 1)))
    sample = module.instruments[1].samples[0]
    assert sample.volume == 64
    assert sample.fine_tune == -128
    assert sample.loop_start == 8
    assert sample.loop_length == 0
    assert sample.flags == SampleFlag.DONTFREE | SampleFlag.EIGHT_BIT


def test_mod_sample_loop_and_data():
    raw = build_mod(sample=(4, 0x7, 32, 1, 3))
    data = raw + bytes([0x10, 0x20, 0, 0, 0, 0, 0, 0])
    module = load_mod(data)
    sample = module.instruments[1].samples[0]
    assert sample.loop_start == 2
    assert sample.loop_length == 6
    assert sample.fine_tune == 0x70
    assert sample.data_offset == len(raw)
    assert sample.get(0) == 0x10 * 256
    assert sample.get(1) == 0x20 * 256


# --- XM -------------------------------------------------------------------

def test_xm_header():
    module = load_xm(build_xm())
    assert module.num_channels == 2
    assert module.num_patterns == 1
    assert module.linear_periods is True
    assert module.default_panning == [128, 128]
    assert module.sequence == [0, 0]
    assert (module.default_speed, module.default_tempo) == (6, 125)
    assert module.c2_rate == 8363


def test_xm_wrong_version_raises():
    with pytest.raises(ModuleError, match="0x0104"):
        load_xm(build_xm(version=0x0103))


def test_xm_packing_type_raises():
    with pytest.raises(ModuleError, match="packing"):
        load_xm(build_xm(packing=1))


def test_xm_pattern_decoding():
    module = load_xm(build_xm())
    pattern = module.get_pattern(0)
    assert pattern.num_rows == 2
    assert pattern.get_note(0, 0) == Note(49, 1, 0, 0, 0)
    assert pattern.get_note(0, 1) == Note(0, 0, 0, 0x0F, 6)
    assert pattern.get_note(1, 0) == Note(50, 2, 0x40, 0x0C, 0x20)
    assert pattern.get_note(1, 1) == Note()


def test_xm_instrument_and_sample():
    module = load_xm(build_xm())
    instrument = module.instruments[1]
    assert instrument.vol_env.enabled is True
    assert instrument.vol_env.calculate_ampl(0) == 64
    assert instrument.vol_env.calculate_ampl(10) == 0
    assert instrument.vol_fadeout == 256
    sample = instrument.samples[0]
    assert sample.panning == 101
    assert sample.rel_note == -2
    assert sample.fine_tune == -128
    assert sample.volume == 48
    assert sample.loop_start == 3
    assert sample.loop_length == 0
    assert sample.flags & SampleFlag.DELTA
    assert sample.flags & SampleFlag.EIGHT_BIT
    assert instrument.sample_for_key(49) is sample


def test_xm_delta_sample_values():
    sample = load_xm(build_xm()).instruments[1].samples[0]
    first = sample.get(0, 0)
    second = sample.get(1, 0)
    assert first == 10 * 256
    assert second - first == 5 * 256


def test_xm_looped_sample():
    sample = load_xm(build_xm(sample_type=1, loop=(0, 2))).instruments[1].samples[0]
    assert sample.loop_start == 0
    assert sample.loop_length == 2


def test_xm_delta_envelope_ticks():
    points = (5, 64, 10, 0)
    normal = load_xm(build_xm(env_points=points)).instruments[1].vol_env
    assert normal.points_tick[:2] == [5, 10]
    digi = load_xm(build_xm(tracker=b"DigiBooster Pro 2.0 ", env_points=points))
    assert digi.instruments[1].vol_env.points_tick[:2] == [5, 15]


# --- S3M ------------------------------------------------------------------

def test_s3m_header():
    module = load_s3m(build_s3m())
    assert module.num_channels == 2
    assert module.gain == 0x30
    assert module.default_panning == [51, 204]
    assert module.sequence == [0, 0xFF]
    assert module.c2_rate == 8363
    assert module.fast_vol_slides is False


def test_s3m_fast_volume_slides_for_old_version():
    assert load_s3m(build_s3m(version=0x1300)).fast_vol_slides is True


def test_s3m_bad_magic_raises():
    with pytest.raises(ModuleError, match="Not an S3M file!"):
        load_s3m(build_s3m(magic=b"XXXX"))


def test_s3m_packed_sample_raises():
    with pytest.raises(ModuleError, match="Packed samples"):
        load_s3m(build_s3m(packed=1))


def test_s3m_sample_fields():
    sample = load_s3m(build_s3m()).instruments[1].samples[0]
    assert sample.volume == 40
    assert sample.loop_start == 1
    assert sample.loop_length == 2
    assert sample.rel_note == 0
    assert sample.fine_tune == 0
    assert sample.flags & SampleFlag.UNSIGNED
    assert sample.get(0) == 0


def test_s3m_signed_samples():
    sample = load_s3m(build_s3m(ffi=1)).instruments[1].samples[0]
    assert not sample.flags & SampleFlag.UNSIGNED
    assert sample.get(2) == 0x70 * 256


def test_s3m_pattern_decoding():
    pattern = load_s3m(build_s3m()).get_pattern(0)
    assert pattern.num_rows == 64
    assert pattern.get_note(0, 0) == Note(50, 1, 0, 0x81, 5)
    assert pattern.get_note(0, 1) == Note(0, 0, 0x30, 0, 0)
    assert pattern.get_note(1, 1) == Note(0xFE, 3, 0, 0, 0)
    assert pattern.get_note(1, 0) == Note()


def test_s3m_default_pan_table():
    module = load_s3m(build_s3m(default_pan=True))
    assert module.default_panning == [5 * 17, 204]


# --- detection ------------------------------------------------------------

@pytest.mark.parametrize("builder, channels", [
    (build_xm, 2),
    (build_s3m, 2),
    (build_mod, 4),
])
def test_load_module_detects_format(builder, channels):
    module = load_module(builder())
    assert module.num_channels == channels


def test_load_module_accepts_module_data():
    raw = build_xm()
    from_bytes = load_module(raw)
    from_data = load_module(ModuleData(raw))
    assert from_data.get_pattern(0).get_note(1, 0) == from_bytes.get_pattern(0).get_note(1, 0)
    assert from_data.data.buffer == raw


def test_load_module_falls_back_to_mod_error():
    with pytest.raises(ModuleError):
        load_module(bytes(1200))