"""Per-channel playback state of the tracker replay: note triggering, effects and resampling."""

from __future__ import annotations

from dataclasses import replace
from typing import Any, MutableSequence

from .tracker_data import (
    FP_MASK,
    FP_SHIFT,
    SINE_TABLE,
    Instrument,
    Module,
    Note,
    Sample,
    cdiv,
    exp_2,
    to_int32,
)

_MAX_VOLUME = 64
_MAX_PERIOD = 65535


def _clamp(value: int, low: int, high: int) -> int:
    return max(low, min(high, value))


class Channel:
    """Playback state of one module channel.

    ``replay`` is the owning replay; only its ``module`` and its writable
    ``global_vol`` are used.
    """

    def __init__(self, replay: Any, idx: int) -> None:
        self.replay = replay
        module: Module = replay.module
        self.id = idx
        self.instrument: Instrument = module.instruments[0]
        self.sample: Sample = self.instrument.samples[0]
        self.note = Note()
        self.key_on = False
        self.random_seed = (idx + 1) * 0xABCDEF
        self.pl_row = 0
        self.sample_off = 0
        self.sample_idx = 0
        self.sample_fra = 0
        self.freq = 0
        self.ampl = 0
        self.pann = 0
        self.volume = 0
        self.panning = module.default_panning[idx]
        self.fadeout_vol = 0
        self.vol_env_tick = 0
        self.pan_env_tick = 0
        self.period = 0
        self.porta_period = 0
        self.retrig_count = 0
        self.fx_count = 0
        self.av_count = 0
        self.porta_up_param = 0
        self.porta_down_param = 0
        self.tone_porta_param = 0
        self.offset_param = 0
        self.fine_porta_up_param = 0
        self.fine_porta_down_param = 0
        self.xfine_porta_param = 0
        self.arpeggio_param = 0
        self.vol_slide_param = 0
        self.gvol_slide_param = 0
        self.pan_slide_param = 0
        self.fine_vslide_up_param = 0
        self.fine_vslide_down_param = 0
        self.retrig_volume = 0
        self.retrig_ticks = 0
        self.tremor_on_ticks = 0
        self.tremor_off_ticks = 0
        self.vibrato_type = 0
        self.vibrato_phase = 0
        self.vibrato_speed = 0
        self.vibrato_depth = 0
        self.tremolo_type = 0
        self.tremolo_phase = 0
        self.tremolo_speed = 0
        self.tremolo_depth = 0
        self.tremolo_add = 0
        self.vibrato_add = 0
        self.arpeggio_add = 0

    @property
    def module(self) -> Module:
        return self.replay.module

    # --- effect helpers -----------------------------------------------------

    def _volume_slide(self) -> None:
        up = self.vol_slide_param >> 4
        down = self.vol_slide_param & 0xF
        if down == 0xF and up > 0:
            if self.fx_count == 0:
                self.volume += up
        elif up == 0xF and down > 0:
            if self.fx_count == 0:
                self.volume -= down
        elif self.fx_count > 0 or self.module.fast_vol_slides:
            self.volume += up - down
        self.volume = _clamp(self.volume, 0, _MAX_VOLUME)

    def _porta_up(self, param: int) -> None:
        kind = param & 0xF0
        if kind == 0xE0:
            if self.fx_count == 0:
                self.period -= param & 0xF
        elif kind == 0xF0:
            if self.fx_count == 0:
                self.period -= (param & 0xF) << 2
        elif self.fx_count > 0:
            self.period -= param << 2
        if self.period < 0:
            self.period = 0

    def _porta_down(self, param: int) -> None:
        if self.period <= 0:
            return
        kind = param & 0xF0
        if kind == 0xE0:
            if self.fx_count == 0:
                self.period += param & 0xF
        elif kind == 0xF0:
            if self.fx_count == 0:
                self.period += (param & 0xF) << 2
        elif self.fx_count > 0:
            self.period += param << 2
        if self.period > _MAX_PERIOD:
            self.period = _MAX_PERIOD

    def _tone_porta(self) -> None:
        if self.period <= 0:
            return
        if self.period < self.porta_period:
            self.period = min(self.period + (self.tone_porta_param << 2), self.porta_period)
        else:
            self.period = max(self.period - (self.tone_porta_param << 2), self.porta_period)

    def _waveform(self, phase: int, wave_type: int) -> int:
        if wave_type == 6:  # Saw up
            return (((phase + 0x20) & 0x3F) << 3) - 255
        if wave_type in (1, 7):  # Saw down
            return 255 - (((phase + 0x20) & 0x3F) << 3)
        if wave_type in (2, 5):  # Square
            return 255 if phase & 0x20 else -255
        if wave_type in (3, 8):  # Random
            amplitude = (self.random_seed >> 20) - 255
            self.random_seed = (self.random_seed * 65 + 17) & 0x1FFFFFFF
            return amplitude
        amplitude = SINE_TABLE[phase & 0x1F]
        return -amplitude if phase & 0x20 else amplitude

    def _vibrato(self, fine: bool) -> None:
        wave = self._waveform(self.vibrato_phase, self.vibrato_type & 0x3)
        self.vibrato_add = (wave * self.vibrato_depth) >> (7 if fine else 5)

    def _tremolo(self) -> None:
        wave = self._waveform(self.tremolo_phase, self.tremolo_type & 0x3)
        self.tremolo_add = (wave * self.tremolo_depth) >> 6

    def _tremor(self) -> None:
        if self.retrig_count >= self.tremor_on_ticks:
            self.tremolo_add = -64
        if self.retrig_count >= self.tremor_on_ticks + self.tremor_off_ticks:
            self.tremolo_add = 0
            self.retrig_count = 0

    def _retrig_vol_slide(self) -> None:
        if self.retrig_count < self.retrig_ticks:
            return
        self.retrig_count = self.sample_idx = self.sample_fra = 0
        change = self.retrig_volume
        vol = self.volume
        if 0x1 <= change <= 0x5:
            vol -= 1 << (change - 1)
        elif change == 0x6:
            vol = vol * 2 // 3
        elif change == 0x7:
            vol >>= 1
        elif 0x9 <= change <= 0xD:
            vol += 1 << (change - 9)
        elif change == 0xE:
            vol = vol * 3 // 2
        elif change == 0xF:
            vol <<= 1
        self.volume = _clamp(vol, 0, _MAX_VOLUME)

    # --- note handling --------------------------------------------------------

    def trigger(self) -> None:
        """Start the current note: select instrument and sample, apply volume column and pitch."""
        note = self.note
        module = self.module
        ins = note.instrument
        if 0 < ins <= module.num_instruments:
            self.instrument = module.instruments[ins]
            key = note.key if note.key < 97 else 0
            sample = self.instrument.sample_for_key(key)
            self.volume = _MAX_VOLUME if sample.volume >= 64 else sample.volume & 0x3F
            if sample.panning > 0:
                self.panning = (sample.panning - 1) & 0xFF
            if self.period > 0 and sample.loop_length > 1:
                # Amiga trigger.
                self.sample = sample
            self.sample_off = 0
            self.vol_env_tick = self.pan_env_tick = 0
            self.fadeout_vol = 32768
            self.key_on = True
        if note.effect in (0x09, 0x8F):
            if note.param > 0:
                self.offset_param = note.param
            self.sample_off = self.offset_param << 8
        if 0x10 <= note.volume < 0x60:
            self.volume = note.volume - 0x10 if note.volume < 0x50 else _MAX_VOLUME
        column = note.volume & 0xF0
        low = note.volume & 0xF
        if column == 0x80:
            self.volume = max(self.volume - low, 0)
        elif column == 0x90:
            self.volume = min(self.volume + low, _MAX_VOLUME)
        elif column == 0xA0:
            if low > 0:
                self.vibrato_speed = low
        elif column == 0xB0:
            if low > 0:
                self.vibrato_depth = low
            self._vibrato(False)
        elif column == 0xC0:
            self.panning = low * 17
        elif column == 0xF0:
            if low > 0:
                self.tone_porta_param = low
        if note.key <= 0:
            return
        if note.key > 96:
            self.key_on = False
            return
        porta = column == 0xF0 or note.effect in (0x03, 0x05, 0x87, 0x8C)
        if not porta:
            self.sample = self.instrument.sample_for_key(note.key)
        fine_tune = self.sample.fine_tune
        if note.effect in (0x75, 0xF2):
            fine_tune = ((note.param & 0xF) << 4) - 128
        key = _clamp(note.key + self.sample.rel_note, 1, 120)
        period = (key << 6) + (fine_tune >> 1)
        if module.linear_periods:
            self.porta_period = 7744 - period
        else:
            self.porta_period = (29021 * exp_2(cdiv(period << FP_SHIFT, -768))) >> FP_SHIFT
        if not porta:
            self.period = self.porta_period
            self.sample_idx = self.sample_off
            self.sample_fra = 0
            if self.vibrato_type < 4:
                self.vibrato_phase = 0
            if self.tremolo_type < 4:
                self.tremolo_phase = 0
            self.retrig_count = self.av_count = 0

    def _update_envelopes(self) -> None:
        instrument = self.instrument
        if instrument.vol_env.enabled:
            if not self.key_on:
                self.fadeout_vol = max(self.fadeout_vol - instrument.vol_fadeout, 0)
            self.vol_env_tick = instrument.vol_env.next_tick(self.vol_env_tick, self.key_on)
        if instrument.pan_env.enabled:
            self.pan_env_tick = instrument.pan_env.next_tick(self.pan_env_tick, self.key_on)

    def _auto_vibrato(self) -> None:
        instrument = self.instrument
        depth = instrument.vib_depth & 0x7F
        if depth <= 0:
            return
        sweep = instrument.vib_sweep & 0x7F
        rate = instrument.vib_rate & 0x7F
        if self.av_count < sweep:
            depth = depth * self.av_count // sweep
        wave = self._waveform((self.av_count * rate) >> 2, instrument.vib_type + 4)
        self.vibrato_add += (wave * depth) >> 8
        self.av_count += 1

    def _calculate_freq(self) -> None:
        module = self.module
        per = self.period + self.vibrato_add
        if module.linear_periods:
            per -= self.arpeggio_add << 6
            if per < 28 or per > 7680:
                per = 7680
            self.freq = to_int32(
                (module.c2_rate >> 4) * exp_2(cdiv((4608 - per) << FP_SHIFT, 768))
            ) >> (FP_SHIFT - 4)
        else:
            per = min(per, 29021)
            per = cdiv(per << FP_SHIFT, exp_2(cdiv(self.arpeggio_add << FP_SHIFT, 12)))
            if per < 28:
                per = 29021
            self.freq = cdiv(module.c2_rate * 1712, per)

    def _calculate_ampl(self) -> None:
        instrument = self.instrument
        env_pan = 32
        env_vol = 64 if self.key_on else 0
        if instrument.vol_env.enabled:
            env_vol = instrument.vol_env.calculate_ampl(self.vol_env_tick)
        vol = _clamp(self.volume + self.tremolo_add, 0, _MAX_VOLUME)
        vol = to_int32(vol * self.module.gain * (1 << FP_SHIFT)) >> 13
        vol = to_int32(vol * self.fadeout_vol) >> 15
        self.ampl = to_int32(vol * self.replay.global_vol * env_vol) >> 12
        if instrument.pan_env.enabled:
            env_pan = instrument.pan_env.calculate_ampl(self.pan_env_tick)
        span = self.panning if self.panning < 128 else 255 - self.panning
        self.pann = self.panning + ((span * (env_pan - 32)) >> 5)

    def _finish_update(self) -> None:
        self._auto_vibrato()
        self._calculate_freq()
        self._calculate_ampl()
        self._update_envelopes()

    def tick(self) -> None:
        """Advance the channel by one tick within the current row."""
        note = self.note
        self.vibrato_add = 0
        self.fx_count += 1
        self.retrig_count += 1
        if not (note.effect == 0x7D and self.fx_count <= note.param):
            column = note.volume & 0xF0
            low = note.volume & 0xF
            if column == 0x60:
                self.volume = max(self.volume - low, 0)
            elif column == 0x70:
                self.volume = min(self.volume + low, _MAX_VOLUME)
            elif column == 0xB0:
                self.vibrato_phase += self.vibrato_speed
                self._vibrato(False)
            elif column == 0xD0:
                self.panning = max(self.panning - low, 0)
            elif column == 0xE0:
                self.panning = min(self.panning + low, 255)
            elif column == 0xF0:
                self._tone_porta()
        effect = note.effect
        if effect in (0x01, 0x86):
            self._porta_up(self.porta_up_param)
        elif effect in (0x02, 0x85):
            self._porta_down(self.porta_down_param)
        elif effect in (0x03, 0x87):
            self._tone_porta()
        elif effect in (0x04, 0x88):
            self.vibrato_phase += self.vibrato_speed
            self._vibrato(False)
        elif effect in (0x05, 0x8C):
            self._tone_porta()
            self._volume_slide()
        elif effect in (0x06, 0x8B):
            self.vibrato_phase += self.vibrato_speed
            self._vibrato(False)
            self._volume_slide()
        elif effect in (0x07, 0x92):
            self.tremolo_phase += self.tremolo_speed
            self._tremolo()
        elif effect in (0x0A, 0x84):
            self._volume_slide()
        elif effect == 0x11:
            gvol = (self.replay.global_vol + (self.gvol_slide_param >> 4)
                    - (self.gvol_slide_param & 0xF))
            self.replay.global_vol = _clamp(gvol, 0, 64)
        elif effect == 0x19:
            pan = self.panning + (self.pan_slide_param >> 4) - (self.pan_slide_param & 0xF)
            self.panning = _clamp(pan, 0, 255)
        elif effect in (0x1B, 0x91):
            self._retrig_vol_slide()
        elif effect in (0x1D, 0x89):
            self._tremor()
        elif effect == 0x79:
            if self.fx_count >= note.param:
                self.fx_count = 0
                self.sample_idx = self.sample_fra = 0
        elif effect in (0x7C, 0xFC):
            if note.param == self.fx_count:
                self.volume = 0
        elif effect in (0x7D, 0xFD):
            if note.param == self.fx_count:
                self.trigger()
        elif effect == 0x8A:
            if self.fx_count == 1:
                self.arpeggio_add = self.arpeggio_param >> 4
            elif self.fx_count == 2:
                self.arpeggio_add = self.arpeggio_param & 0xF
            else:
                self.arpeggio_add = self.fx_count = 0
        elif effect == 0x95:
            self.vibrato_phase += self.vibrato_speed
            self._vibrato(True)
        self._finish_update()

    def row(self, note: Note) -> None:
        """Start a new row with ``note``, applying its first-tick effects."""
        self.note = replace(note)
        note = self.note
        self.retrig_count += 1
        self.vibrato_add = self.tremolo_add = self.arpeggio_add = self.fx_count = 0
        if not (note.effect in (0x7D, 0xFD) and note.param > 0):
            self.trigger()
        effect = note.effect
        param = note.param
        high, low = param >> 4, param & 0xF
        if effect in (0x01, 0x86):
            if param > 0:
                self.porta_up_param = param
            self._porta_up(self.porta_up_param)
        elif effect in (0x02, 0x85):
            if param > 0:
                self.porta_down_param = param
            self._porta_down(self.porta_down_param)
        elif effect in (0x03, 0x87):
            if param > 0:
                self.tone_porta_param = param
        elif effect in (0x04, 0x88):
            if high > 0:
                self.vibrato_speed = high
            if low > 0:
                self.vibrato_depth = low
            self._vibrato(False)
        elif effect in (0x05, 0x8C):
            if param > 0:
                self.vol_slide_param = param
            self._volume_slide()
        elif effect in (0x06, 0x8B):
            if param > 0:
                self.vol_slide_param = param
            self._vibrato(False)
            self._volume_slide()
        elif effect in (0x07, 0x92):
            if high > 0:
                self.tremolo_speed = high
            if low > 0:
                self.tremolo_depth = low
            self._tremolo()
        elif effect == 0x08:
            self.panning = param << 1 if param < 128 else 255
        elif effect in (0x0A, 0x84):
            if param > 0:
                self.vol_slide_param = param
            self._volume_slide()
        elif effect == 0x0C:
            self.volume = _MAX_VOLUME if param >= 64 else param & 0x3F
        elif effect in (0x10, 0x96):
            self.replay.global_vol = 64 if param >= 64 else param & 0x3F
        elif effect == 0x11:
            if param > 0:
                self.gvol_slide_param = param
        elif effect == 0x14:
            self.key_on = False
        elif effect == 0x15:
            self.vol_env_tick = self.pan_env_tick = param & 0xFF
        elif effect == 0x19:
            if param > 0:
                self.pan_slide_param = param
        elif effect in (0x1B, 0x91):
            if high > 0:
                self.retrig_volume = high
            if low > 0:
                self.retrig_ticks = low
            self._retrig_vol_slide()
        elif effect in (0x1D, 0x89):
            if high > 0:
                self.tremor_on_ticks = high
            if low > 0:
                self.tremor_off_ticks = low
            self._tremor()
        elif effect == 0x21:
            if param > 0:
                self.xfine_porta_param = param
            kind = self.xfine_porta_param & 0xF0
            if kind == 0x10:
                self._porta_up(0xE0 | (self.xfine_porta_param & 0xF))
            elif kind == 0x20:
                self._porta_down(0xE0 | (self.xfine_porta_param & 0xF))
        elif effect == 0x71:
            if param > 0:
                self.fine_porta_up_param = param
            self._porta_up(0xF0 | (self.fine_porta_up_param & 0xF))
        elif effect == 0x72:
            if param > 0:
                self.fine_porta_down_param = param
            self._porta_down(0xF0 | (self.fine_porta_down_param & 0xF))
        elif effect in (0x74, 0xF3):
            if param < 8:
                self.vibrato_type = param
        elif effect in (0x77, 0xF4):
            if param < 8:
                self.tremolo_type = param
        elif effect == 0x7A:
            if param > 0:
                self.fine_vslide_up_param = param
            self.volume = min(self.volume + self.fine_vslide_up_param, _MAX_VOLUME)
        elif effect == 0x7B:
            if param > 0:
                self.fine_vslide_down_param = param
            self.volume = max(self.volume - self.fine_vslide_down_param, 0)
        elif effect in (0x7C, 0xFC):
            if param <= 0:
                self.volume = 0
        elif effect == 0x8A:
            if param > 0:
                self.arpeggio_param = param
        elif effect == 0x95:
            if high > 0:
                self.vibrato_speed = high
            if low > 0:
                self.vibrato_depth = low
            self._vibrato(True)
        elif effect == 0xF8:
            self.panning = param * 17
        self._finish_update()

    # --- audio ------------------------------------------------------------------

    def _step(self, sample_rate: int) -> int:
        return (self.freq << (FP_SHIFT - 3)) // (sample_rate >> 3)

    def resample(self, mix_buf: MutableSequence[int], offset: int, count: int,
                 sample_rate: int, interpolate: bool) -> None:
        """Add ``count`` mono output samples of this channel into ``mix_buf`` from ``offset``."""
        if self.ampl <= 0:
            return
        sample = self.sample
        sam_idx = self.sample_idx
        sam_fra = self.sample_fra
        step = self._step(sample_rate)
        loop_len = sample.loop_length
        loop_end = sample.loop_start + loop_len
        for out_idx in range(offset, offset + count):
            if sam_idx >= loop_end:
                if loop_len <= 1:
                    break
                while sam_idx >= loop_end:
                    sam_idx -= loop_len
            y = sample.get(sam_idx, self.id)
            if interpolate:
                m = sample.get(sam_idx + 1, self.id) - y
                y += (m * sam_fra) >> FP_SHIFT
            mix_buf[out_idx] += (y * self.ampl) >> FP_SHIFT
            sam_fra += step
            sam_idx += sam_fra >> FP_SHIFT
            sam_fra &= FP_MASK

    def update_sample_idx(self, count: int, sample_rate: int) -> None:
        """Advance the sample position by ``count`` output samples, wrapping at the loop."""
        sample = self.sample
        self.sample_fra += self._step(sample_rate) * count
        self.sample_idx += self.sample_fra >> FP_SHIFT
        if self.sample_idx > sample.loop_start:
            if sample.loop_length > 1:
                self.sample_idx = sample.loop_start + (
                    (self.sample_idx - sample.loop_start) % sample.loop_length)
            else:
                self.sample_idx = sample.loop_start
        self.sample_fra &= FP_MASK