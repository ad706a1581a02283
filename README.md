# kcsdk

Pure-Python pieces of a small handheld game console SDK:

- **Tracker modules**: load `.mod`, `.xm` and `.s3m` music modules (`kcsdk.tracker_formats`) into a data model of instruments, samples, envelopes and patterns (`kcsdk.tracker_data`).
- **Channel playback**: `kcsdk.tracker_channel.Channel` holds the playback state of one module channel. It triggers notes, applies row and tick effects, and resamples its current sample into a mix buffer.
- **Glob matching**: BSD-style `fnmatch` and comma-separated glob lists (`kcsdk.globmatch`).
- **Hex dumps**: `kcsdk.hexdump.hexdump` formats binary data as offset, hex and ASCII columns.
- **CRC-32**: `kcsdk.crc32.crc32_le` computes the reflected (little-endian) CRC-32.

## Installation

```
pip install .
```

Install with `pip install .[test]` to get the test dependencies as well.

## Loading a tracker module

```python
from kcsdk.tracker_formats import load_module
from kcsdk.tracker_data import ModuleError

with open("song.mod", "rb") as f:
    try:
        module = load_module(f.read())
    except ModuleError as err:
        print("cannot load:", err)
        raise

print(module.num_channels, module.num_patterns, module.default_tempo)
pattern = module.get_pattern(module.sequence[0])
note = pattern.get_note(0, 0)   # Note(key, instrument, volume, effect, param)
```

`load_module` looks at the header to pick the format. `load_xm`, `load_s3m` and `load_mod` load one format directly. Each raises `ModuleError` for data it cannot handle: a wrong XM version, a packed pattern or sample, a missing S3M signature, or an unknown MOD format tag. Patterns are decoded on demand into `module.pattern_cache` by `Module.get_pattern`.

## Driving a channel

A `Channel` needs an owner object with a `module` attribute and a writable `global_vol`:

```python
from types import SimpleNamespace
from kcsdk.tracker_channel import Channel

owner = SimpleNamespace(module=module, global_vol=module.default_gvol)
channel = Channel(owner, 0)
channel.row(pattern.get_note(0, 0))   # first tick of a row
channel.tick()                        # each further tick of the row

mix = [0] * 256
channel.resample(mix, 0, len(mix), 48000, False)   # adds this channel's samples
channel.update_sample_idx(len(mix), 48000)
```

## Helpers

```python
from kcsdk.globmatch import fnmatch, filter_glob, FnmFlag
from kcsdk.hexdump import hexdump
from kcsdk.crc32 import crc32_le

filter_glob("Tetris.GB", "*.gb,*.gbc")       # True: each glob is matched ignoring case
fnmatch("*.txt", "notes.txt")                # True
fnmatch("*", ".hidden", FnmFlag.PERIOD)      # False
print(hexdump(b"hello, world", 8))
crc32_le(0, b"123456789")                    # 0xCBF43926
```

## What this package does not do

There is no song sequencer here: nothing steps through a module's order list row by row, handles speed, tempo, pattern jumps and loops, or renders a whole song to audio. Accordingly there is no command to convert a module to a WAV file, no WAV file reader, no multi-channel sound mixer, and no flash partition emulator. Callers that want complete playback have to drive `Channel` objects themselves.

## Running the tests

```
pytest
```