# scanout

Building blocks for the output side of a network scanner: typed result
records, CSV and JSON writers for them, a progress monitor for a running
scan, and discovery of the default gateway on Linux. The package has no
third-party dependencies.

## Modules

- `scanout.fieldset`: typed, ordered result records.
  - `FieldSet` holds named fields of the kinds in `FieldType`: strings,
    unsigned 64-bit integers, booleans, binary values, nulls, nested field
    sets and repeated fields. `FieldSet.new_repeated(inner_type)` makes a
    repeated field whose elements must all be of one type.
  - `add_unsafe_string` and `chkadd_unsafe_string` accept bytes and repair
    invalid UTF-8 with `sanitize_utf8`, which replaces each bad byte with
    U+FFFD. The `chkadd_*` methods add a null field when the value is `None`.
  - `modify_*` methods replace the first field with the given name, or add
    it when there is none.
  - `FieldDef` and `FieldDefSet` describe the fields a probe can produce.
    `make_translation(avail, requested)` and `full_translation(avail)` build
    a `Translation`, and `FieldSet.translate` applies it to select and
    reorder fields.
  - Misuse raises `FieldsetError`: a field set holds at most 127 fields, a
    field definition set at most 128 definitions, and a repeated field only
    takes values of its own type. Integers outside the unsigned 64-bit range
    raise `ValueError`.
- `scanout.csv_output`: `format_csv_row` renders a flat field set as one CSV
  line. Strings holding a comma are wrapped in double quotes, booleans are
  written as `0` or `1`, binary values as lower-case hex and nulls as empty
  cells. `open_csv_output(filename, fields, module_name)` opens a
  `CsvOutput` on a file, or on standard output for `None` or `"-"`, and
  writes a header line unless `module_name` is `"default"`.
- `scanout.json_output`: `fieldset_to_json` and `to_json_line` turn a field
  set, nested and repeated fields included, into JSON. Binary values become
  hex strings and integers at or above 2**63 are written as signed 64-bit
  values. `open_json_output(filename)` opens a `JsonOutput` writing one
  object per line; `print_json_fieldset` writes a single record.
- `scanout.registry`: `get_output_module_by_name` returns the
  `OutputModuleInfo` for `"csv"` or `"json"` (or `None`), whose `open`
  method opens the writer; `print_output_modules` lists the names.
- `scanout.monitor`: `Monitor.update(counters, now)` takes a `ScanCounters`
  snapshot and returns an `ExportStatus` with rates, averages, hit rate and
  an estimate of the time left (`compute_remaining_time`). It prints a
  one-line summary to standard error unless `MonitorConfig.quiet` is set,
  appends rows to a CSV status file when `status_updates_file` is set, and
  raises `MonitorAbort` when the hit rate stays below `min_hitrate` for
  five seconds or send failures exceed `max_sendto_failures`.
- `scanout.gateway`: Linux gateway and interface discovery through
  rtnetlink and ioctl: `get_default_gw`, `get_hw_addr`, `get_iface_ip`,
  `get_iface_hw_addr` and `get_default_iface`. The message helpers
  `build_netlink_request`, `parse_route_dump` and `parse_neighbor_dump`
  work on plain bytes. Failures raise `GatewayError`.

## Installation

```
pip install .
```

To run the tests:

```
pip install .[test]
pytest
```

## Example

```python
import sys

from scanout.fieldset import FieldSet, FieldType
from scanout.json_output import print_json_fieldset
from scanout.csv_output import format_csv_row

record = FieldSet()
record.add_string("saddr", "192.0.2.1")
record.add_uint64("sport", 443)
record.add_bool("success", True)
record.add_binary("payload", b"\x01\xff")

tags = FieldSet.new_repeated(FieldType.STRING)
tags.add_string(None, "open")
record.add_repeated("tags", tags)

print_json_fieldset(record, sys.stdout)
# {"saddr": "192.0.2.1", "sport": 443, "success": true, "payload": "01ff", "tags": ["open"]}
```

Flat records, without nested or repeated fields, can be written as CSV:

```python
flat = FieldSet()
flat.add_string("saddr", "192.0.2.1")
flat.add_uint64("sport", 443)
print(format_csv_row(flat))
# 192.0.2.1,443
```

Feeding the monitor:

```python
from scanout.monitor import Monitor, MonitorConfig, ScanCounters

monitor = Monitor(MonitorConfig(max_runtime=60, quiet=True))
status = monitor.update(
    ScanCounters(start=0.0, sent=100, tried_sent=100, success_unique=5, send_threads=1),
    now=2.0,
)
print(status.hitrate)
# 5.0
monitor.close()
```

## What this package does not do

It does not send or receive packets, and it has no command-line program.
The monitor does not poll on its own: the caller passes it a counter
snapshot about once a second. Only the CSV and JSON writers are available;
there is no database or message-queue output. Gateway discovery works only
on Linux.