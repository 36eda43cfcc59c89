# lfverifier

A library for testing Logstash filter configurations the way you test code.
You describe input lines and the events you expect in a JSON or YAML file.
lfverifier runs the lines through a real Logstash process that uses your
filters. It then compares each event Logstash emits with the expected event,
using a diff command of your choice.

It needs Python 3.10 or later, a POSIX system and an installed Logstash.

## Installation

```
pip install .
pip install ".[test]"   # with pytest, to run the test suite
```

## Test case files

A test case file is JSON (`.json`) or YAML (`.yaml`, `.yml`):

```yaml
codec: line
ignore:
  - "@timestamp"
  - host
fields:
  type: syslog
  "[log][file][path]": /var/log/messages
input:
  - "Oct  1 12:00:00 host prog: hello"
expected:
  - type: syslog
    message: "Oct  1 12:00:00 host prog: hello"
    log:
      file:
        path: /var/log/messages
```

Keys of the file:

- `codec`: the codec used to read the input lines. The default is `line`. Use
  `json_lines` for JSON input; bracket-notation keys inside those JSON lines
  are expanded as well.
- `fields`: fields added to every input event. Keys may use bracket notation,
  such as `[log][file][path]`, and are expanded into nested objects.
- `ignore`: fields removed from the actual events before they are compared.
  `@version` is always ignored. Bracket notation selects nested fields, and
  objects left empty are removed too.
- `input` and `expected`: input lines and the events expected from them.
- `testcases`: further groups, each with its own `input`, `fields`,
  `expected` and an optional `description`. A group's fields override the
  global ones for its events, and are gathered in `CaseSet.events`, one field
  set per input line. A group without input lines contributes one dummy line.
- `input_plugin`, `export_metadata` and `export_outputs` are read and kept on
  the `CaseSet`.

Invalid files raise `lfverifier.testcase.CaseSetError`.

## Loading test cases

```python
from lfverifier.discover import discover_tests
from lfverifier.testcase import load_case_set, load_case_set_file

case_sets = discover_tests("tests/logstash")      # every .json/.yaml/.yml in the directory
case_set = load_case_set_file("tests/logstash/syslog.yaml")

with open("cases.json") as handle:
    other = load_case_set(handle, "json")
```

`discover_tests` also accepts the path of a single file. Files are read in
name order, and subdirectories are not searched.

## Running Logstash

```python
from lfverifier.invocation import Invocation
from lfverifier.process import Process
from lfverifier.version import detect_version

logstash = "/usr/share/logstash/bin/logstash"
version = detect_version(logstash, [])

with Invocation(logstash, [], version, "filters/") as invocation:
    with Process.create(invocation, case_set.codec, case_set.input_fields, []) as process:
        process.start()
        for line in case_set.input_lines:
            process.write(line + "\n")
        process.close_input()
        result = process.wait()
```

- `detect_version` runs `logstash --version` and returns a
  `packaging.version.Version`. It raises
  `lfverifier.version.VersionDetectionError` when no version is found.
- `Invocation` takes any number of configuration files or directories. It
  copies them into a private pipeline directory and drops their `input` and
  `output` sections, so only your filters are tested. Two files with the same
  name are rejected with `lfverifier.pipeline_config.PipelineConfigError`.
  For Logstash 5.0 and later, `jvm.options` and `log4j2.properties` are
  copied from `../config` or `../etc/logstash` next to the executable, or
  from `/etc/logstash`.
- Logstash runs with one worker and, from 2.2.0 on, a batch size of one, so
  events arrive in order. Its environment keeps only the variables you list,
  and `TZ` is set to `UTC` unless you keep `TZ`.
- `Process.wait` returns a `Result` with `success`, `events`, `log` (the
  Logstash log file) and `output` (its stdout and stderr). A non-zero exit
  status raises `subprocess.CalledProcessError`, and unparseable output raises
  `lfverifier.events.BadLogstashOutputError`. Both carry the partial result
  as `result`.

## Comparing and reporting

```python
import sys

from lfverifier.observer import ExecutionEnd, ExecutionStart, Property, SummaryObserver

prop = Property()
summary = SummaryObserver(prop, sys.stdout)
summary.start()

prop.update(ExecutionStart())
passed = case_set.compare(result.events, ["diff", "-u"], prop)
prop.update(ExecutionEnd())
summary.finalize()
```

`compare` first checks the event count. It then writes each expected and
actual event as pretty-printed JSON with sorted keys to a temporary file and
runs the diff command on the two files. Exit status 0 means the events match
and 1 means they differ. Any other status raises
`subprocess.CalledProcessError`. A `ComparisonResult` is published for every
event. Ignored fields are removed from the actual events in place.

`SummaryObserver` prints a checked or an empty box for each result. At
`ExecutionEnd` it prints an overall tally and one line per test case file.

## Many test case sets in one Logstash run

`ParallelProcess` feeds several sets through a single Logstash process, one
`CaseStream` per set. Each stream is a Unix socket that Logstash connects to,
and its events go to a file of their own:

```python
from lfverifier.parallel_process import CaseStream, ParallelProcess

streams = [CaseStream(cs.codec, cs.input_fields.clone(), 30.0) for cs in case_sets]
with Invocation(logstash, [], version, "filters/") as invocation:
    with ParallelProcess.create(invocation, streams, []) as process:
        process.start()
        for stream, cs in zip(streams, case_sets):
            for line in cs.input_lines:
                stream.write(line + "\n")
            stream.close()
        result = process.wait()   # result.events holds one list per stream
```

`CaseStream.write` raises `TimeoutError` if Logstash does not connect within
the timeout, given in seconds. The `path` field that the unix input adds is
removed from an event when it equals the stream's socket path.

## What it does not do

lfverifier is a library only. It has no command-line program and no
long-running daemon. You write the short script that loads test cases, runs
Logstash and reports the results, as shown above.