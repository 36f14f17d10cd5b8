# gorch

`gorch` runs small units of work, called *operators*, as a graph. A graph can
run operators one after another, side by side, in the background, behind a
switch, or wrapped by other operators. Operators share values through a
per-run container, so one operator's output becomes another's input without
either knowing about the other.

## Installation

```
pip install gorch
```

Python 3.10 or later is required. The package has no runtime dependencies.

## Operators

An operator is a class that can be built with no arguments and has an
`execute(self, ctx)` method (`gorch.registry.Operator` describes this shape).
Register each operator class under a unique name and a unique sequence
number:

```python
from typing import Annotated

from gorch.errors import GorchError
from gorch.injection import Extract, Inject
from gorch.registry import register_operator


class Counter:
    def __init__(self):
        self.value = 0


class Bump:
    counter: Annotated[Counter, Inject()]
    total: Annotated[int | None, Extract(replace=True)] = None

    def execute(self, ctx):
        if not ctx.has("by"):
            raise GorchError("Bump needs a by argument")
        self.counter.value += ctx.arg("by").as_int()
        self.total = self.counter.value


register_operator("Bump", Bump, 1)
```

`register_operator` raises `gorch.errors.RegistrationError` when the name or
the sequence number is already taken; `get_operator_factory(name)` looks a
registration up and `clear_operators()` forgets them all.

Operators report failure by raising `gorch.errors.GorchError` (or a status,
see below). Any other exception is treated as a crash and reported as
`gorch.errors.OperatorPanicError`.

If an operator class defines `prepare` as a `classmethod` or `staticmethod`,
it is called once per class when the first call of that operator is
prepared.

### Arguments

Inside `execute`, `ctx.arg(key)` returns a `gorch.args.ArgValue` with typed
accessors: `as_int()`, `as_bool()`, `as_str()`, `as_duration()` (each taking
an optional index) and the list forms `int_list()`, `bool_list()`,
`str_list()`, `duration_list()`. A missing argument, one of another type, or
an index past the end reads as the type's empty value (`0`, `False`, `""`,
`timedelta(0)`, an empty list) rather than raising. Use `ctx.has(key)` to
tell a missing argument from an empty one.

Arguments are given as plain Python values: `int`, `bool`, `str`,
`datetime.timedelta`, or a list of one of those types. `gorch.args.arg_value`
and `Args.from_mapping` convert them and raise `TypeError` for anything else
or for a list that mixes types.

### Sharing values

Each run has one `gorch.container.Container`, shared by every operator in it:

* `ctx.register(value, replace=False, key=None)` stores a value, keyed by its
  type unless a key is given; storing a second value under the same key
  without `replace` raises `RegistrationError`.
* `ctx.mutable(key)` reads a value back and raises
  `gorch.errors.InstanceNotFoundError` when there is none.

Operators can also declare what they need and what they produce with
`Annotated` class annotations carrying `gorch.injection.Inject` or
`gorch.injection.Extract`. The key is the annotated type with any `None`
removed from a union, or the marker's own `key`. Before an operator runs, its
`Inject` fields are filled from the container; a missing value raises unless
the marker is `optional`. After it runs, even when it raised, its `Extract`
fields are written back; a field still `None` is skipped unless the marker is
`optional`, and an existing value is only overwritten with `replace=True`.
Annotations must be real objects, not strings, so modules defining operators
should not use `from __future__ import annotations`.

Values in the container that are `gorch.container.Releasable` (have a
`release()` method) are released when the run ends; an exception from
`release()` is logged and ignored.

### Controlling the graph from an operator

* `ctx.skip_serial()`: inside a `Skip` step, stop the rest of the enclosing
  serial sequence.
* `ctx.switch("case-a", "case-b")`: inside a `Switch` step, choose which cases
  run next; several cases run concurrently. Unknown or repeated case names
  raise `gorch.errors.SwitchCaseError`. Calling it elsewhere raises
  `NotSwitchOperatorError`.
* `ctx.next()`: inside a `Wrap` step, run whatever is wrapped. Calling it
  elsewhere raises `NotWrapOperatorError`.
* `ctx.exit(err)`: stop the whole run; `ctx.exited()` tells whether that has
  happened. The first call wins.
* `ctx.get_routine(name)`: the `gorch.routine.Routine` started by a `Go` step
  under that name; `block_cost()` gives the time spent waiting for it.

### Status codes

`gorch.state.OperatorStates` creates named `State` values for an operator.
`fatal(code, msg)` produces a status that stops the run when raised;
`info(code, msg)` produces one that is only logged. `fatal_cause` and
`info_cause` return a function that takes an underlying error and gives the
status wrapping it (`str()` shows `msg{error}`). Each code may be defined
once per `OperatorStates`; defining it again raises `ValueError`.

```python
from gorch.state import OperatorStates

states = OperatorStates("Bump")
NO_COUNTER = states.fatal(1, "no counter")
SLOW_PATH = states.info(2, "took the slow path")
```

## Building a graph

The steps of a graph live in `gorch.processor`:

| Step | What it does |
| --- | --- |
| `OperatorCall(name, args, ignore_error=..., waits=...)` | runs one registered operator |
| `Serial(steps)` | runs steps in order until the run is stopped |
| `Concurrent(branches)` | runs steps side by side and waits for all |
| `Skip(operator_call)` | runs an operator that may end the enclosing serial |
| `Go(body, name)` / `Wait(name, timeout, total_timeout, ...)` | starts a named background routine / waits for it |
| `Switch(operator_call, cases)` / `SwitchCase(name, body)` | runs an operator that chooses cases, then runs them |
| `Wrap(wrappers, body)` | runs operator calls around an inner step |
| `Fragment(name, body)` / `Unfold(fragment)` | a reusable sub-graph and its use |
| `Starter(body, on_finish)` | the entry point of a graph, with an optional `OnFinish` step |

Every step is prepared once with `prepare()` and can then be executed many
times. Preparing an `OperatorCall` whose operator was never registered raises
`gorch.errors.PrepareError`.

An operator that fails stops the run unless its call has `ignore_error=True`.
A `timeout` argument (a `timedelta`) on an operator call limits that call and
raises `gorch.errors.OperatorTimeoutError` when it is exceeded. A `Wait`
counts its `timeout` from when it starts waiting, or its `total_timeout` from
when the routine started; a zero timeout only checks without blocking.

## Running

`gorch.engine.Engine` prepares starters given by name. `start(key)` returns an
`Executor` for one run, or `None` if there is no such starter:

```python
from gorch.engine import Engine
from gorch.processor import OperatorCall, Serial, Starter

starter = Starter(Serial([OperatorCall("Bump", {"by": 2}), OperatorCall("Bump", {"by": 3})]))
engine = Engine({"main": starter})

counter = Counter()
executor = engine.start("main")
executor.inject(counter)      # values visible to every operator, keyed by type
executor.set_timeout(2.0)     # the whole run; the default is 8 seconds
executor.execute()
assert counter.value == 5
```

`execute(cancel=None)` raises the error that stopped the run, or
`gorch.errors.EngineTimeoutError` when the run takes longer than its timeout.
`cancel` may be any object with `is_set()`, such as a `threading.Event`; once
it is set, the run is stopped with `concurrent.futures.CancelledError`. The
run waits for all background routines to finish before it returns. An
executor can be used once.

Background work runs on new daemon threads. `gorch.registry.set_goroutine_pool`
takes anything with a `submit` method, such as a
`concurrent.futures.ThreadPoolExecutor`, to run it there instead; `None`
restores threads.

## What the package does not do

Graphs are built in Python from the `gorch.processor` classes. There is no
text language for describing graphs, no loader for graph files, no
command-line tool and no code generation. Per-operator timings are not
recorded; the engine only writes log messages through the standard `logging`
module (logger `gorch`).

## Errors

All errors raised by the package derive from `gorch.errors.GorchError`,
except `TypeError` and `ValueError` for misuse such as bad argument values or
a duplicate status code.