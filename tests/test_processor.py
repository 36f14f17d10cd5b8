import threading
import time
from dataclasses import dataclass
from datetime import timedelta
from typing import Annotated

import pytest

from gorch.context import Context
from gorch.errors import (
    GorchError,
    NotWrapOperatorError,
    OperatorPanicError,
    OperatorTimeoutError,
    PrepareError,
    RoutineError,
)
from gorch.injection import Inject
from gorch.processor import (
    Concurrent,
    Fragment,
    Go,
    OnFinish,
    OperatorCall,
    Serial,
    Skip,
    Starter,
    Switch,
    SwitchCase,
    Unfold,
    Wait,
    Wrap,
    recover_panic,
)
from gorch.registry import clear_operators, register_operator
from gorch.state import OperatorStates


def ms(n):
    return timedelta(milliseconds=n)


@dataclass
class BeChangeValue:
    val: int = 0


class NothingOp:
    def execute(self, ctx):
        return None


class SleepOp:
    def execute(self, ctx):
        duration = ctx.arg("sleep").as_duration()
        if duration <= timedelta(0):
            raise GorchError("sleep operator must get sleep argument")
        time.sleep(duration.total_seconds())


class PanicOp:
    def execute(self, ctx):
        raise RuntimeError("panic from PanicOp")


class ChangeValueOp:
    value: Annotated[BeChangeValue, Inject()]

    def execute(self, ctx):
        if not ctx.has("val"):
            raise GorchError("ChangeValueOP operator must get val argument")
        if ctx.has("if") and ctx.arg("if").as_int() != self.value.val:
            raise GorchError("ChangeValueOP operator if condition not equal")
        self.value.val = ctx.arg("val").as_int()


class ContextInterrupt:
    def execute(self, ctx):
        duration = ctx.arg("sleep").as_duration()
        if duration <= timedelta(0):
            raise GorchError("ContextInterrupt operator must get sleep argument")
        interrupt = ctx.interrupt

        def later():
            time.sleep(duration.total_seconds())
            interrupt.exit(GorchError("exit by ContextInterrupt"))

        threading.Thread(target=later, daemon=True).start()


operator_states = OperatorStates("TestOperatorState")
fatal1 = operator_states.fatal(1, "fatal1")
fatal2_cause = operator_states.fatal_cause(2, "fatal2")
info3 = operator_states.info(3, "info3")
info4_cause = operator_states.info_cause(4, "info4")


class StateOp:
    def execute(self, ctx):
        if not ctx.has("status"):
            raise GorchError("TestOperatorState operator must get status argument")
        status = ctx.arg("status").as_int()
        if status == 1:
            raise fatal1
        if status == 2:
            raise fatal2_cause(GorchError("fatal2WithErr"))
        if status == 3:
            raise info3
        if status == 4:
            raise info4_cause(GorchError("info4WithErr"))


class GoOperator:
    value: Annotated[BeChangeValue, Inject()]

    def execute(self, ctx):
        if not ctx.has("sleep"):
            raise GorchError("GoOperator operator must get sleep argument")
        if not ctx.has("val"):
            raise GorchError("GoOperator operator must get val argument")
        time.sleep(ctx.arg("sleep").as_duration().total_seconds())
        self.value.val = ctx.arg("val").as_int()


class SwitchOp:
    def execute(self, ctx):
        if not ctx.has("case"):
            raise GorchError("SwitchOp operator must get case argument")
        ctx.switch(*ctx.arg("case").str_list())


class WrapAndChangeValOp:
    value: Annotated[BeChangeValue, Inject()]

    def execute(self, ctx):
        if not ctx.has("val"):
            raise GorchError("WrapAndChangeValOp operator must get val argument")
        self.value.val = ctx.arg("val").as_int()
        if ctx.has("noNext") and ctx.arg("noNext").as_bool():
            return None
        return ctx.next()


class SkipOp:
    def execute(self, ctx):
        if not ctx.has("skip"):
            raise GorchError("SkipOp operator must get skip argument")
        if ctx.arg("skip").as_bool():
            ctx.skip_serial()


class AppendOp:
    items: Annotated[list, Inject()]

    def execute(self, ctx):
        self.items.append(ctx.arg("item").as_str())


@pytest.fixture(autouse=True)
def operators():
    clear_operators()
    for seq, (name, cls) in enumerate(
        [
            ("SleepOp", SleepOp),
            ("PanicOp", PanicOp),
            ("ChangeValueOP", ChangeValueOp),
            ("NothingOp", NothingOp),
            ("ContextInterrupt", ContextInterrupt),
            ("TestOperatorState", StateOp),
            ("GoOperator", GoOperator),
            ("SwitchOp", SwitchOp),
            ("WrapAndChangeValOp", WrapAndChangeValOp),
            ("SkipOp", SkipOp),
            ("AppendOp", AppendOp),
        ],
        start=1,
    ):
        register_operator(name, cls, seq)
    yield
    clear_operators()


def run(starter, *instances):
    starter.prepare()
    ctx = Context()
    for instance in instances:
        ctx.register(instance)
    try:
        starter.execute(ctx)
    except GorchError as exc:
        ctx.exit(exc)
    else:
        ctx.exit(None)
    return ctx.interrupt.error()


def op(name, ignore_error=False, waits=(), **args):
    return OperatorCall(name, args, ignore_error=ignore_error, waits=waits)


def change(val, **extra):
    return op("ChangeValueOP", val=val, **extra)


def switch_cases():
    return [
        SwitchCase("changeValueTo1", change(1)),
        SwitchCase("changeValueTo2", change(2)),
        SwitchCase("changeValueTo3", change(3)),
    ]


# operators


def test_normal():
    value = BeChangeValue()
    assert run(Starter(change(2)), value) is None
    assert value.val == 2


def test_operator_timeout():
    value = BeChangeValue()
    res = run(Starter(op("SleepOp", sleep=ms(50), timeout=ms(1))), value)
    assert res == OperatorTimeoutError()
    assert value.val == 0


def test_operator_timeout_ignore():
    value = BeChangeValue()
    body = Serial([op("SleepOp", ignore_error=True, sleep=ms(50), timeout=ms(1)), change(2)])
    assert run(Starter(body), value) is None
    assert value.val == 2


def test_operator_timeout_success():
    value = BeChangeValue()
    body = Serial([op("SleepOp", sleep=ms(10), timeout=20), change(2)])
    assert run(Starter(body), value) is None
    assert value.val == 2


def test_operator_timeout_context_interrupt():
    value = BeChangeValue()
    body = Serial(
        [
            op("ContextInterrupt", sleep=ms(2)),
            op("SleepOp", sleep=ms(50), timeout=ms(50)),
            change(2),
        ]
    )
    assert run(Starter(body), value) == GorchError("exit by ContextInterrupt")
    assert value.val == 0


def test_operator_panic():
    value = BeChangeValue()
    res = run(Starter(op("PanicOp")), value)
    assert res == OperatorPanicError("PanicOp")
    assert str(res) == "operator PanicOp execute panic"
    assert value.val == 0


def test_operator_status_fatal():
    value = BeChangeValue()
    res = run(Starter(Serial([op("TestOperatorState", status=1), change(2)])), value)
    assert res == fatal1
    assert value.val == 0


def test_operator_status_fatal_ignore():
    value = BeChangeValue()
    body = Serial([op("TestOperatorState", ignore_error=True, status=1), change(2)])
    assert run(Starter(body), value) is None
    assert value.val == 2


def test_operator_status_fatal_with_msg():
    value = BeChangeValue()
    res = run(Starter(Serial([op("TestOperatorState", status=2), change(2)])), value)
    assert res == fatal2_cause(GorchError("fatal2WithErr"))
    assert str(res) == "fatal2{fatal2WithErr}"
    assert value.val == 0


def test_operator_status_fatal_with_msg_ignore():
    value = BeChangeValue()
    body = Serial([op("TestOperatorState", ignore_error=True, status=2), change(2)])
    assert run(Starter(body), value) is None
    assert value.val == 2


def test_operator_status_info():
    value = BeChangeValue()
    assert run(Starter(Serial([op("TestOperatorState", status=3), change(2)])), value) is None
    assert value.val == 2


def test_operator_missing_instance_fails():
    res = run(Starter(change(2)))
    assert isinstance(res, GorchError)
    assert "BeChangeValue not found" in str(res)


def test_next_outside_wrap():
    value = BeChangeValue()
    res = run(Starter(op("WrapAndChangeValOp", val=3)), value)
    assert res == NotWrapOperatorError()
    assert value.val == 3


# prepare


def test_prepare_unregistered_operator():
    with pytest.raises(PrepareError, match="operator Missing not register"):
        op("Missing").prepare()


def test_prepare_serial_wraps_error():
    with pytest.raises(PrepareError, match="prepare serial processor error"):
        Serial([change(1), op("Missing")]).prepare()


def test_prepare_switch_case_wraps_error():
    switch = Switch(op("SwitchOp", case=["a"]), [SwitchCase("a", op("Missing"))])
    with pytest.raises(PrepareError, match="prepare switch case processor error"):
        switch.prepare()


def test_class_prepare_runs_once():
    calls = []

    class Prepared:
        @classmethod
        def prepare(cls):
            calls.append(cls)

        def execute(self, ctx):
            return None

    register_operator("Prepared", Prepared, 100)
    op("Prepared").prepare()
    op("Prepared").prepare()
    assert calls == [Prepared]


# skip


def test_skip():
    value = BeChangeValue()
    body = Serial([Skip(op("SkipOp", skip=True)), change(2)])
    assert run(Starter(body), value) is None
    assert value.val == 0


def test_no_skip():
    value = BeChangeValue()
    body = Serial([Skip(op("SkipOp", skip=False)), change(2)])
    assert run(Starter(body), value) is None
    assert value.val == 2


# switch


def test_switch_no_case_error():
    value = BeChangeValue()
    res = run(Starter(Switch(op("SwitchOp", case=[]), switch_cases())), value)
    assert str(res) == 'switch "SwitchOp" no matching switch case found'
    assert value.val == 0


def test_switch_change_to_1():
    value = BeChangeValue()
    res = run(Starter(Switch(op("SwitchOp", case=["changeValueTo1"]), switch_cases())), value)
    assert res is None
    assert value.val == 1


def test_switch_two_cases():
    value = BeChangeValue()
    switch = Switch(op("SwitchOp", case=["changeValueTo2", "changeValueTo1"]), switch_cases())
    assert run(Starter(switch), value) is None
    assert value.val in (1, 2)


def test_switch_directive_not_switch_op():
    value = BeChangeValue()
    res = run(Starter(Switch(op("NothingOp"), switch_cases())), value)
    assert str(res) == 'switch "NothingOp" no matching switch case found'
    assert value.val == 0


def test_switch_serial_change_to_1():
    value = BeChangeValue()
    cases = [
        SwitchCase("changeValueTo1", Serial([change(2), change(1)])),
        SwitchCase("changeValueTo2", change(2)),
        SwitchCase("changeValueTo3", change(3)),
    ]
    res = run(Starter(Switch(op("SwitchOp", case=["changeValueTo1"]), cases)), value)
    assert res is None
    assert value.val == 1


def test_switch_duplicate_case():
    value = BeChangeValue()
    selector = op("SwitchOp", case=["changeValueTo1", "changeValueTo1"])
    res = run(Starter(Switch(selector, switch_cases())), value)
    assert str(res) == 'duplicate switch case "changeValueTo1"'
    assert value.val == 0


def test_switch_not_found_case():
    value = BeChangeValue()
    res = run(Starter(Switch(op("SwitchOp", case=["111"]), switch_cases())), value)
    assert str(res) == 'not found switch case "111"'
    assert value.val == 0


# wrap


def _wrap_switch(wrapper):
    fragment = Fragment("fragment", Wrap([wrapper], change(20, **{"if": 1})))
    return Switch(
        op("SwitchOp", case=["changeValueTo1"]),
        [
            SwitchCase("changeValueTo1", Unfold(fragment)),
            SwitchCase("changeValueTo2", change(2)),
        ],
    )


def test_wrap_next_change_value():
    value = BeChangeValue()
    assert run(Starter(_wrap_switch(op("WrapAndChangeValOp", val=1))), value) is None
    assert value.val == 20


def test_wrap_no_next():
    value = BeChangeValue()
    wrapper = op("WrapAndChangeValOp", noNext=True, val=11)
    assert run(Starter(_wrap_switch(wrapper)), value) is None
    assert value.val == 11


# go and wait


def test_go_wait_success():
    value = BeChangeValue()
    body = Serial(
        [
            Go(op("GoOperator", sleep=ms(4), val=10), "goOperator"),
            op("SleepOp", sleep=ms(2)),
            op("NothingOp", waits=[Wait("goOperator", timeout=ms(200))]),
        ]
    )
    assert run(Starter(body), value) is None
    assert value.val == 10


def test_go_wait_timeout():
    value = BeChangeValue()
    body = Serial(
        [
            Go(op("GoOperator", sleep=ms(40), val=10), "goOperator"),
            op("SleepOp", sleep=ms(2)),
            op("NothingOp", waits=[Wait("goOperator", timeout=ms(5))]),
        ]
    )
    res = run(Starter(body), value)
    assert str(res) == 'wait routine "goOperator" timeout'
    assert value.val == 10


def test_go_wait_execute_timeout():
    value = BeChangeValue()
    body = Serial(
        [
            Go(op("GoOperator", sleep=ms(50), val=10), "goOperator"),
            op("SleepOp", sleep=ms(10)),
            op("NothingOp", waits=[Wait("goOperator", total_timeout=ms(5))]),
        ]
    )
    res = run(Starter(body), value)
    assert str(res) == 'routine "goOperator" execute timeout'
    assert value.val == 10


def test_go_wait_execute_success():
    value = BeChangeValue()
    body = Serial(
        [
            Go(op("GoOperator", sleep=ms(50), val=10), "goOperator"),
            op("SleepOp", sleep=ms(10)),
            op("NothingOp", waits=[Wait("goOperator", total_timeout=ms(500))]),
        ]
    )
    assert run(Starter(body), value) is None
    assert value.val == 10


def test_wait_not_started():
    with pytest.raises(RoutineError, match='routine "nobody" not started'):
        Wait("nobody", timeout=ms(5)).execute(Context())


def test_wait_not_started_ignored():
    ctx = Context()
    assert Wait("nobody", timeout=ms(5), ignore_error=True).execute(ctx) is None
    assert not ctx.exited()


# concurrent and on finish


def test_concurrent_runs_all_branches():
    items = []
    body = Concurrent([op("AppendOp", item=name) for name in ("a", "b", "c")])
    assert run(Starter(body), items) is None
    assert sorted(items) == ["a", "b", "c"]


def test_on_finish_runs_after_body():
    value = BeChangeValue()
    assert run(Starter(change(2), OnFinish(change(7))), value) is None
    assert value.val == 7


def test_on_finish_runs_after_error():
    value = BeChangeValue()
    res = run(Starter(op("PanicOp"), change(7, **{"if": 0})), value)
    assert res == OperatorPanicError("PanicOp")
    assert value.val == 0


# recover


def test_recover_panic_fields():
    try:
        raise RuntimeError("boom")
    except RuntimeError as exc:
        fields = recover_panic(exc)
    assert fields["executePanic"] == "boom"
    assert "RuntimeError" in fields["stack"]
    assert "\n" not in fields["stack"]
    assert "\\n" in fields["stack"]