import math

import pytest

from assembler import assemble_pipeline, assemble_tomasulo
from hardware import OutOfBoundsError
from run_control import run_to_completion
from tomasulo_core import (
    FREE,
    Occupied,
    Pending,
    Ready,
    RSIndex,
    TomasuloSim,
    TomasuloStatistics,
)


def make_sim(text, regs=None, memory=(), **kwargs):
    sim = TomasuloSim(assemble_tomasulo(text), **kwargs)
    for name, value in (regs or {}).items():
        sim.regs.set(name, value)
    for addr, value in enumerate(memory):
        sim.memory.set(addr, value)
    return sim


def run(sim, limit=200):
    steps = 0
    while steps < limit:
        steps += 1
        if sim.step():
            break
    return steps


def test_single_add():
    sim = make_sim("ADD.D $f0, $f2, $f4", regs={"$f2": 1, "$f4": 2})
    for _ in range(7):
        sim.step()
    assert sim.regs.get("$f0") == 3
    assert sim.is_finished()
    timing = sim.timings[0]
    assert (timing.issue, timing.execute_start, timing.execute_end, timing.write_back) == (1, 2, 3, 4)


def test_timing_table_follows_status_callbacks():
    seen = []
    sim = make_sim("ADD.D $f0, $f2, $f4")
    sim.step(on_status=lambda instr, status: seen.append(status))
    assert seen == ["issued"]
    assert sim.timings[0].issue == 1
    assert not hasattr(sim.timings[0], "issued")


def test_program_slice_keeps_its_own_rows():
    prog = assemble_tomasulo("""
    ADD.D $f0, $f2, $f4
    ADD.D $f6, $f2, $f4
    SUB.D $f8, $f2, $f4
    """)[1:]
    sim = TomasuloSim(prog)
    sim.regs.set("$f2", 1)
    sim.regs.set("$f4", 2)
    assert sim.next_index() == 1
    assert run(sim) == 5
    first, second = sim.timings
    assert first.instruction.index == 1
    assert (first.issue, first.execute_start, first.execute_end, first.write_back) == (1, 2, 3, 4)
    assert (second.issue, second.execute_start, second.execute_end, second.write_back) == (2, 3, 4, 5)
    assert sim.regs.get("$f6") == 3
    assert sim.regs.get("$f8") == -1


def test_single_add_finishes_on_fourth_step():
    sim = make_sim("ADD.D $f0, $f2, $f4", regs={"$f2": 1, "$f4": 2})
    assert run(sim) == 4


def test_war_uses_value_captured_at_issue():
    sim = make_sim("""
    ADD.D $f0, $f2, $f4
    ADD.D $f2, $f4, $f6
    """, regs={"$f2": 1, "$f4": 2, "$f6": 3})
    assert run(sim) == 5
    assert sim.regs.get("$f0") == 3
    assert sim.regs.get("$f2") == 5


def test_waw_keeps_newest_value():
    sim = make_sim("""
    MUL.D $f0, $f2, $f4
    ADD.D $f0, $f2, $f4
    """, regs={"$f2": 1, "$f4": 2})
    run(sim)
    assert sim.is_finished()
    # o MUL termina depois, mas o Qi já aponta para o ADD
    assert sim.regs.get("$f0") == 3


def test_load_and_store():
    sim = make_sim("""
    L.D $f0, 0($0)
    L.D $f2, 1($0)
    ADD.D $f4, $f0, $f2
    S.D $f4, 0($0)
    """, memory=(1, 2))
    assert run(sim, limit=20) < 20
    assert sim.memory.get(0) == 3


def test_slide_example():
    sim = make_sim("""
    L.D $f6, 0($2)
    L.D $f2, 0($3)
    MUL.D $f0, $f2, $f4
    SUB.D $f8, $f6, $f2
    DIV.D $f10, $f0, $f6
    ADD.D $f6, $f8, $f2
    """, regs={"$2": 2, "$3": 3}, memory=(0, 0, 1, 2), sizes={"ADD": 3, "MUL": 2, "MEM": 3})
    assert run(sim) == 57


def test_cdb_arbitration():
    sim = make_sim("""
    MUL.D $f1, $f2, $f3
    ADD.D $f4, $f1, $f5
    SUB.D $f6, $f1, $f7
    """, regs={"$f2": 1, "$f3": 2, "$f5": 3, "$f7": 4})
    assert run(sim) == 16
    assert sim.regs.get("$f1") == 2
    assert sim.regs.get("$f4") == 5
    assert sim.regs.get("$f6") == -2
    add, sub = sim.timings[1], sim.timings[2]
    # terminam a execução juntos, mas só um usa o CDB por ciclo
    assert add.execute_end == sub.execute_end == 14
    assert (add.write_back, sub.write_back) == (15, 16)


def test_arithmetic_and_load():
    sim = make_sim("""
    ADD.D $f1, $f1, $f2
    ADD.D $f0, $f1, $f2
    ADD.D $f3, $f3, $f3
    L.D $f0, 0($0)
    """)
    assert run(sim) == 8


def test_load_releases_queue_at_start():
    sim = make_sim("""
    L.D $f0, 0($0)
    L.D $f2, 0($1)
    """)
    assert run(sim) == 5
    assert sim.timings[0].execute_start == 2
    assert sim.timings[1].execute_start == 3


def test_store_holds_queue_until_write():
    sim = make_sim("""
    S.D $f0, 0($0)
    L.D $f2, 0($1)
    """, regs={"$f0": 5, "$1": 1}, memory=(1, 7))
    assert run(sim) == 7
    assert sim.timings[0].write_back == 4
    assert sim.timings[1].execute_start == 5
    assert sim.memory.get(0) == 5
    assert sim.regs.get("$f2") == 7


def test_store_waits_for_data():
    sim = make_sim("""
    ADD.D $f0, $f2, $f4
    S.D $f0, 3($0)
    """, regs={"$f2": 1, "$f4": 2})
    assert run(sim) == 5
    assert sim.memory.get(3) == 3


def test_structural_stall():
    sim = make_sim("""
    ADD.D $f0, $f2, $f4
    ADD.D $f6, $f2, $f4
    """, regs={"$f2": 1, "$f4": 2}, sizes={"ADD": 1})
    sim.step()
    sim.step()
    assert any("Stall estrutural" in e for e in sim.events)
    assert run(sim) == 6
    assert sim.timings[1].issue == 5
    assert sim.regs.get("$f6") == 3


def test_issue_renames_destination():
    sim = make_sim("""
    MUL.D $f0, $f2, $f4
    ADD.D $f6, $f0, $f2
    """, regs={"$f2": 1, "$f4": 2})
    sim.step()
    sim.step()
    mul_tag, add_tag = RSIndex("MUL", 0), RSIndex("ADD", 0)
    assert sim.qi[32] == mul_tag
    assert sim.qi[38] == add_tag
    add = sim.station(add_tag)
    assert isinstance(add, Occupied)
    assert add.j == Pending(mul_tag)
    assert add.k == Ready(1)
    assert sim.registers_status()[32] == "MUL0"
    snap = sim.station_snapshot()
    assert snap["ADD"][0] == add
    assert snap["MEM"] == (FREE, FREE, FREE)


def test_destination_zero_is_not_tagged():
    sim = make_sim("L.D $0, 0($0)")
    sim.step()
    assert sim.qi[0] is None
    run(sim)
    assert sim.regs.get(0) == 0


def test_division_by_zero_is_ieee():
    sim = make_sim("DIV.D $f0, $f2, $f4", regs={"$f2": 1})
    run_to_completion(sim)
    assert sim.regs.get("$f0") == math.inf


def test_status_callback_order():
    seen = []
    sim = make_sim("ADD.D $f0, $f2, $f4")
    while not sim.step(on_status=lambda instr, status: seen.append(status)):
        pass
    assert seen == ["issued", "execute_start", "execute_end", "write_back"]


def test_reset_restores_initial_state():
    sim = make_sim("""
    L.D $f0, 0($0)
    ADD.D $f2, $f0, $f0
    S.D $f2, 1($0)
    """, memory=(4,))
    sim.step()
    sim.step()
    sim.reset()
    assert sim.pc == 0
    assert all(rs is FREE for unit in sim.stations for rs in sim.stations[unit])
    assert all(q is None for q in sim.qi)
    assert not sim.mem_queue
    assert sim.stats == TomasuloStatistics()
    assert all(t.issue is None for t in sim.timings)
    assert all(v == 0 for v in sim.memory.snapshot())


def test_load_out_of_bounds_is_fatal():
    sim = make_sim("L.D $f0, 40($0)")
    with pytest.raises(OutOfBoundsError):
        run(sim)


def test_invalid_configuration():
    with pytest.raises(ValueError):
        TomasuloSim([], sizes={"ADD": 0})
    with pytest.raises(ValueError):
        TomasuloSim([], latencies={"ADD.D": 0})
    with pytest.raises(ValueError):
        TomasuloSim(assemble_pipeline("add $1, $2, $3"))


def test_metrics_and_rows():
    sim = make_sim("ADD.D $f0, $f2, $f4", regs={"$f2": 1, "$f4": 2})
    sim.step()
    m = sim.metrics()
    assert m["Ciclos"] == 1
    assert m["RS_ADD ocupadas"] == 1
    rows = sim.station_rows()
    assert rows[0]["RS"] == "ADD0" and rows[0]["busy"]
    assert rows[0]["Vj/Qj"] == "1"
    run(sim)
    assert sim.stats.ipc == 0.25
