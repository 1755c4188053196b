# run_control.py
# -------------------------------------------------------------
# Controle de execução comum aos dois simuladores:
# passo único, rodar até o fim e rodar até um breakpoint
# -------------------------------------------------------------

from __future__ import annotations
from typing import Any, Optional

from hardware import SimulatorError

MAX_ITERATIONS = 10_000  # limite de segurança contra programas que não terminam


class DidNotTerminate(SimulatorError, RuntimeError):
    def __init__(self, cycles: int):
        super().__init__(f"Simulação não terminou após {cycles} ciclos")
        self.cycles = cycles


# Os simuladores expõem step(**callbacks), is_finished() e next_index()
def step_once(engine: Any, **callbacks) -> int:
    engine.step(**callbacks)
    return 1


def run_to_completion(engine: Any, max_iterations: int = MAX_ITERATIONS, **callbacks) -> int:
    cycles = 0
    while not engine.is_finished():
        if cycles >= max_iterations:
            raise DidNotTerminate(cycles)
        engine.step(**callbacks)
        cycles += 1
    return cycles


def run_to_breakpoint(engine: Any, index: Optional[int], max_iterations: int = MAX_ITERATIONS, **callbacks) -> int:
    cycles = 0
    while not engine.is_finished() and engine.next_index() != index:
        if cycles >= max_iterations:
            raise DidNotTerminate(cycles)
        engine.step(**callbacks)
        cycles += 1
    return cycles
