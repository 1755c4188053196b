# tomasulo_core.py
# -------------------------------------------------------------
# Núcleo do simulador didático do Algoritmo de Tomasulo
# (sem interface gráfica)
# -------------------------------------------------------------

from __future__ import annotations
from collections import deque
from dataclasses import dataclass, replace
from typing import Any, Callable, Deque, Dict, List, Optional, Sequence, Tuple, Union
import logging

from datapath import UNIT_ADD, UNIT_MEM, UNIT_MUL, UNITS, DecodedInstruction, alu
from hardware import Memory, Number, RegisterFile, register_name

logger = logging.getLogger(__name__)

# ==========================
# Parâmetros padrão
# ==========================
DEFAULT_LATENCIES = {
    "ADD.D": 2,
    "SUB.D": 2,
    "MUL.D": 10,
    "DIV.D": 40,
    "L.D": 2,
    "S.D": 2,
}

DEFAULT_SIZES = {
    UNIT_ADD: 3,
    UNIT_MUL: 2,
    UNIT_MEM: 3,
}

STATUS_ISSUED = "issued"
STATUS_EXEC_START = "execute_start"
STATUS_EXEC_END = "execute_end"
STATUS_WRITE_BACK = "write_back"

# status -> campo de InstructionTiming
TIMING_FIELDS = {
    STATUS_ISSUED: "issue",
    STATUS_EXEC_START: "execute_start",
    STATUS_EXEC_END: "execute_end",
    STATUS_WRITE_BACK: "write_back",
}


# ==========================
# Classes de dados
# ==========================
@dataclass(frozen=True)
class RSIndex:
    unit: str
    index: int

    def __str__(self):
        return f"{self.unit}{self.index}"


@dataclass(frozen=True)
class Ready:
    value: Number


@dataclass(frozen=True)
class Pending:
    tag: RSIndex


Operand = Union[Ready, Pending]


@dataclass(frozen=True)
class FreeStation:
    busy = False


@dataclass(frozen=True)
class Occupied:
    op: str
    j: Operand  # L.D/S.D: registrador base
    k: Operand  # S.D: dado a gravar
    dest: Optional[int]
    address: int  # deslocamento até o início; endereço efetivo depois
    instruction: DecodedInstruction  # só para exibição
    position: int  # posição na sequência do programa (linha de timings)
    remaining: Optional[int] = None  # None = execução não iniciada

    busy = True

    @property
    def ready(self) -> bool:
        return isinstance(self.j, Ready) and isinstance(self.k, Ready)


FREE = FreeStation()
Station = Union[FreeStation, Occupied]


@dataclass
class TomasuloStatistics:
    clock_cycles: int = 0
    finished_insts: int = 0

    @property
    def ipc(self) -> float:
        return self.finished_insts / self.clock_cycles if self.clock_cycles else 0.0


@dataclass
class InstructionTiming:
    instruction: DecodedInstruction
    issue: Optional[int] = None
    execute_start: Optional[int] = None
    execute_end: Optional[int] = None
    write_back: Optional[int] = None


@dataclass
class _CyclePlan:
    # ações calculadas a partir do estado anterior ao ciclo
    updates: List[Tuple[RSIndex, int, Optional[int]]]  # (tag, remaining, endereço efetivo)
    commit: Optional[Tuple[RSIndex, Number]] = None
    store: Optional[Tuple[RSIndex, int, Number]] = None
    pop_queue: bool = False


StatusCallback = Callable[[DecodedInstruction, str], Any]


def _show(operand: Operand) -> str:
    return str(operand.tag) if isinstance(operand, Pending) else str(operand.value)


# ==========================
# Núcleo do simulador
# ==========================
class TomasuloSim:
    def __init__(self, program: Sequence[DecodedInstruction], latencies: Optional[Dict[str, int]] = None,
                 sizes: Optional[Dict[str, int]] = None, regs: Optional[RegisterFile] = None,
                 memory: Optional[Memory] = None):
        self.program: List[DecodedInstruction] = []
        self._load_program(program)
        self.lat = {**DEFAULT_LATENCIES, **(latencies or {})}
        self.sizes = {**DEFAULT_SIZES, **(sizes or {})}
        for unit in UNITS:
            if self.sizes[unit] < 1:
                raise ValueError(f"Pool {unit} precisa de ao menos uma estação")
        for op, cycles in self.lat.items():
            if cycles < 1:
                raise ValueError(f"Latência inválida para {op}: {cycles}")
        self.regs = regs if regs is not None else RegisterFile()
        self.memory = memory if memory is not None else Memory()
        self.reset()

    def reset(self):
        self.pc = 0
        self.regs.reset()
        self.memory.reset()

        # Estações de reserva
        self.stations: Dict[str, List[Station]] = {unit: [FREE] * self.sizes[unit] for unit in UNITS}

        # Tabela de status dos registradores (reg -> tag ou None)
        self.qi: List[Optional[RSIndex]] = [None] * len(self.regs)

        # Fila de ordem da memória (índices de estações MEM, em ordem de programa)
        self.mem_queue: Deque[int] = deque()

        self.stats = TomasuloStatistics()
        self.timings = [InstructionTiming(instr) for instr in self.program]
        self.events: List[str] = []

    def _load_program(self, program: Sequence[DecodedInstruction]):
        for instr in program:
            if instr.ctrl.unit not in UNITS:
                raise ValueError(f"Instrução não suportada pelo Tomasulo: {instr}")
        self.program = list(program)

    def set_program(self, program: Sequence[DecodedInstruction]):
        self._load_program(program)
        self.reset()

    @property
    def cycle(self) -> int:
        return self.stats.clock_cycles

    def station(self, tag: RSIndex) -> Station:
        return self.stations[tag.unit][tag.index]

    # ----------- Busca de RS livre -----------
    def find_rs(self, unit: str) -> Optional[int]:
        for i, rs in enumerate(self.stations[unit]):
            if not rs.busy:
                return i
        return None

    # ----------- Leitura de operandos -----------
    def get_src(self, reg: Optional[int]) -> Operand:
        if reg is None:
            return Ready(0)
        tag = self.qi[reg]
        if tag is not None:
            return Pending(tag)
        # cópia do valor no momento do issue (WAR)
        return Ready(self.regs.get(reg))

    # ----------- Issue -----------
    def plan_issue(self) -> Optional[Tuple[RSIndex, Occupied]]:
        if self.pc >= len(self.program):
            return None
        instr = self.program[self.pc]
        unit = instr.ctrl.unit
        slot = self.find_rs(unit)
        if slot is None:
            self.events.append(f"Stall estrutural: sem estação {unit} para '{instr}'")
            return None

        j = self.get_src(instr.rs1)
        k = Ready(0) if instr.ctrl.mem_read else self.get_src(instr.rs2)
        dest = instr.rd if instr.ctrl.reg_write else None
        rs = Occupied(op=instr.op, j=j, k=k, dest=dest, address=instr.imm or 0, instruction=instr,
                     position=self.pc)
        return RSIndex(unit, slot), rs

    # ----------- Execução -----------
    def _tick_arithmetic(self, tag: RSIndex, rs: Occupied, plan: _CyclePlan):
        if rs.remaining is None:
            if rs.ready:
                plan.updates.append((tag, self.lat[rs.op] - 1, None))
            return
        if rs.remaining <= 0:
            if plan.commit is None:
                plan.commit = (tag, alu(rs.instruction.ctrl.alu_op, rs.j.value, rs.k.value))
            return
        plan.updates.append((tag, rs.remaining - 1, None))

    def _tick_load(self, tag: RSIndex, rs: Occupied, plan: _CyclePlan, at_head: bool):
        if rs.remaining is None:
            if at_head and isinstance(rs.j, Ready):
                # o load libera a fila assim que calcula o endereço
                plan.updates.append((tag, self.lat[rs.op] - 1, rs.j.value + rs.address))
                plan.pop_queue = True
            return
        if rs.remaining <= 0:
            if plan.commit is None:
                plan.commit = (tag, self.memory.get(rs.address))
            return
        plan.updates.append((tag, rs.remaining - 1, None))

    def _tick_store(self, tag: RSIndex, rs: Occupied, plan: _CyclePlan, at_head: bool):
        if rs.remaining is None:
            if at_head and isinstance(rs.j, Ready):
                plan.updates.append((tag, self.lat[rs.op] - 1, rs.j.value + rs.address))
            return
        if rs.remaining <= 0 and isinstance(rs.k, Ready):
            # o store só libera a fila quando grava na memória
            plan.store = (tag, self.memory.check(rs.address), rs.k.value)
            plan.pop_queue = True
            return
        plan.updates.append((tag, rs.remaining - 1, None))

    def plan_execute(self) -> _CyclePlan:
        plan = _CyclePlan(updates=[])
        head = self.mem_queue[0] if self.mem_queue else None
        # ordem de arbitragem do CDB: ADD, MUL, MEM; menor índice primeiro
        for unit in UNITS:
            for i, rs in enumerate(self.stations[unit]):
                if not rs.busy:
                    continue
                tag = RSIndex(unit, i)
                if unit != UNIT_MEM:
                    self._tick_arithmetic(tag, rs, plan)
                elif rs.instruction.ctrl.mem_read:
                    self._tick_load(tag, rs, plan, head == i)
                else:
                    self._tick_store(tag, rs, plan, head == i)
        return plan

    # ----------- Writeback (CDB) -----------
    def broadcast(self, tag: RSIndex, value: Number):
        rs = self.station(tag)
        self.stations[tag.unit][tag.index] = FREE

        # só escreve se nenhuma instrução mais nova renomeou o registrador
        if rs.dest is not None and self.qi[rs.dest] == tag:
            self.qi[rs.dest] = None
            self.regs.set(rs.dest, value)

        for unit in UNITS:
            table = self.stations[unit]
            for i, waiting in enumerate(table):
                if not waiting.busy:
                    continue
                j = Ready(value) if waiting.j == Pending(tag) else waiting.j
                k = Ready(value) if waiting.k == Pending(tag) else waiting.k
                if j is not waiting.j or k is not waiting.k:
                    table[i] = replace(waiting, j=j, k=k)
        self.stats.finished_insts += 1
        self.events.append(f"CDB: {tag} -> {value} ({rs.instruction})")

    # ----------- Um ciclo completo -----------
    def step(self, on_status: Optional[StatusCallback] = None) -> bool:
        self.events = []
        cycle = self.cycle + 1

        def notify(rs: Occupied, status: str):
            setattr(self.timings[rs.position], TIMING_FIELDS[status], cycle)
            if on_status:
                on_status(rs.instruction, status)

        issued = self.plan_issue()
        plan = self.plan_execute()

        # instala as ações: issue -> CDB -> contadores -> store -> fila
        if issued is not None:
            tag, rs = issued
            self.pc += 1
            self.stations[tag.unit][tag.index] = rs
            if rs.dest is not None and rs.dest != 0:
                self.qi[rs.dest] = tag
            if tag.unit == UNIT_MEM:
                self.mem_queue.append(tag.index)
            self.events.append(f"Issue: {rs.instruction} -> {tag}")
            notify(rs, STATUS_ISSUED)

        if plan.commit is not None:
            tag, value = plan.commit
            notify(self.station(tag), STATUS_WRITE_BACK)
            self.broadcast(tag, value)

        for tag, remaining, address in plan.updates:
            rs = self.station(tag)
            if rs.remaining is None:
                self.events.append(f"Exec: {rs.instruction} ({tag})")
                notify(rs, STATUS_EXEC_START)
            rs = replace(rs, remaining=remaining, address=rs.address if address is None else address)
            self.stations[tag.unit][tag.index] = rs
            if remaining == 0:
                notify(rs, STATUS_EXEC_END)

        if plan.store is not None:
            tag, address, value = plan.store
            rs = self.station(tag)
            self.memory.set(address, value)
            self.stations[tag.unit][tag.index] = FREE
            self.stats.finished_insts += 1
            self.events.append(f"Store: mem[{address}] <- {value} ({rs.instruction})")
            notify(rs, STATUS_WRITE_BACK)

        if plan.pop_queue:
            assert self.mem_queue, "fila de memória vazia"
            self.mem_queue.popleft()

        self.stats.clock_cycles += 1
        logger.debug("ciclo %d: %s", cycle, self.events)
        return self.is_finished()

    def is_finished(self) -> bool:
        return (
            self.pc >= len(self.program)
            and all(not rs.busy for unit in UNITS for rs in self.stations[unit])
            and all(q is None for q in self.qi)
        )

    def next_index(self) -> Optional[int]:
        if self.pc >= len(self.program):
            return None
        return self.program[self.pc].index

    # ----------- Leitura de estado -----------
    def station_snapshot(self) -> Dict[str, Tuple[Station, ...]]:
        return {unit: tuple(self.stations[unit]) for unit in UNITS}

    def registers_status(self) -> List[str]:
        return ["" if q is None else str(q) for q in self.qi]

    def station_rows(self) -> List[Dict[str, Any]]:
        rows = []
        for unit in UNITS:
            for i, rs in enumerate(self.stations[unit]):
                row: Dict[str, Any] = {"RS": f"{unit}{i}", "busy": rs.busy}
                if rs.busy:
                    row.update({
                        "op": rs.op,
                        "Vj/Qj": _show(rs.j),
                        "Vk/Qk": _show(rs.k),
                        "dest": "" if rs.dest is None else register_name(rs.dest),
                        "A": rs.address,
                        "restante": "" if rs.remaining is None else rs.remaining,
                        "instr": str(rs.instruction),
                    })
                rows.append(row)
        return rows

    # ----------- Métricas -----------
    def metrics(self) -> Dict[str, Any]:
        s = self.stats
        occupancy = {f"RS_{unit} ocupadas": sum(1 for r in self.stations[unit] if r.busy) for unit in UNITS}
        return {
            "Ciclos": s.clock_cycles,
            "Instruções concluídas": s.finished_insts,
            "IPC": round(s.ipc, 3),
            **occupancy,
            "Fila de memória": list(self.mem_queue),
        }
