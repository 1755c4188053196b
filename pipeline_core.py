# pipeline_core.py
# -------------------------------------------------------------
# Núcleo do simulador didático do pipeline de 5 estágios
# (IF / ID / EX / MEM / WB), com detecção de hazards, forwarding
# opcional e desvio com predição "não tomado"
# -------------------------------------------------------------

from __future__ import annotations
from dataclasses import dataclass, field, replace
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple
import logging

from datapath import DecodedInstruction, WbSel, branch_taken, bubble, execute
from hardware import Memory, Number, OutOfBoundsError, RegisterFile
from run_control import MAX_ITERATIONS, run_to_breakpoint, run_to_completion, step_once

logger = logging.getLogger(__name__)

IMEM_LIMIT = 1000  # endereços válidos de instrução: 0..999
STAGES = ("IF", "ID", "EX", "MEM", "WB")


# ==========================
# Latches do pipeline
# ==========================
@dataclass(frozen=True)
class IfId:
    inst: DecodedInstruction = field(default_factory=bubble)
    pc: int = 0


@dataclass(frozen=True)
class IdEx:
    inst: DecodedInstruction = field(default_factory=bubble)
    pc: int = 0
    reg1: Number = 0
    reg2: Number = 0
    imm: int = 0


@dataclass(frozen=True)
class ExMem:
    inst: DecodedInstruction = field(default_factory=bubble)
    alu_out: Number = 0
    write_data: Number = 0


@dataclass(frozen=True)
class MemWb:
    inst: DecodedInstruction = field(default_factory=bubble)
    mem: Number = 0
    alu: Number = 0


@dataclass(frozen=True)
class Latches:
    if_id: IfId = field(default_factory=IfId)
    id_ex: IdEx = field(default_factory=IdEx)
    ex_mem: ExMem = field(default_factory=ExMem)
    mem_wb: MemWb = field(default_factory=MemWb)


# ==========================
# Estatísticas e eventos
# ==========================
@dataclass
class PipelineStatistics:
    clock_cycles: int = 0
    finished_insts: int = 0
    data_hazard_stalls: int = 0
    predict_fails: int = 0
    forward_count: int = 0

    @property
    def cpi(self) -> float:
        return self.clock_cycles / self.finished_insts if self.finished_insts else 0.0


@dataclass(frozen=True)
class HazardEvent:
    cycle: int
    kind: str  # "data" | "branch"
    instruction: DecodedInstruction
    description: str


@dataclass(frozen=True)
class ForwardEvent:
    cycle: int
    source: DecodedInstruction
    target: DecodedInstruction
    register: int
    value: Number


HazardCallback = Callable[[HazardEvent], Any]
ForwardCallback = Callable[[ForwardEvent], Any]


def _collides(src: Optional[int], producer: DecodedInstruction) -> bool:
    # $0 nunca gera conflito
    return src is not None and src != 0 and producer.writes_register and producer.rd == src


# ==========================
# Núcleo do simulador
# ==========================
class PipelineSim:
    def __init__(self, program: Sequence[DecodedInstruction], forwarding: bool = False,
                 regs: Optional[RegisterFile] = None, memory: Optional[Memory] = None):
        self.program: List[DecodedInstruction] = list(program)
        self.forwarding = forwarding
        self.regs = regs if regs is not None else RegisterFile()
        self.memory = memory if memory is not None else Memory()
        self.reset()

    def reset(self):
        # pc anda de 1 em 1: é o índice da próxima instrução a buscar
        self.pc = 0
        self.regs.reset()
        self.memory.reset()
        self.latches = Latches()
        self.stats = PipelineStatistics()
        self.history: List[Dict[str, Optional[int]]] = []
        self.events: List[str] = []

    def set_forwarding(self, forwarding: bool):
        self.forwarding = forwarding
        self.reset()

    def set_program(self, program: Sequence[DecodedInstruction]):
        self.program = list(program)
        self.reset()

    # ----------- Busca na memória de instruções -----------
    def instruction_at(self, index: int) -> DecodedInstruction:
        if index < 0 or index >= IMEM_LIMIT:
            raise OutOfBoundsError(f"Índice de instrução fora dos limites: {index}")
        if index >= len(self.program):
            return bubble()
        return self.program[index]

    def next_index(self) -> Optional[int]:
        return self.instruction_at(self.pc).index

    def is_finished(self) -> bool:
        lat = self.latches
        return (
            lat.if_id.inst.is_bubble
            and lat.id_ex.inst.is_bubble
            and lat.ex_mem.inst.is_bubble
            and lat.mem_wb.inst.is_bubble
            and self.instruction_at(self.pc).is_bubble
        )

    # ----------- Estágios -----------
    def fetch_stage(self, pc: int) -> IfId:
        return IfId(inst=self.instruction_at(pc), pc=pc)

    def decode_stage(self, if_id: IfId) -> IdEx:
        inst = if_id.inst
        return IdEx(
            inst=inst,
            pc=if_id.pc,
            reg1=self.regs.get(inst.rs1 or 0),
            reg2=self.regs.get(inst.rs2 or 0),
            imm=inst.imm or 0,
        )

    def alu_stage(self, id_ex: IdEx) -> Tuple[ExMem, bool]:
        inst = id_ex.inst
        out = execute(inst.ctrl, id_ex.reg1, id_ex.reg2, id_ex.pc, id_ex.imm)
        taken = branch_taken(inst.ctrl.branch, id_ex.reg1, id_ex.reg2)
        return ExMem(inst=inst, alu_out=out, write_data=id_ex.reg2), taken

    def mem_stage(self, ex_mem: ExMem) -> Tuple[MemWb, Optional[Tuple[int, Number]]]:
        inst = ex_mem.inst
        logger.debug("MEM: %s addr=%s data=%s", inst, ex_mem.alu_out, ex_mem.write_data)
        store = None
        mem_val: Number = 0
        if inst.ctrl.mem_read:
            mem_val = self.memory.get(ex_mem.alu_out)
        elif inst.ctrl.mem_write:
            store = (self.memory.check(ex_mem.alu_out), ex_mem.write_data)
        return MemWb(inst=inst, mem=mem_val, alu=ex_mem.alu_out), store

    @staticmethod
    def writeback_value(mem_wb: MemWb) -> Number:
        return mem_wb.mem if mem_wb.inst.ctrl.wb_sel == WbSel.MEM else mem_wb.alu

    # ----------- Hazards -----------
    def data_hazard(self, new: Latches) -> bool:
        inst = new.id_ex.inst
        producers = (new.ex_mem.inst, new.mem_wb.inst)
        return any(_collides(src, p) for src in (inst.rs1, inst.rs2) for p in producers)

    def _forward_for(self, src: Optional[int], new: Latches) -> Tuple[bool, Optional[Tuple[DecodedInstruction, Number]]]:
        # retorna (precisa_stall, (fonte, valor) ou None)
        ex_mem, mem_wb = new.ex_mem, new.mem_wb
        if _collides(src, ex_mem.inst):
            if ex_mem.inst.is_load:
                return True, None  # load-use: o dado só existe depois do MEM
            return False, (ex_mem.inst, ex_mem.alu_out)
        if _collides(src, mem_wb.inst):
            return False, (mem_wb.inst, self.writeback_value(mem_wb))
        return False, None

    def try_forward(self, new: Latches, cycle: int, on_forward: Optional[ForwardCallback]) -> Tuple[bool, Latches]:
        id_ex = new.id_ex
        inst = id_ex.inst
        stall1, fwd1 = self._forward_for(inst.rs1, new)
        stall2, fwd2 = self._forward_for(inst.rs2, new)
        if stall1 or stall2:
            return True, new

        for reg_field, src, fwd in (("reg1", inst.rs1, fwd1), ("reg2", inst.rs2, fwd2)):
            if fwd is None:
                continue
            source, value = fwd
            id_ex = replace(id_ex, **{reg_field: value})
            self.stats.forward_count += 1
            self.events.append(f"Forward: {value} de '{source}' para '{inst}' (${src})")
            if on_forward:
                on_forward(ForwardEvent(cycle=cycle, source=source, target=inst, register=src, value=value))
        return False, replace(new, id_ex=id_ex)

    # ----------- Um ciclo completo -----------
    def step(self, on_hazard: Optional[HazardCallback] = None, on_forward: Optional[ForwardCallback] = None):
        old = self.latches
        cycle = self.stats.clock_cycles + 1
        self.events = []

        # todos os estágios leem o estado anterior ao ciclo
        if_id = self.fetch_stage(self.pc)
        mem_wb, store = self.mem_stage(old.ex_mem)
        ex_mem, should_branch = self.alu_stage(old.id_ex)

        # WB escreve na 1ª metade do ciclo, ID lê na 2ª
        wb = old.mem_wb
        if wb.inst.writes_register:
            self.regs.set(wb.inst.rd, self.writeback_value(wb))
        if store is not None:
            self.memory.set(*store)
        id_ex = self.decode_stage(old.if_id)

        new = Latches(if_id=if_id, id_ex=id_ex, ex_mem=ex_mem, mem_wb=mem_wb)
        next_pc = self.pc + 1

        if should_branch:
            # predição "não tomado" falhou: descarta IF e ID
            target = ex_mem.alu_out
            self.stats.predict_fails += 1
            desc = "predição de desvio falhou, IF e ID descartados"
            self.events.append(f"Flush: '{ex_mem.inst}' desvia para {target}")
            logger.debug("branch taken: %s pc=%s -> %s", ex_mem.inst, old.id_ex.pc, target)
            if on_hazard:
                on_hazard(HazardEvent(cycle=cycle, kind="branch", instruction=ex_mem.inst, description=desc))
            new = replace(new, if_id=IfId(), id_ex=IdEx())
            next_pc = target
        else:
            if self.forwarding:
                hazard, new = self.try_forward(new, cycle, on_forward)
            else:
                hazard = self.data_hazard(new)
            if hazard:
                self.stats.data_hazard_stalls += 1
                desc = "hazard de dados: bolha inserida em ID/EX, IF e ID retidos"
                self.events.append(f"Stall: '{new.id_ex.inst}'")
                if on_hazard:
                    on_hazard(HazardEvent(cycle=cycle, kind="data", instruction=new.id_ex.inst, description=desc))
                # bolha em ID/EX; IF/ID e PC ficam como estavam
                new = replace(new, id_ex=IdEx(), if_id=old.if_id)
                next_pc = self.pc

        self.stats.clock_cycles += 1
        if not wb.inst.is_bubble:
            self.stats.finished_insts += 1

        self.pc = next_pc
        self.latches = new
        self.history.append({
            "IF": if_id.inst.index,
            "ID": id_ex.inst.index,
            "EX": ex_mem.inst.index,
            "MEM": mem_wb.inst.index,
            "WB": wb.inst.index,
        })

    def tick(self, stop_at: Optional[int] = None, on_hazard: Optional[HazardCallback] = None,
             on_forward: Optional[ForwardCallback] = None, max_iterations: Optional[int] = None) -> int:
        """Avança o pipeline.

        stop_at=None roda um ciclo, -1 roda até o fim e qualquer outro valor
        roda até a instrução com esse índice original chegar ao IF.
        Retorna o número de ciclos executados.
        """
        callbacks = dict(on_hazard=on_hazard, on_forward=on_forward)
        limit = MAX_ITERATIONS if max_iterations is None else max_iterations
        if stop_at is None:
            return step_once(self, **callbacks)
        if stop_at == -1:
            return run_to_completion(self, max_iterations=limit, **callbacks)
        return run_to_breakpoint(self, stop_at, max_iterations=limit, **callbacks)

    # ----------- Leitura de estado -----------
    def stage_snapshot(self) -> Dict[str, Optional[int]]:
        lat = self.latches
        return {
            "IF": self.instruction_at(self.pc).index,
            "ID": lat.if_id.inst.index,
            "EX": lat.id_ex.inst.index,
            "MEM": lat.ex_mem.inst.index,
            "WB": lat.mem_wb.inst.index,
        }

    def latch_rows(self) -> List[Dict[str, Any]]:
        lat = self.latches
        return [
            {"latch": "IF/ID", "instr": str(lat.if_id.inst), "pc": lat.if_id.pc},
            {"latch": "ID/EX", "instr": str(lat.id_ex.inst), "pc": lat.id_ex.pc,
             "reg1": lat.id_ex.reg1, "reg2": lat.id_ex.reg2, "imm": lat.id_ex.imm},
            {"latch": "EX/MEM", "instr": str(lat.ex_mem.inst), "alu_out": lat.ex_mem.alu_out,
             "write_data": lat.ex_mem.write_data},
            {"latch": "MEM/WB", "instr": str(lat.mem_wb.inst), "mem": lat.mem_wb.mem, "alu": lat.mem_wb.alu},
        ]

    # ----------- Métricas -----------
    def metrics(self) -> Dict[str, Any]:
        s = self.stats
        return {
            "Forwarding": "ligado" if self.forwarding else "desligado",
            "Ciclos": s.clock_cycles,
            "Instruções concluídas": s.finished_insts,
            "CPI": round(s.cpi, 3),
            "Stalls (hazard de dados)": s.data_hazard_stalls,
            "Predições erradas": s.predict_fails,
            "Forwards": s.forward_count,
        }
