# datapath.py
# -------------------------------------------------------------
# Decodificador do caminho de dados, compartilhado pelo pipeline
# de 5 estágios e pelo Tomasulo: cada mnemônico vira um conjunto
# de sinais de controle interpretado por um único avaliador
# -------------------------------------------------------------

from __future__ import annotations
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Optional
import logging
import math

from hardware import Number

logger = logging.getLogger(__name__)


# ==========================
# Sinais de controle
# ==========================
class AluOp(Enum):
    ADD = "add"
    SUB = "sub"
    MUL = "mul"
    DIV = "div"
    AND = "and"
    OR = "or"
    XOR = "xor"
    SLL = "sll"
    SRL = "srl"
    SRA = "sra"


class ASel(Enum):
    REG1 = "reg1"
    PC = "pc"


class BSel(Enum):
    REG2 = "reg2"
    IMM = "imm"


class WbSel(Enum):
    ALU = "alu"
    MEM = "mem"


class BranchCond(Enum):
    NEVER = "never"
    ALWAYS = "always"
    EQ = "eq"
    NE = "ne"
    GT = "gt"
    GE = "ge"
    LT = "lt"
    LE = "le"


# Pools de estações de reserva do Tomasulo
UNIT_ADD = "ADD"
UNIT_MUL = "MUL"
UNIT_MEM = "MEM"
UNITS = (UNIT_ADD, UNIT_MUL, UNIT_MEM)


@dataclass(frozen=True)
class ControlSignals:
    alu_op: AluOp = AluOp.ADD
    a_sel: ASel = ASel.REG1
    b_sel: BSel = BSel.REG2
    mem_read: bool = False
    mem_write: bool = False
    wb_sel: WbSel = WbSel.ALU
    reg_write: bool = False
    branch: BranchCond = BranchCond.NEVER
    unit: Optional[str] = None  # só usado pelo Tomasulo


NOP_SIGNALS = ControlSignals()


def _r_type(op: AluOp, unit: Optional[str] = None) -> ControlSignals:
    return ControlSignals(alu_op=op, reg_write=True, unit=unit)


def _i_type(op: AluOp) -> ControlSignals:
    return ControlSignals(alu_op=op, b_sel=BSel.IMM, reg_write=True)


def _branch(cond: BranchCond) -> ControlSignals:
    return ControlSignals(a_sel=ASel.PC, b_sel=BSel.IMM, branch=cond)


LOAD_SIGNALS = ControlSignals(b_sel=BSel.IMM, mem_read=True, wb_sel=WbSel.MEM, reg_write=True)
STORE_SIGNALS = ControlSignals(b_sel=BSel.IMM, mem_write=True)

SIGNALS: Dict[str, ControlSignals] = {
    # pipeline de 5 estágios
    "add": _r_type(AluOp.ADD),
    "sub": _r_type(AluOp.SUB),
    "and": _r_type(AluOp.AND),
    "or": _r_type(AluOp.OR),
    "xor": _r_type(AluOp.XOR),
    "sll": _r_type(AluOp.SLL),
    "srl": _r_type(AluOp.SRL),
    "sra": _r_type(AluOp.SRA),
    "addi": _i_type(AluOp.ADD),
    "andi": _i_type(AluOp.AND),
    "ori": _i_type(AluOp.OR),
    "xori": _i_type(AluOp.XOR),
    "slli": _i_type(AluOp.SLL),
    "srli": _i_type(AluOp.SRL),
    "srai": _i_type(AluOp.SRA),
    "lw": LOAD_SIGNALS,
    "sw": STORE_SIGNALS,
    "beq": _branch(BranchCond.EQ),
    "bne": _branch(BranchCond.NE),
    "bgt": _branch(BranchCond.GT),
    "bge": _branch(BranchCond.GE),
    "blt": _branch(BranchCond.LT),
    "ble": _branch(BranchCond.LE),
    "beqz": _branch(BranchCond.EQ),
    "bnez": _branch(BranchCond.NE),
    "j": _branch(BranchCond.ALWAYS),
    "nop": NOP_SIGNALS,
    # Tomasulo (ponto flutuante)
    "ADD.D": _r_type(AluOp.ADD, UNIT_ADD),
    "SUB.D": _r_type(AluOp.SUB, UNIT_ADD),
    "MUL.D": _r_type(AluOp.MUL, UNIT_MUL),
    "DIV.D": _r_type(AluOp.DIV, UNIT_MUL),
    "L.D": ControlSignals(b_sel=BSel.IMM, mem_read=True, wb_sel=WbSel.MEM, reg_write=True, unit=UNIT_MEM),
    "S.D": ControlSignals(b_sel=BSel.IMM, mem_write=True, unit=UNIT_MEM),
}


def decode(op: str) -> ControlSignals:
    try:
        return SIGNALS[op]
    except KeyError:
        raise ValueError(f"Opcode inválido: {op}") from None


# ==========================
# Instrução decodificada
# ==========================
@dataclass(frozen=True)
class DecodedInstruction:
    raw: str
    op: str
    index: Optional[int] = None  # None = bolha sintetizada
    rs1: Optional[int] = None
    rs2: Optional[int] = None
    rd: Optional[int] = None
    imm: Optional[int] = None
    ctrl: ControlSignals = NOP_SIGNALS

    @property
    def is_bubble(self) -> bool:
        return self.index is None

    @property
    def writes_register(self) -> bool:
        return self.ctrl.reg_write and self.rd is not None and self.rd != 0

    @property
    def is_load(self) -> bool:
        return self.ctrl.mem_read

    def __str__(self):
        return self.raw


def bubble() -> DecodedInstruction:
    return DecodedInstruction(raw="nop (bolha)", op="nop")


# ==========================
# Avaliador: ALU e condição de desvio
# ==========================
def _to_u32(value: int) -> int:
    return value & 0xFFFFFFFF


def alu(op: AluOp, a: Number, b: Number) -> Number:
    if op == AluOp.ADD:
        return a + b
    if op == AluOp.SUB:
        return a - b
    if op == AluOp.MUL:
        return a * b
    if op == AluOp.DIV:
        if b == 0:
            logger.warning("Divisão por zero: %s / %s", a, b)
            if a == 0 or math.isnan(a):
                return math.nan
            return math.copysign(math.inf, a)
        return a / b
    # operações lógicas e deslocamentos só fazem sentido com inteiros
    a, b = int(a), int(b)
    if op == AluOp.AND:
        return a & b
    if op == AluOp.OR:
        return a | b
    if op == AluOp.XOR:
        return a ^ b
    if op == AluOp.SLL:
        return a << (b & 0x1F)
    if op == AluOp.SRL:
        return _to_u32(a) >> (b & 0x1F)
    if op == AluOp.SRA:
        return a >> (b & 0x1F)
    raise ValueError(f"Operação de ALU inválida: {op}")


def branch_taken(cond: BranchCond, reg1: Number, reg2: Number) -> bool:
    if cond == BranchCond.NEVER:
        return False
    if cond == BranchCond.ALWAYS:
        return True
    if cond == BranchCond.EQ:
        return reg1 == reg2
    if cond == BranchCond.NE:
        return reg1 != reg2
    if cond == BranchCond.GT:
        return reg1 > reg2
    if cond == BranchCond.GE:
        return reg1 >= reg2
    if cond == BranchCond.LT:
        return reg1 < reg2
    if cond == BranchCond.LE:
        return reg1 <= reg2
    raise ValueError(f"Condição de desvio inválida: {cond}")


def execute(ctrl: ControlSignals, reg1: Number, reg2: Number, pc: int, imm: int) -> Number:
    a = pc if ctrl.a_sel == ASel.PC else reg1
    b = imm if ctrl.b_sel == BSel.IMM else reg2
    return alu(ctrl.alu_op, a, b)
