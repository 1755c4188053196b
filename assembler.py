# assembler.py
# -------------------------------------------------------------
# Montador de duas passagens: texto -> sequência de instruções
# decodificadas, com labels já resolvidas (deslocamento relativo)
# -------------------------------------------------------------

from __future__ import annotations
from typing import Callable, Dict, List, Optional, Tuple, Union
import re

from datapath import DecodedInstruction, decode
from hardware import SimulatorError, register_index


class AssemblyError(SimulatorError, ValueError):
    pass


LABEL_RE = re.compile(r"^([A-Za-z_][A-Za-z0-9_]*)\s*:\s*(.*)$")
MEM_OPERAND_RE = re.compile(r"^(-?\d+)\s*\(\s*(\$\w+)\s*\)$")

Target = Union[int, str]  # literal (deslocamento) ou label a resolver
Parsed = Tuple[str, Optional[int], Optional[int], Optional[int], Optional[Target]]  # op, rs1, rs2, rd, imm


# ==========================
# Operandos
# ==========================
def parse_reg(tok: str) -> int:
    try:
        return register_index(tok)
    except ValueError as e:
        raise AssemblyError(str(e)) from None


def parse_imm(tok: str) -> int:
    try:
        return int(tok.strip(), 0) if tok.strip().lower().startswith(("0x", "-0x")) else int(tok.strip())
    except ValueError:
        raise AssemblyError(f"Imediato inválido: {tok}") from None


def parse_target(tok: str) -> Target:
    tok = tok.strip()
    if re.fullmatch(r"-?\d+", tok):
        return int(tok)
    return tok


def parse_mem(tok: str) -> Tuple[int, int]:
    m = MEM_OPERAND_RE.match(tok.strip())
    if not m:
        raise AssemblyError(f"Formato de endereço inválido: {tok}")
    return int(m.group(1)), parse_reg(m.group(2))


def _expect(args: List[str], n: int):
    if len(args) != n:
        raise AssemblyError(f"Número de operandos inválido: esperado {n}, recebido {len(args)}")


# ==========================
# Conjunto do pipeline de 5 estágios
# ==========================
R_TYPE = ("add", "sub", "and", "or", "xor", "sll", "srl", "sra")
I_TYPE = ("addi", "andi", "ori", "xori", "slli", "srli", "srai")
BRANCH = ("beq", "bne", "bgt", "bge", "blt", "ble")
BRANCH_Z = ("beqz", "bnez")


def _parse_pipeline(op: str, args: List[str]) -> Parsed:
    op = op.lower()
    if op in R_TYPE:
        _expect(args, 3)
        return op, parse_reg(args[1]), parse_reg(args[2]), parse_reg(args[0]), None
    if op in I_TYPE:
        _expect(args, 3)
        return op, parse_reg(args[1]), None, parse_reg(args[0]), parse_imm(args[2])
    if op == "lw":
        _expect(args, 2)
        imm, base = parse_mem(args[1])
        return op, base, None, parse_reg(args[0]), imm
    if op == "sw":
        _expect(args, 2)
        imm, base = parse_mem(args[1])
        return op, base, parse_reg(args[0]), None, imm
    if op in BRANCH:
        _expect(args, 3)
        return op, parse_reg(args[0]), parse_reg(args[1]), None, parse_target(args[2])
    if op in BRANCH_Z:
        _expect(args, 2)
        return op, parse_reg(args[0]), 0, None, parse_target(args[1])
    if op == "li":
        _expect(args, 2)
        return "addi", 0, None, parse_reg(args[0]), parse_imm(args[1])
    if op == "mv":
        _expect(args, 2)
        return "addi", parse_reg(args[1]), None, parse_reg(args[0]), 0
    if op == "j":
        _expect(args, 1)
        return op, 0, 0, None, parse_target(args[0])
    if op == "nop":
        _expect(args, 0)
        return op, 0, 0, 0, None
    raise AssemblyError(f"Opcode inválido: {op}")


# ==========================
# Conjunto do Tomasulo
# ==========================
def _parse_tomasulo(op: str, args: List[str]) -> Parsed:
    op = op.upper()
    if op in ("ADD.D", "SUB.D", "MUL.D", "DIV.D"):
        _expect(args, 3)
        return op, parse_reg(args[1]), parse_reg(args[2]), parse_reg(args[0]), None
    if op == "L.D":
        _expect(args, 2)
        imm, base = parse_mem(args[1])
        return op, base, None, parse_reg(args[0]), imm
    if op == "S.D":
        _expect(args, 2)
        imm, base = parse_mem(args[1])
        return op, base, parse_reg(args[0]), None, imm
    raise AssemblyError(f"Opcode inválido: {op}")


# ==========================
# Montagem (duas passagens)
# ==========================
def assemble(text: str, parse: Callable[[str, List[str]], Parsed]) -> List[DecodedInstruction]:
    labels: Dict[str, int] = {}
    first: List[Tuple[str, Parsed]] = []

    # 1ª passagem: labels + operandos
    for lineno, line in enumerate(text.splitlines(), start=1):
        src = line.split("#", 1)[0].strip()
        if not src:
            continue
        m = LABEL_RE.match(src)
        if m:
            label = m.group(1)
            if label in labels:
                raise AssemblyError(f"Label duplicada na linha {lineno}: {label}")
            labels[label] = len(first)
            src = m.group(2).strip()
            if not src:
                continue
        parts = src.split(None, 1)
        args = [a.strip() for a in parts[1].split(",")] if len(parts) > 1 else []
        try:
            parsed = parse(parts[0], args)
        except AssemblyError as e:
            raise AssemblyError(f'Erro na linha {lineno} "{src}": {e}') from None
        first.append((src, parsed))

    # 2ª passagem: resolve labels em deslocamentos relativos
    out: List[DecodedInstruction] = []
    for idx, (src, (op, rs1, rs2, rd, imm)) in enumerate(first):
        if isinstance(imm, str):
            target = labels.get(imm)
            if target is None:
                raise AssemblyError(f'Label desconhecida: {imm} (em "{src}")')
            imm = target - idx
        out.append(DecodedInstruction(raw=src, op=op, index=idx, rs1=rs1, rs2=rs2, rd=rd, imm=imm, ctrl=decode(op)))
    return out


def assemble_pipeline(text: str) -> List[DecodedInstruction]:
    return assemble(text, _parse_pipeline)


def assemble_tomasulo(text: str) -> List[DecodedInstruction]:
    return assemble(text, _parse_tomasulo)
