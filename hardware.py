# hardware.py
# -------------------------------------------------------------
# Blocos de armazenamento compartilhados pelos dois simuladores:
# banco de registradores e memória de dados
# -------------------------------------------------------------

from __future__ import annotations
from typing import Dict, Tuple, Union
import logging
import math

logger = logging.getLogger(__name__)

# ==========================
# Parâmetros padrão
# ==========================
NUM_INT_REGS = 32   # $0..$31
NUM_FP_REGS = 16    # $f0..$f15
NUM_REGS = NUM_INT_REGS + NUM_FP_REGS
MEM_SIZE = 32       # memória pequena para LW/SW e L.D/S.D

Number = Union[int, float]

REGISTER_NAMES: Dict[str, int] = {
    "$zero": 0,
    "$at": 1,
    "$v0": 2,
    "$v1": 3,
    "$a0": 4,
    "$a1": 5,
    "$a2": 6,
    "$a3": 7,
    "$t0": 8,
    "$t1": 9,
    "$t2": 10,
    "$t3": 11,
    "$t4": 12,
    "$t5": 13,
    "$t6": 14,
    "$t7": 15,
    "$s0": 16,
    "$s1": 17,
    "$s2": 18,
    "$s3": 19,
    "$s4": 20,
    "$s5": 21,
    "$s6": 22,
    "$s7": 23,
    "$t8": 24,
    "$t9": 25,
    "$k0": 26,
    "$k1": 27,
    "$gp": 28,
    "$sp": 29,
    "$fp": 30,
    "$ra": 31,
}
REGISTER_NAMES.update({f"$f{i}": NUM_INT_REGS + i for i in range(NUM_FP_REGS)})


# ==========================
# Erros
# ==========================
class SimulatorError(Exception):
    """Base de todos os erros do simulador."""


class OutOfBoundsError(SimulatorError, IndexError):
    pass


# ==========================
# Nomes de registradores
# ==========================
def register_index(name: str) -> int:
    tok = name.strip()
    if not tok.startswith("$") or len(tok) < 2:
        raise ValueError(f"Registrador inválido: {name}")
    if tok[1:].isdigit():
        idx = int(tok[1:])
        if idx >= NUM_REGS:
            raise ValueError(f"Índice de registrador inválido: {name}")
        return idx
    idx = REGISTER_NAMES.get(tok.lower())
    if idx is None:
        raise ValueError(f"Registrador inválido: {name}")
    return idx


def register_name(index: int) -> str:
    if index < 0 or index >= NUM_REGS:
        raise OutOfBoundsError(f"Índice de registrador fora dos limites: {index}")
    if index == 0:
        return "$0"
    if index >= NUM_INT_REGS:
        return f"$f{index - NUM_INT_REGS}"
    return f"${index}"


def _coerce(value, where: str) -> Number:
    # bool é subclasse de int; NaN é mantido (semântica de ponto flutuante)
    if isinstance(value, (int, float)):
        return value
    if isinstance(value, str):
        for conv in (int, float):
            try:
                return conv(value.strip())
            except ValueError:
                pass
    logger.warning("Valor não numérico em %s: %r (gravando 0)", where, value)
    return 0


# ==========================
# Banco de registradores
# ==========================
class RegisterFile:
    def __init__(self, size: int = NUM_REGS):
        self.size = size
        self._regs = [0] * size

    def _index(self, index_or_name: Union[int, str]) -> int:
        idx = register_index(index_or_name) if isinstance(index_or_name, str) else index_or_name
        if idx < 0 or idx >= self.size:
            raise OutOfBoundsError(f"Índice de registrador fora dos limites: {idx}")
        return idx

    def get(self, index_or_name: Union[int, str]) -> Number:
        idx = self._index(index_or_name)
        if idx == 0:
            return 0
        return self._regs[idx]

    def set(self, index_or_name: Union[int, str], value) -> None:
        idx = self._index(index_or_name)
        if idx == 0:
            return  # $0 é sempre zero
        self._regs[idx] = _coerce(value, f"registrador {register_name(idx)}")

    def reset(self):
        self._regs = [0] * self.size

    def snapshot(self) -> Tuple[Number, ...]:
        return tuple(self._regs)

    def __len__(self) -> int:
        return self.size


# ==========================
# Memória de dados
# ==========================
class Memory:
    def __init__(self, size: int = MEM_SIZE):
        self.size = size
        self._cells = [0] * size

    def check(self, index: Number) -> int:
        if isinstance(index, float):
            if math.isnan(index) or not index.is_integer():
                raise OutOfBoundsError(f"Endereço de memória inválido: {index}")
            index = int(index)
        if index < 0 or index >= self.size:
            raise OutOfBoundsError(f"Endereço de memória fora dos limites: {index}")
        return index

    def get(self, index: Number) -> Number:
        return self._cells[self.check(index)]

    def set(self, index: Number, value) -> None:
        idx = self.check(index)
        self._cells[idx] = _coerce(value, f"mem[{idx}]")

    def reset(self):
        self._cells = [0] * self.size

    def snapshot(self) -> Tuple[Number, ...]:
        return tuple(self._cells)

    def __len__(self) -> int:
        return self.size
