import math

import pytest

from datapath import (
    AluOp,
    BranchCond,
    UNIT_ADD,
    UNIT_MEM,
    UNIT_MUL,
    alu,
    branch_taken,
    bubble,
    decode,
    execute,
)


def test_decode_signals():
    lw = decode("lw")
    assert lw.mem_read and lw.reg_write and not lw.mem_write
    sw = decode("sw")
    assert sw.mem_write and not sw.reg_write
    assert decode("beqz").branch == BranchCond.EQ
    assert decode("j").branch == BranchCond.ALWAYS
    assert decode("ADD.D").unit == UNIT_ADD
    assert decode("DIV.D").unit == UNIT_MUL
    assert decode("S.D").unit == UNIT_MEM
    assert decode("add").unit is None


def test_decode_unknown():
    with pytest.raises(ValueError):
        decode("mul")


def test_bubble():
    b = bubble()
    assert b.is_bubble
    assert not b.writes_register
    assert b == bubble()


@pytest.mark.parametrize("op,a,b,expected", [
    (AluOp.ADD, 2, 3, 5),
    (AluOp.SUB, 2, 3, -1),
    (AluOp.MUL, 4, 3, 12),
    (AluOp.DIV, 3, 2, 1.5),
    (AluOp.AND, 6, 3, 2),
    (AluOp.OR, 6, 3, 7),
    (AluOp.XOR, 6, 3, 5),
    (AluOp.SLL, 1, 4, 16),
    (AluOp.SRA, -8, 1, -4),
    (AluOp.SRL, -8, 1, 0x7FFFFFFC),
])
def test_alu(op, a, b, expected):
    assert alu(op, a, b) == expected


def test_division_by_zero():
    assert alu(AluOp.DIV, 1, 0) == math.inf
    assert alu(AluOp.DIV, -1, 0) == -math.inf
    assert math.isnan(alu(AluOp.DIV, 0, 0))


def test_branch_conditions():
    assert not branch_taken(BranchCond.NEVER, 1, 1)
    assert branch_taken(BranchCond.ALWAYS, 1, 2)
    assert branch_taken(BranchCond.EQ, 0, 0)
    assert branch_taken(BranchCond.NE, 0, 1)
    assert branch_taken(BranchCond.LE, 0, 0)
    assert not branch_taken(BranchCond.GT, 0, 0)
    assert branch_taken(BranchCond.LT, -1, 0)


def test_execute_operand_select():
    # desvio: pc + deslocamento
    assert execute(decode("beq"), 7, 7, 4, 2) == 6
    # addi: reg1 + imediato
    assert execute(decode("addi"), 7, 100, 4, 2) == 9
    # add: reg1 + reg2
    assert execute(decode("add"), 7, 100, 4, 2) == 107
