import pytest

from assembler import AssemblyError, assemble_pipeline, assemble_tomasulo
from datapath import BranchCond


def test_r_and_i_types():
    prog = assemble_pipeline("""
    add $3, $1, $2
    addi $t0, $zero, -4
    """)
    add, addi = prog
    assert (add.op, add.rd, add.rs1, add.rs2) == ("add", 3, 1, 2)
    assert (addi.op, addi.rd, addi.rs1, addi.imm) == ("addi", 8, 0, -4)
    assert [i.index for i in prog] == [0, 1]


def test_memory_operands():
    lw, sw = assemble_pipeline("lw $1, 4($2)\nsw $3, -1($2)")
    assert (lw.rd, lw.rs1, lw.imm) == (1, 2, 4)
    # sw: rs1 = base, rs2 = dado
    assert (sw.rs1, sw.rs2, sw.rd, sw.imm) == (2, 3, None, -1)


def test_pseudo_instructions():
    li, mv, nop = assemble_pipeline("li $1, 5\nmv $2, $1\nnop")
    assert (li.op, li.rs1, li.rd, li.imm) == ("addi", 0, 1, 5)
    assert (mv.op, mv.rs1, mv.rd, mv.imm) == ("addi", 1, 2, 0)
    assert nop.op == "nop" and not nop.writes_register


def test_labels_become_relative_offsets():
    prog = assemble_pipeline("""
    # comentário
    start: li $1, 1
    beqz $1, end    # para frente
    bne $1, $0, start
    end:
    j start
    """)
    assert prog[1].imm == 2
    assert prog[1].rs2 == 0
    assert prog[1].ctrl.branch == BranchCond.EQ
    assert prog[2].imm == -2
    assert prog[3].imm == -3
    assert len(prog) == 4


def test_literal_branch_target():
    prog = assemble_pipeline("nop\nbeqz $0, 3")
    assert prog[1].imm == 3


def test_tomasulo_set():
    prog = assemble_tomasulo("""
    L.D $f6, 0($2)
    MUL.D $f0, $f2, $f4
    S.D $f0, 8($3)
    """)
    ld, mul, sd = prog
    assert (ld.rd, ld.rs1, ld.imm) == (38, 2, 0)
    assert (mul.rd, mul.rs1, mul.rs2) == (32, 34, 36)
    assert (sd.rs1, sd.rs2, sd.rd, sd.imm) == (3, 32, None, 8)


@pytest.mark.parametrize("text", [
    "mul $1, $2, $3",
    "add $1, $2",
    "lw $1, $2",
    "add $1, $2, $x",
    "beqz $1, nowhere",
    "a: nop\na: nop",
    "addi $1, $2, abc",
])
def test_pipeline_errors(text):
    with pytest.raises(AssemblyError):
        assemble_pipeline(text)


def test_error_reports_line():
    with pytest.raises(AssemblyError, match="linha 3"):
        assemble_pipeline("nop\n\nfoo $1\n")


def test_instruction_sets_are_separate():
    with pytest.raises(AssemblyError):
        assemble_tomasulo("add $1, $2, $3")
    with pytest.raises(ValueError):
        assemble_pipeline("ADD.D $f0, $f2, $f4")
